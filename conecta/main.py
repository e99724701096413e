import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from . import config
from .api import auth, documents, follow_ups, google_drive, portal, system, templates, transactions, users
from .config import Base, settings
from .constants import DEFAULT_ROLES
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .core.request_context import RequestContextMiddleware
from .core.security import SecurityHeadersMiddleware, log_security_warnings
from .models.models import Role
from .services.documents import ensure_document_types
from .services.email import log_email_configuration
from .services.templates import ensure_default_templates

configure_logging(settings.log_level, settings.log_json)
logger = logging.getLogger(__name__)


def ensure_default_roles(session: Session) -> None:
    existing = {name for (name,) in session.query(Role.name).all()}
    for name, description in DEFAULT_ROLES:
        if name not in existing:
            session.add(Role(name=name, description=description))
    session.commit()


app = FastAPI(title="Conecta Transaction Desk")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware, force_hsts=settings.cookie_secure)
app.add_middleware(RequestContextMiddleware)

register_exception_handlers(app)


@app.on_event("startup")
def startup() -> None:
    # In dev we make sure tables exist. Alembic migrations should be used for real schema evolution.
    Base.metadata.create_all(bind=config.engine)
    with config.SessionLocal() as session:
        ensure_default_roles(session)
        ensure_default_templates(session)
        ensure_document_types(session)
    log_security_warnings(settings)
    log_email_configuration()
    logger.info("Conecta started (environment=%s)", settings.environment)


@app.get("/health", tags=["system"])
def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(transactions.router, prefix="/api/transactions", tags=["transactions"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(follow_ups.router, prefix="/api/follow-ups", tags=["follow-ups"])
app.include_router(templates.router, prefix="/api/templates", tags=["templates"])
app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(documents.types_router, prefix="/api/document-types", tags=["documents"])
app.include_router(google_drive.router, prefix="/api/google-drive", tags=["google-drive"])
app.include_router(portal.router, prefix="/api/portal", tags=["portal"])
app.include_router(system.router, prefix="/api/system", tags=["system"])
