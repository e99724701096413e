import json
import sys
from collections.abc import Callable, Generator
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conecta.config import Base, Settings, settings  # noqa: E402
import conecta.config as app_config  # noqa: E402
from conecta.auth.jwt import get_password_hash  # noqa: E402
from conecta.core.rate_limit import login_limiter  # noqa: E402
# Import the full models module so every table registers with Base metadata.
from conecta.models import models as _all_models  # noqa: E402,F401
from conecta.constants import SYSTEM_DRIVE_USER_ID  # noqa: E402
from conecta.models.models import (  # noqa: E402
    Agent,
    Customer,
    FollowUpEvent,
    GoogleDriveCredential,
    Property,
    Role,
    Transaction,
    User,
    utcnow,
)
from conecta.schemas.schemas import TransactionCreate  # noqa: E402
from conecta.services.google_drive import GoogleDriveService  # noqa: E402
from conecta.services.transactions import create_transaction as create_transaction_service  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Point the app-wide SessionLocal/engine at a throwaway DB with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    engine = create_engine(f"sqlite:///{db_dir / 'app.db'}")
    Base.metadata.create_all(engine)
    app_config.SessionLocal = sessionmaker(bind=engine, autoflush=False)
    app_config.engine = engine
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _isolate_side_effects(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "email_backend", "local")
    monkeypatch.setattr(settings, "email_output_dir", str(tmp_path / "emails"))
    login_limiter.reset()
    yield
    login_limiter.reset()


@pytest.fixture
def db_session(tmp_path) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def create_role(db_session: Session) -> Callable[[str], Role]:
    def _create(name: str) -> Role:
        existing = db_session.query(Role).filter(Role.name == name).first()
        if existing:
            return existing
        role = Role(name=name)
        db_session.add(role)
        db_session.commit()
        return role

    return _create


@pytest.fixture
def create_user(db_session: Session, create_role: Callable[[str], Role]) -> Callable[..., User]:
    def _create(email: str = "user@example.com", role_name: str = "admin", password: str = "changeme") -> User:
        role = create_role(role_name)
        local_part = email.split("@", 1)[0]
        user = User(
            email=email,
            first_name=local_part.capitalize(),
            last_name="Tester",
            hashed_password=get_password_hash(password),
            role_id=role.id,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create


@pytest.fixture
def create_customer(db_session: Session) -> Callable[..., Customer]:
    counter = {"value": 0}

    def _create(
        email: Optional[str] = None,
        email_notifications_enabled: bool = True,
        portal_password: Optional[str] = None,
    ) -> Customer:
        counter["value"] += 1
        customer = Customer(
            first_name=f"Client{counter['value']}",
            last_name="Sample",
            email=email if email is not None else f"client{counter['value']}@example.com",
            email_notifications_enabled=email_notifications_enabled,
            portal_access_enabled=portal_password is not None,
            portal_password_hash=get_password_hash(portal_password) if portal_password else None,
        )
        db_session.add(customer)
        db_session.commit()
        return customer

    return _create


@pytest.fixture
def create_property(db_session: Session) -> Callable[..., Property]:
    counter = {"value": 0}

    def _create(address: Optional[str] = None) -> Property:
        counter["value"] += 1
        prop = Property(address=address or f"{counter['value']} Main Street", city="Charlotte", state="NC")
        db_session.add(prop)
        db_session.commit()
        return prop

    return _create


@pytest.fixture
def create_agent(db_session: Session) -> Callable[..., Agent]:
    def _create(portal_email: Optional[str] = None, portal_password: Optional[str] = None) -> Agent:
        agent = Agent(
            first_name="Ana",
            last_name="Agent",
            email="ana.agent@example.com",
            portal_email=portal_email,
            portal_password_hash=get_password_hash(portal_password) if portal_password else None,
            portal_access_enabled=portal_password is not None,
        )
        db_session.add(agent)
        db_session.commit()
        return agent

    return _create


@pytest.fixture
def create_transaction(db_session: Session, create_user) -> Callable[..., Transaction]:
    """Create a transaction through the service so default tasks are generated."""

    def _create(
        actor: Optional[User] = None,
        transaction_type: str = "purchase",
        buyer_ids: Iterable[int] = (),
        seller_ids: Iterable[int] = (),
        **fields,
    ) -> Transaction:
        actor = actor or create_user(email="creator@example.com", role_name="admin")
        payload = TransactionCreate(
            transaction_type=transaction_type,
            buyer_ids=list(buyer_ids),
            seller_ids=list(seller_ids),
            **fields,
        )
        return create_transaction_service(db_session, payload, actor)

    return _create


@pytest.fixture
def add_task(db_session: Session) -> Callable[..., FollowUpEvent]:
    def _create(transaction: Transaction, status: str = "pending", due_date: Optional[date] = None, **fields):
        task = FollowUpEvent(
            transaction_id=transaction.id,
            event_name=fields.pop("event_name", "Manual task"),
            status=status,
            due_date=due_date,
            **fields,
        )
        db_session.add(task)
        db_session.commit()
        return task

    return _create



class FakeGoogleApi:
    """In-memory stand-in for the Google token and Drive v3 endpoints."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.files: Dict[str, Dict] = {}
        self.permissions: Dict[str, List[Dict]] = {}
        self.failures: Dict[Tuple[str, str], httpx.Response] = {}
        self.token_counter = 0
        self.issue_refresh_token = True

    def add_file(self, file_id: str, name: str = "file.pdf", public: bool = False, content: bytes = b"%PDF") -> None:
        self.files[file_id] = {
            "id": file_id,
            "name": name,
            "mimeType": "application/pdf",
            "webViewLink": f"https://drive.google.com/file/d/{file_id}/view",
            "content": content,
        }
        self.permissions[file_id] = [{"id": "anyone", "type": "anyone", "role": "reader"}] if public else []

    def fail(self, method: str, path: str, status_code: int = 500, message: str = "backend error") -> None:
        self.failures[(method, path)] = httpx.Response(status_code, json={"error": {"message": message}})

    def calls(self, method: str, path_prefix: str) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and request.url.path.startswith(path_prefix)
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        failure = self.failures.get((request.method, path))
        if failure is not None:
            return failure

        if request.url.host == "oauth2.googleapis.com":
            self.token_counter += 1
            payload = {"access_token": f"access-{self.token_counter}", "expires_in": 3600}
            if self.issue_refresh_token:
                payload["refresh_token"] = f"refresh-{self.token_counter}"
            return httpx.Response(200, json=payload)

        parts = path.strip("/").split("/")  # drive, v3, files, <id>, permissions
        if len(parts) == 3:
            if request.method == "POST":
                body = json.loads(request.content)
                folder_id = f"folder-{len(self.files) + 1}"
                self.files[folder_id] = {"id": folder_id, "name": body["name"], "parents": body.get("parents", [])}
                return httpx.Response(200, json={"id": folder_id, "name": body["name"]})
            folders = [
                {"id": item["id"], "name": item["name"]} for item in self.files.values() if "parents" in item
            ]
            return httpx.Response(200, json={"files": folders})

        file_id = parts[3]
        if file_id not in self.files:
            return httpx.Response(404, json={"error": {"message": f"File not found: {file_id}"}})
        if len(parts) == 5:
            if request.method == "POST":
                self.permissions[file_id].append({"id": "anyone", "type": "anyone", "role": "reader"})
                return httpx.Response(200, json={"id": "anyone"})
            return httpx.Response(200, json={"permissions": self.permissions[file_id]})
        if request.method == "DELETE":
            del self.files[file_id]
            return httpx.Response(204)
        if request.url.params.get("alt") == "media":
            return httpx.Response(200, content=self.files[file_id]["content"])
        meta = {key: value for key, value in self.files[file_id].items() if key != "content"}
        return httpx.Response(200, json=meta)


@pytest.fixture
def google_api() -> FakeGoogleApi:
    return FakeGoogleApi()


@pytest.fixture
def drive_settings() -> Settings:
    return Settings(
        _env_file=None,
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_redirect_uri="http://testserver/api/google-drive/callback",
    )


@pytest.fixture
def drive_service(db_session: Session, google_api: FakeGoogleApi, drive_settings: Settings):
    http = httpx.Client(transport=httpx.MockTransport(google_api))
    try:
        yield GoogleDriveService(db_session, http, config=drive_settings)
    finally:
        http.close()


@pytest.fixture
def connect_drive(db_session: Session) -> Callable[..., GoogleDriveCredential]:
    def _connect(
        access_token: Optional[str] = "stored-access",
        refresh_token: Optional[str] = "stored-refresh",
        expires_in: int = 3600,
        folder_id: Optional[str] = None,
    ) -> GoogleDriveCredential:
        credential = GoogleDriveCredential(
            user_id=SYSTEM_DRIVE_USER_ID,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=utcnow() + timedelta(seconds=expires_in),
            folder_id=folder_id,
            folder_name="Closings" if folder_id else None,
        )
        db_session.add(credential)
        db_session.commit()
        return credential

    return _connect
