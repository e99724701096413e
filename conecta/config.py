# conecta/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    environment: str = "development"

    # --- Database ---
    database_url: str = "sqlite:///conecta/conecta_dev.db"

    # --- Security / JWT ---
    jwt_secret: str = Field(
        default="dev-secret-please-change",
        validation_alias=AliasChoices("NEXTAUTH_SECRET", "JWT_SECRET", "jwt_secret"),
    )
    jwt_algorithm: str = "HS256"
    session_expire_minutes: int = 60 * 24 * 7  # 7 days, staff and portal alike
    cookie_secure: bool = False
    expose_error_details: bool = True

    # --- CORS ---
    cors_origins: List[str] = ["http://localhost:3000"]

    # --- Public URLs ---
    app_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("NEXT_PUBLIC_APP_URL", "APP_URL", "app_url"),
    )

    # --- Google Drive ---
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None
    google_http_timeout_seconds: float = 20.0

    # --- Email ---
    email_backend: str = "local"
    resend_api_key: Optional[str] = None
    resend_from_email: Optional[str] = None
    email_from_name: str = "Conecta Realty"
    email_output_dir: str = "uploads/emails"
    email_host: Optional[str] = None
    email_port: int = 587
    email_host_user: Optional[str] = None
    email_host_password: Optional[str] = None
    email_use_tls: bool = True

    # --- Logging ---
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def google_oauth_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.google_redirect_uri)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in {"production", "prod"}


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Ensure path directory exists (for SQLite)
if settings.database_url.startswith("sqlite:///"):
    db_path = Path(settings.database_url.replace("sqlite:///", ""))
    db_path.parent.mkdir(parents=True, exist_ok=True)

# --- SQLAlchemy setup ---
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
