from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session, joinedload

from .. import config
from ..config import settings
from ..constants import PORTAL_COOKIE_NAME, STAFF_COOKIE_NAME
from ..core.errors import Unauthorized
from ..models.models import User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

TOKEN_TYPE_STAFF = "staff"
TOKEN_TYPE_PORTAL = "portal"


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _create_token(data: dict, expires_minutes: int) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode = data.copy()
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_staff_token(user: User) -> str:
    payload = {
        "sub": str(user.id),
        "userId": user.id,
        "email": user.email,
        "role": user.role_name,
        "type": TOKEN_TYPE_STAFF,
    }
    return _create_token(payload, settings.session_expire_minutes)


def create_portal_token(user_id: int, email: str, is_agent: bool) -> str:
    payload = {
        "userId": user_id,
        "email": email,
        "role": "agent" if is_agent else "customer",
        "isAgent": is_agent,
        "type": TOKEN_TYPE_PORTAL,
    }
    return _create_token(payload, settings.session_expire_minutes)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def get_db() -> Generator[Session, None, None]:
    db = config.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _read_token(request: Request, cookie_name: str) -> Optional[str]:
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def _decode_or_none(token: Optional[str], expected_type: str) -> Optional[dict]:
    if not token:
        return None
    try:
        payload = decode_token(token)
    except JWTError:
        return None
    if payload.get("type") != expected_type:
        return None
    try:
        payload["userId"] = int(payload["userId"])
    except (KeyError, TypeError, ValueError):
        return None
    return payload


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    payload = _decode_or_none(_read_token(request, STAFF_COOKIE_NAME), TOKEN_TYPE_STAFF)
    if payload is None:
        raise Unauthorized("Could not validate credentials")

    user_id = payload["userId"]
    user = (
        db.query(User)
        .options(joinedload(User.role))
        .filter(User.id == user_id)
        .first()
    )
    if user is None or not user.is_active:
        raise Unauthorized("Could not validate credentials")
    return user


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    try:
        return get_current_user(request, db)
    except Unauthorized:
        return None


@dataclass(frozen=True)
class PortalIdentity:
    user_id: int
    email: str
    role: str
    is_agent: bool


def get_portal_identity(request: Request) -> PortalIdentity:
    payload = _decode_or_none(request.cookies.get(PORTAL_COOKIE_NAME), TOKEN_TYPE_PORTAL)
    if payload is None:
        raise Unauthorized("Not authenticated")
    is_agent = bool(payload.get("isAgent"))
    return PortalIdentity(
        user_id=payload["userId"],
        email=payload.get("email") or "",
        role="agent" if is_agent else "customer",
        is_agent=is_agent,
    )
