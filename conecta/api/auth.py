import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..auth.jwt import create_staff_token, get_current_user, verify_password
from ..config import settings
from ..constants import STAFF_COOKIE_NAME
from ..core.errors import Unauthorized
from ..core.rate_limit import rate_limit_dependency
from ..models.models import User
from ..schemas.schemas import LoginRequest, LoginResponse, UserRead
from ..services.email import mask_email
from .dependencies import get_db

logger = logging.getLogger(__name__)

router = APIRouter()

login_rate_limit = rate_limit_dependency("staff-login", limit=10, window_seconds=60)


def set_session_cookie(response: Response, name: str, token: str) -> None:
    response.set_cookie(
        key=name,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=settings.session_expire_minutes * 60,
        path="/",
    )


@router.post("/login", response_model=LoginResponse, dependencies=[Depends(login_rate_limit)])
def login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)) -> LoginResponse:
    user = (
        db.query(User)
        .options(joinedload(User.role))
        .filter(func.lower(User.email) == payload.email.lower())
        .first()
    )
    if not user or not user.is_active or not verify_password(payload.password, user.hashed_password):
        logger.info("Failed staff login for %s", mask_email(payload.email))
        raise Unauthorized("Invalid email or password")
    set_session_cookie(response, STAFF_COOKIE_NAME, create_staff_token(user))
    return LoginResponse(user=UserRead.model_validate(user))


@router.post("/logout")
def logout(response: Response) -> dict:
    response.delete_cookie(STAFF_COOKIE_NAME, path="/")
    return {"success": True}


@router.get("/me", response_model=UserRead)
def read_me(current_user: User = Depends(get_current_user)) -> User:
    return current_user
