import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..auth.jwt import create_portal_token
from ..constants import PORTAL_COOKIE_NAME
from ..core.errors import NotFound, Unauthorized, ValidationFailure
from ..core.rate_limit import rate_limit_dependency
from ..models.models import Agent, Customer
from ..schemas.schemas import (
    LoginRequest,
    NotificationListResponse,
    NotificationPatch,
    NotificationPreferencesRead,
    NotificationPreferencesUpdate,
    NotificationRead,
    PortalTransactionListResponse,
)
from ..services import notifications as notification_service
from ..services import portal as portal_service
from ..services.email import mask_email
from .auth import set_session_cookie
from .dependencies import get_db, get_portal_customer, get_portal_record

logger = logging.getLogger(__name__)

router = APIRouter()

portal_login_rate_limit = rate_limit_dependency("portal-login", limit=10, window_seconds=60)


@router.post("/auth/login", dependencies=[Depends(portal_login_rate_limit)])
def portal_login(payload: LoginRequest, response: Response, db: Session = Depends(get_db)) -> dict:
    try:
        record, is_agent = portal_service.authenticate(db, payload.email, payload.password)
    except Unauthorized:
        logger.info("Failed portal login for %s", mask_email(payload.email))
        raise
    email = portal_service.portal_email(record)
    set_session_cookie(response, PORTAL_COOKIE_NAME, create_portal_token(record.id, email, is_agent))
    user = portal_service.profile(record)
    return {"user": {key: user[key] for key in ("id", "email", "firstName", "lastName", "role")}}


@router.post("/auth/logout")
def portal_logout(response: Response) -> dict:
    response.delete_cookie(PORTAL_COOKIE_NAME, path="/")
    return {"success": True}


@router.get("/auth/me")
def portal_me(record: Agent | Customer = Depends(get_portal_record)) -> dict:
    return {"user": portal_service.profile(record)}


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    customer: Optional[Customer] = Depends(get_portal_customer),
    db: Session = Depends(get_db),
) -> NotificationListResponse:
    if customer is None:
        return NotificationListResponse(notifications=[], unreadCount=0)
    notifications = notification_service.list_customer_notifications(db, customer.id)
    return NotificationListResponse(
        notifications=[NotificationRead.model_validate(item) for item in notifications],
        unreadCount=notification_service.unread_count(db, customer.id),
    )


@router.patch("/notifications")
def update_notifications(
    payload: NotificationPatch,
    customer: Optional[Customer] = Depends(get_portal_customer),
    db: Session = Depends(get_db),
) -> dict:
    if customer is None:
        raise NotFound("Customer not found")
    if payload.mark_all_as_read:
        notification_service.mark_all_read(db, customer.id)
    elif payload.notification_id is not None:
        if not notification_service.mark_read(db, customer.id, payload.notification_id):
            raise NotFound("Notification not found")
    else:
        raise ValidationFailure("Provide notificationId or markAllAsRead")
    return {"success": True}


@router.put("/settings/notifications")
def update_notification_settings(
    payload: NotificationPreferencesUpdate,
    customer: Optional[Customer] = Depends(get_portal_customer),
    db: Session = Depends(get_db),
) -> dict:
    if customer is None:
        raise NotFound("Customer not found")
    if payload.sms_notifications_enabled is not None:
        customer.sms_notifications_enabled = payload.sms_notifications_enabled
    if payload.email_notifications_enabled is not None:
        customer.email_notifications_enabled = payload.email_notifications_enabled
    db.commit()
    db.refresh(customer)
    preferences = NotificationPreferencesRead(
        smsNotificationsEnabled=customer.sms_notifications_enabled,
        emailNotificationsEnabled=customer.email_notifications_enabled,
    )
    return {"success": True, "preferences": preferences.model_dump()}


@router.get("/transactions", response_model=PortalTransactionListResponse)
def list_transactions(
    record: Agent | Customer = Depends(get_portal_record),
    db: Session = Depends(get_db),
) -> PortalTransactionListResponse:
    return PortalTransactionListResponse(transactions=portal_service.list_portal_transactions(db, record))
