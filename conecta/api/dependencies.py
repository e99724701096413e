from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ..auth.jwt import PortalIdentity, get_db, get_portal_identity
from ..core.errors import NotFound
from ..models.models import Agent, Customer

__all__ = ["get_db", "get_portal_customer", "get_portal_record"]


def get_portal_record(
    identity: PortalIdentity = Depends(get_portal_identity),
    db: Session = Depends(get_db),
) -> Agent | Customer:
    model = Agent if identity.is_agent else Customer
    record: Optional[Agent | Customer] = db.get(model, identity.user_id)
    if not (record and record.is_active and record.portal_access_enabled):
        raise NotFound("User not found")
    return record


def get_portal_customer(record: Agent | Customer = Depends(get_portal_record)) -> Optional[Customer]:
    """The signed-in customer, or ``None`` for an agent session."""
    return record if isinstance(record, Customer) else None
