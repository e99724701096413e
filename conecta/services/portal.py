"""Client portal: agents and customers signing in with portal credentials."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload

from ..auth.jwt import verify_password
from ..constants import DEFAULT_PREFERRED_LANGUAGE
from ..core.errors import Unauthorized
from ..models.models import Agent, Customer, Transaction, transaction_buyers, transaction_sellers
from ..schemas.schemas import PortalTransactionItem
from .queries import progress_percent, task_counts_subquery

PortalRecord = Union[Agent, Customer]

_AGENT_ROLES = (
    ("listing_agent_id", "listing_agent"),
    ("buyer_agent_id", "buyer_agent"),
    ("co_listing_agent_id", "co_listing_agent"),
    ("co_buyer_agent_id", "co_buyer_agent"),
)


def authenticate(session: Session, email: str, password: str) -> Tuple[PortalRecord, bool]:
    """Agents with portal access win over customers sharing the same address."""
    normalized = email.strip().lower()
    agent = (
        session.query(Agent)
        .filter(
            func.lower(Agent.portal_email) == normalized,
            Agent.portal_access_enabled.is_(True),
            Agent.is_active.is_(True),
        )
        .first()
    )
    if agent is not None:
        if not verify_password(password, agent.portal_password_hash):
            raise Unauthorized("Invalid credentials")
        return agent, True

    customer = (
        session.query(Customer)
        .filter(
            func.lower(Customer.email) == normalized,
            Customer.portal_access_enabled.is_(True),
            Customer.is_active.is_(True),
        )
        .first()
    )
    if customer is None or not verify_password(password, customer.portal_password_hash):
        raise Unauthorized("Invalid credentials")
    return customer, False


def portal_email(record: PortalRecord) -> str:
    if isinstance(record, Agent):
        return record.portal_email or record.email or ""
    return record.email or ""


def profile(record: PortalRecord) -> Dict:
    if isinstance(record, Agent):
        return {
            "id": record.id,
            "email": portal_email(record),
            "firstName": record.first_name,
            "lastName": record.last_name,
            "role": "agent",
            "agentId": record.id,
            "preferredLanguage": record.preferred_language or DEFAULT_PREFERRED_LANGUAGE,
        }
    return {
        "id": record.id,
        "email": record.email,
        "firstName": record.first_name,
        "lastName": record.last_name,
        "role": "customer",
        "customerId": record.id,
        "smsNotificationsEnabled": record.sms_notifications_enabled,
        "emailNotificationsEnabled": record.email_notifications_enabled,
        "preferredLanguage": record.preferred_language or DEFAULT_PREFERRED_LANGUAGE,
    }


def _agent_role(transaction: Transaction, agent_id: int) -> Optional[str]:
    for column, role in _AGENT_ROLES:
        if getattr(transaction, column) == agent_id:
            return role
    return None


def list_portal_transactions(session: Session, record: PortalRecord) -> List[PortalTransactionItem]:
    counts = task_counts_subquery(session)
    query = (
        session.query(
            Transaction,
            func.coalesce(counts.c.total_tasks, 0),
            func.coalesce(counts.c.completed_tasks, 0),
        )
        .outerjoin(counts, counts.c.transaction_id == Transaction.id)
        .options(joinedload(Transaction.property))
        .filter(Transaction.is_active.is_(True))
    )
    buyer_of = set()
    if isinstance(record, Agent):
        query = query.filter(or_(*(getattr(Transaction, column) == record.id for column, _ in _AGENT_ROLES)))
    else:
        buyer_of = set(
            session.execute(
                select(transaction_buyers.c.transaction_id).where(transaction_buyers.c.customer_id == record.id)
            ).scalars()
        )
        seller_of = select(transaction_sellers.c.transaction_id).where(transaction_sellers.c.customer_id == record.id)
        query = query.filter(or_(Transaction.id.in_(sorted(buyer_of)), Transaction.id.in_(seller_of)))

    items = []
    for transaction, total, completed in query.order_by(Transaction.created_at.desc(), Transaction.id.desc()):
        if isinstance(record, Agent):
            role = _agent_role(transaction, record.id)
        else:
            role = "buyer" if transaction.id in buyer_of else "seller"
        items.append(
            PortalTransactionItem(
                id=transaction.id,
                transaction_type=transaction.transaction_type,
                status=transaction.status,
                property_address=transaction.property_address,
                closing_date=transaction.closing_date,
                role=role,
                total_tasks=int(total or 0),
                completed_tasks=int(completed or 0),
                progress_percent=progress_percent(int(total or 0), int(completed or 0)),
            )
        )
    return items
