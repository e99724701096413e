"""Customer notifications for task completion.

Every buyer and seller on the transaction gets an in-app row; only customers
with email notifications enabled get an email. Each email is attempted on its
own so one bad address or provider error never blocks the rest.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Customer, FollowUpEvent, Notification, Transaction, utcnow
from .email import SendResult, mask_email, send_email

logger = logging.getLogger(__name__)

TASK_COMPLETED_TYPE = "task_completed"

EmailSender = Callable[[str, str, str], SendResult]


@dataclass
class DeliveryOutcome:
    customer_id: int
    email: str
    sent: bool
    error: Optional[str] = None


@dataclass
class DispatchReport:
    notifications_created: int = 0
    deliveries: List[DeliveryOutcome] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(1 for item in self.deliveries if item.sent)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.deliveries if not item.sent)


def transaction_customers(transaction: Transaction) -> List[Customer]:
    """Buyers then sellers, each customer once."""
    unique: Dict[int, Customer] = {}
    for customer in list(transaction.buyers) + list(transaction.sellers):
        unique.setdefault(customer.id, customer)
    return list(unique.values())


def portal_link(transaction_id: int) -> str:
    return f"/portal/transactions/{transaction_id}"


def _completion_message(task: FollowUpEvent, transaction: Transaction) -> str:
    address = transaction.property.address if transaction.property else None
    if address:
        return f"{task.event_name} - {address} has been completed."
    return f"{task.event_name} has been completed."


def _completion_email(customer: Customer, task: FollowUpEvent, transaction: Transaction) -> str:
    url = settings.app_url.rstrip("/") + portal_link(transaction.id)
    address = transaction.property.address if transaction.property else None
    address_line = f"<p><strong>Property:</strong> {html.escape(address)}</p>" if address else ""
    return (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
        f"<h2>Task Completed</h2>"
        f"<p>Hello {html.escape(customer.first_name)},</p>"
        f"<p>The task <strong>{html.escape(task.event_name)}</strong> has been completed.</p>"
        f"{address_line}"
        f"<p><a href=\"{html.escape(url)}\">View your transaction</a></p>"
        "</div>"
    )


def notify_task_completion(
    session: Session,
    task: FollowUpEvent,
    *,
    sender: Optional[EmailSender] = None,
) -> DispatchReport:
    sender = sender or send_email
    report = DispatchReport()
    transaction = task.transaction
    if transaction is None:
        return report

    customers = transaction_customers(transaction)
    if not customers:
        logger.info("Task %s completed; transaction %s has no customers to notify", task.id, transaction.id)
        return report

    message = _completion_message(task, transaction)
    now = utcnow()
    for customer in customers:
        session.add(
            Notification(
                customer_id=customer.id,
                type=TASK_COMPLETED_TYPE,
                title="Task Completed",
                message=message,
                link=portal_link(transaction.id),
                transaction_id=transaction.id,
                task_id=task.id,
                created_at=now,
            )
        )
    session.commit()
    report.notifications_created = len(customers)

    subject = f"Task Completed: {task.event_name}"
    for customer in customers:
        if not customer.email_notifications_enabled or not customer.email:
            continue
        try:
            sender(customer.email, subject, _completion_email(customer, task, transaction))
        except Exception as exc:
            logger.exception("Task completion email to %s failed", mask_email(customer.email))
            report.deliveries.append(DeliveryOutcome(customer.id, customer.email, sent=False, error=str(exc)))
            continue
        report.deliveries.append(DeliveryOutcome(customer.id, customer.email, sent=True))

    logger.info(
        "Task %s completion: %d notifications, %d emails sent, %d failed",
        task.id,
        report.notifications_created,
        report.sent,
        report.failed,
    )
    return report


# --- Portal inbox ---


def list_customer_notifications(session: Session, customer_id: int, limit: int = 50) -> List[Notification]:
    return (
        session.query(Notification)
        .filter(Notification.customer_id == customer_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def unread_count(session: Session, customer_id: int) -> int:
    return (
        session.query(Notification)
        .filter(Notification.customer_id == customer_id, Notification.is_read.is_(False))
        .count()
    )


def mark_read(session: Session, customer_id: int, notification_id: int) -> bool:
    notification = (
        session.query(Notification)
        .filter(Notification.id == notification_id, Notification.customer_id == customer_id)
        .first()
    )
    if notification is None:
        return False
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        session.commit()
    return True


def mark_all_read(session: Session, customer_id: int) -> int:
    unread = (
        session.query(Notification)
        .filter(Notification.customer_id == customer_id, Notification.is_read.is_(False))
        .all()
    )
    timestamp = utcnow()
    for notification in unread:
        notification.is_read = True
        notification.read_at = timestamp
    session.commit()
    return len(unread)
