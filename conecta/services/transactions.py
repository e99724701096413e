from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import Table, delete, func, insert
from sqlalchemy.orm import Session

from ..constants import TASK_DONE_STATUSES
from ..core.errors import NotFound, ValidationFailure
from ..models.models import (
    Agent,
    Attorney,
    Customer,
    FollowUpEvent,
    Lender,
    Property,
    Role,
    Transaction,
    TransactionAssignment,
    User,
    transaction_buyers,
    transaction_sellers,
)
from ..schemas.schemas import (
    AgentSummary,
    AssignmentRead,
    AttorneySummary,
    LenderSummary,
    PartySummary,
    PropertyRead,
    TransactionCreate,
    TransactionDetail,
    TransactionListItem,
    TransactionRead,
    TransactionUpdate,
)
from .audit import audit_log, changed_fields
from .queries import progress_percent
from .templates import instantiate_tasks

logger = logging.getLogger(__name__)

NON_NULLABLE_FIELDS = {"transaction_type", "status", "priority"}

_REFERENCE_MODELS = {
    "property_id": Property,
    "listing_agent_id": Agent,
    "co_listing_agent_id": Agent,
    "buyer_agent_id": Agent,
    "co_buyer_agent_id": Agent,
    "lender_id": Lender,
    "attorney_id": Attorney,
}


class TransactionCloseBlocked(ValidationFailure):
    error = "Cannot close transaction"

    def __init__(self, incomplete_tasks: int) -> None:
        super().__init__(
            f"There are {incomplete_tasks} incomplete task(s). All tasks must be completed or marked "
            "as not applicable before closing the transaction.",
            incomplete_tasks=incomplete_tasks,
        )
        self.incomplete_tasks = incomplete_tasks


def count_incomplete_tasks(session: Session, transaction_id: int) -> int:
    return (
        session.query(func.count(FollowUpEvent.id))
        .filter(
            FollowUpEvent.transaction_id == transaction_id,
            FollowUpEvent.status.not_in(TASK_DONE_STATUSES),
        )
        .scalar()
        or 0
    )


def ensure_can_close(session: Session, transaction_id: int) -> None:
    incomplete = count_incomplete_tasks(session, transaction_id)
    if incomplete > 0:
        raise TransactionCloseBlocked(incomplete)


def _check_references(session: Session, data: Dict) -> None:
    for field, model in _REFERENCE_MODELS.items():
        value = data.get(field)
        if value is not None and session.get(model, value) is None:
            raise ValidationFailure(f"Unknown {field}: {value}")


def _check_customers(session: Session, customer_ids: Iterable[int]) -> List[int]:
    unique_ids = list(dict.fromkeys(customer_ids))
    if not unique_ids:
        return []
    found = {row[0] for row in session.query(Customer.id).filter(Customer.id.in_(unique_ids))}
    missing = [customer_id for customer_id in unique_ids if customer_id not in found]
    if missing:
        raise ValidationFailure(f"Unknown customer id(s): {', '.join(str(item) for item in missing)}")
    return unique_ids


def replace_parties(session: Session, table: Table, transaction_id: int, customer_ids: Sequence[int]) -> None:
    """Delete every link of one side, then insert the given ids once each."""
    session.execute(delete(table).where(table.c.transaction_id == transaction_id))
    rows = [
        {"transaction_id": transaction_id, "customer_id": customer_id} for customer_id in dict.fromkeys(customer_ids)
    ]
    if rows:
        session.execute(insert(table), rows)


def _snapshot(transaction: Transaction) -> Dict:
    return TransactionRead.model_validate(transaction).model_dump(mode="json")


def create_transaction(session: Session, payload: TransactionCreate, actor: User) -> Transaction:
    data = payload.model_dump()
    buyer_ids = _check_customers(session, data.pop("buyer_ids", None) or [])
    seller_ids = _check_customers(session, data.pop("seller_ids", None) or [])
    _check_references(session, data)
    data["status"] = data.get("status") or "pending"
    data["priority"] = data.get("priority") or "medium"

    transaction = Transaction(**data, created_by_user_id=actor.id)
    session.add(transaction)
    session.flush()

    replace_parties(session, transaction_buyers, transaction.id, buyer_ids)
    replace_parties(session, transaction_sellers, transaction.id, seller_ids)
    instantiate_tasks(session, transaction)
    audit_log(session, actor, "transaction.create", transaction, after=_snapshot(transaction))
    session.commit()
    session.refresh(transaction)
    logger.info("Transaction %s created by user %s", transaction.id, actor.id)
    return transaction


def update_transaction(
    session: Session, transaction: Transaction, payload: TransactionUpdate, actor: User
) -> Transaction:
    """Apply the fields present in ``payload``.

    Validation (close-gate, references) runs before anything is written, so a
    rejected update leaves the row and its links untouched.
    """
    data = payload.model_dump(exclude_unset=True)
    buyer_ids = data.pop("buyer_ids", None)
    seller_ids = data.pop("seller_ids", None)
    for field in NON_NULLABLE_FIELDS:
        if field in data and data[field] is None:
            data.pop(field)

    if data.get("status") == "closed":
        ensure_can_close(session, transaction.id)
    _check_references(session, data)
    if buyer_ids is not None:
        buyer_ids = _check_customers(session, buyer_ids)
    if seller_ids is not None:
        seller_ids = _check_customers(session, seller_ids)

    before = _snapshot(transaction)
    for key, value in data.items():
        setattr(transaction, key, value)
    if buyer_ids is not None:
        replace_parties(session, transaction_buyers, transaction.id, buyer_ids)
    if seller_ids is not None:
        replace_parties(session, transaction_sellers, transaction.id, seller_ids)
    session.flush()

    before, after = changed_fields(before, _snapshot(transaction))
    audit_log(
        session,
        actor,
        "transaction.status_change" if "status" in after else "transaction.update",
        transaction,
        before=before,
        after=after,
    )
    session.commit()
    session.refresh(transaction)
    return transaction


def soft_delete_transaction(session: Session, transaction: Transaction, actor: User) -> None:
    transaction.is_active = False
    audit_log(
        session, actor, "transaction.delete", transaction, before={"is_active": True}, after={"is_active": False}
    )
    session.commit()
    logger.info("Transaction %s soft-deleted by user %s", transaction.id, actor.id)


def close_if_all_tasks_done(session: Session, transaction_id: int, actor: Optional[User]) -> bool:
    """Close a pending transaction once it has tasks and none are outstanding."""
    transaction = session.get(Transaction, transaction_id)
    if transaction is None or transaction.status != "pending":
        return False
    total = (
        session.query(func.count(FollowUpEvent.id)).filter(FollowUpEvent.transaction_id == transaction_id).scalar()
        or 0
    )
    if total == 0 or count_incomplete_tasks(session, transaction_id) > 0:
        return False
    transaction.status = "closed"
    audit_log(
        session, actor, "transaction.auto_close", transaction, before={"status": "pending"}, after={"status": "closed"}
    )
    logger.info("Transaction %s auto-closed after its last task was completed", transaction_id)
    return True


def _agent_name(agent: Optional[Agent]) -> Optional[str]:
    return agent.full_name if agent else None


def to_list_item(transaction: Transaction, total_tasks: int, completed_tasks: int) -> TransactionListItem:
    base = TransactionRead.model_validate(transaction).model_dump()
    return TransactionListItem(
        **base,
        property_address=transaction.property.address if transaction.property else None,
        property_city=transaction.property.city if transaction.property else None,
        listing_agent_name=_agent_name(transaction.listing_agent),
        buyer_agent_name=_agent_name(transaction.buyer_agent),
        buyers=[PartySummary.model_validate(customer) for customer in transaction.buyers],
        sellers=[PartySummary.model_validate(customer) for customer in transaction.sellers],
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        progress_percent=progress_percent(total_tasks, completed_tasks),
    )


def build_detail(transaction: Transaction) -> TransactionDetail:
    def agent(value: Optional[Agent]) -> Optional[AgentSummary]:
        return AgentSummary.model_validate(value) if value else None

    return TransactionDetail(
        transaction=TransactionRead.model_validate(transaction),
        property=PropertyRead.model_validate(transaction.property) if transaction.property else None,
        buyers=[PartySummary.model_validate(customer) for customer in transaction.buyers],
        sellers=[PartySummary.model_validate(customer) for customer in transaction.sellers],
        listing_agent=agent(transaction.listing_agent),
        co_listing_agent=agent(transaction.co_listing_agent),
        buyer_agent=agent(transaction.buyer_agent),
        co_buyer_agent=agent(transaction.co_buyer_agent),
        lender=LenderSummary.model_validate(transaction.lender) if transaction.lender else None,
        attorney=AttorneySummary.model_validate(transaction.attorney) if transaction.attorney else None,
    )


# --- Assignments ---


def _assignment_read(assignment: TransactionAssignment) -> AssignmentRead:
    return AssignmentRead(
        id=assignment.id,
        transaction_id=assignment.transaction_id,
        assigned_to_user_id=assignment.assigned_to_user_id,
        assigned_by_user_id=assignment.assigned_by_user_id,
        notes=assignment.notes,
        assigned_at=assignment.assigned_at,
        assigned_to_name=assignment.assigned_to.full_name if assignment.assigned_to else None,
        assigned_to_email=assignment.assigned_to.email if assignment.assigned_to else None,
        assigned_by_name=assignment.assigned_by.full_name if assignment.assigned_by else None,
    )


def list_assignments(session: Session, transaction_id: int) -> List[AssignmentRead]:
    assignments = (
        session.query(TransactionAssignment)
        .filter(TransactionAssignment.transaction_id == transaction_id)
        .order_by(TransactionAssignment.assigned_at.desc(), TransactionAssignment.id.desc())
        .all()
    )
    return [_assignment_read(assignment) for assignment in assignments]


def assign_assistant(
    session: Session,
    transaction: Transaction,
    assistant_user_id: int,
    notes: Optional[str],
    actor: User,
) -> AssignmentRead:
    assistant = session.get(User, assistant_user_id)
    if assistant is None or not assistant.is_active:
        raise NotFound("User not found")
    if not assistant.has_role("assistant"):
        raise ValidationFailure("User is not an assistant")

    assignment = (
        session.query(TransactionAssignment)
        .filter(
            TransactionAssignment.transaction_id == transaction.id,
            TransactionAssignment.assigned_to_user_id == assistant.id,
        )
        .first()
    )
    if assignment is None:
        assignment = TransactionAssignment(
            transaction_id=transaction.id,
            assigned_to_user_id=assistant.id,
            assigned_by_user_id=actor.id,
            notes=notes,
        )
        session.add(assignment)
    else:
        assignment.notes = notes
        assignment.assigned_by_user_id = actor.id
    session.flush()
    audit_log(
        session, actor, "transaction.assign", transaction, after={"assistant_user_id": assistant.id, "notes": notes}
    )
    session.commit()
    session.refresh(assignment)
    return _assignment_read(assignment)


def remove_assignment(session: Session, transaction: Transaction, assistant_user_id: int, actor: User) -> None:
    assignment = (
        session.query(TransactionAssignment)
        .filter(
            TransactionAssignment.transaction_id == transaction.id,
            TransactionAssignment.assigned_to_user_id == assistant_user_id,
        )
        .first()
    )
    if assignment is None:
        raise NotFound("Assignment not found")
    session.delete(assignment)
    audit_log(session, actor, "transaction.unassign", transaction, before={"assistant_user_id": assistant_user_id})
    session.commit()


def list_assistants(session: Session) -> List[User]:
    return (
        session.query(User)
        .join(User.role)
        .filter(User.is_active.is_(True), Role.name == "assistant")
        .order_by(User.first_name.asc(), User.last_name.asc(), User.email.asc())
        .all()
    )
