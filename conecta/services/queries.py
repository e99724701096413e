"""Query builders for transaction and task listings.

Filters and ORDER BY clauses are assembled from enums mapped onto SQLAlchemy
column expressions; request values never reach SQL text.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy import case, func, nulls_last, select
from sqlalchemy.orm import Query, Session, joinedload

from ..auth.policy import sees_only_assigned
from ..constants import (
    PRIORITY_SORT_RANK,
    PRIORITY_SORT_RANK_OTHER,
    STATUS_SORT_RANK,
    STATUS_SORT_RANK_OTHER,
    TASK_DONE_STATUSES,
)
from ..models.models import FollowUpEvent, Property, Transaction, TransactionAssignment, User


class SortColumn(str, Enum):
    CREATED_AT = "created_at"
    CLOSING_DATE = "closing_date"
    PROPERTY_ADDRESS = "property_address"
    STATUS = "status"
    PURCHASE_PRICE = "purchase_price"
    PRIORITY = "priority"


@dataclass(frozen=True)
class SortSpec:
    column: SortColumn
    ascending: bool


DEFAULT_SORT = SortSpec(SortColumn.CLOSING_DATE, ascending=True)


@dataclass(frozen=True)
class TransactionFilters:
    status: Optional[str] = None
    priority: Optional[str] = None
    transaction_type: Optional[str] = None


status_rank = case(STATUS_SORT_RANK, value=Transaction.status, else_=STATUS_SORT_RANK_OTHER)
transaction_priority_rank = case(
    {"low": 1, "medium": 2, "high": 3, "urgent": 4}, value=Transaction.priority, else_=5
)

_SORT_EXPRESSIONS = {
    SortColumn.CREATED_AT: Transaction.created_at,
    SortColumn.CLOSING_DATE: Transaction.closing_date,
    SortColumn.PROPERTY_ADDRESS: Property.address,
    SortColumn.STATUS: status_rank,
    SortColumn.PURCHASE_PRICE: Transaction.purchase_price,
    SortColumn.PRIORITY: transaction_priority_rank,
}


def parse_sort(sort: Optional[str], order: Optional[str]) -> SortSpec:
    """Map raw query parameters onto an allowed sort.

    A column outside the allow-list yields the default (closing date,
    ascending) whatever ``order`` says.
    """
    try:
        column = SortColumn(sort) if sort else DEFAULT_SORT.column
    except ValueError:
        return DEFAULT_SORT
    if order is None:
        return SortSpec(column, ascending=True)
    return SortSpec(column, ascending=order.strip().lower() == "asc")


def task_counts_subquery(session: Session):
    done = case((FollowUpEvent.status.in_(TASK_DONE_STATUSES), 1), else_=0)
    return (
        session.query(
            FollowUpEvent.transaction_id.label("transaction_id"),
            func.count(FollowUpEvent.id).label("total_tasks"),
            func.coalesce(func.sum(done), 0).label("completed_tasks"),
        )
        .group_by(FollowUpEvent.transaction_id)
        .subquery()
    )


def progress_percent(total: int, completed: int) -> Optional[int]:
    """``None`` means there is nothing to measure; the UI hides the bar."""
    if not total:
        return None
    return int(round(completed * 100 / total))


def visible_transactions(session: Session, user: User) -> Query:
    query = session.query(Transaction).filter(Transaction.is_active.is_(True))
    if sees_only_assigned(user):
        query = query.join(
            TransactionAssignment,
            (TransactionAssignment.transaction_id == Transaction.id)
            & (TransactionAssignment.assigned_to_user_id == user.id),
        )
    return query


def get_visible_transaction(session: Session, user: User, transaction_id: int) -> Optional[Transaction]:
    return visible_transactions(session, user).filter(Transaction.id == transaction_id).first()


def list_transactions(
    session: Session,
    user: User,
    filters: TransactionFilters,
    sort: SortSpec,
    limit: int = 50,
    offset: int = 0,
) -> List[Tuple[Transaction, int, int]]:
    counts = task_counts_subquery(session)
    query = (
        visible_transactions(session, user)
        .outerjoin(Property, Property.id == Transaction.property_id)
        .outerjoin(counts, counts.c.transaction_id == Transaction.id)
        .add_columns(
            func.coalesce(counts.c.total_tasks, 0),
            func.coalesce(counts.c.completed_tasks, 0),
        )
        .options(
            joinedload(Transaction.property),
            joinedload(Transaction.listing_agent),
            joinedload(Transaction.buyer_agent),
        )
    )
    if filters.status:
        query = query.filter(Transaction.status == filters.status)
    if filters.priority:
        query = query.filter(Transaction.priority == filters.priority)
    if filters.transaction_type:
        query = query.filter(Transaction.transaction_type == filters.transaction_type)

    primary = _SORT_EXPRESSIONS[sort.column]
    primary = primary.asc() if sort.ascending else primary.desc()
    query = query.order_by(nulls_last(primary), status_rank.asc(), Transaction.id.asc())

    rows = query.limit(limit).offset(offset).all()
    return [(transaction, int(total or 0), int(completed or 0)) for transaction, total, completed in rows]


# --- Tasks ---

task_priority_rank = case(PRIORITY_SORT_RANK, value=FollowUpEvent.priority, else_=PRIORITY_SORT_RANK_OTHER)


def overdue_condition(today: date):
    return (
        FollowUpEvent.due_date.isnot(None)
        & (FollowUpEvent.due_date < today)
        & FollowUpEvent.status.not_in(TASK_DONE_STATUSES + ("cancelled",))
    )


@dataclass(frozen=True)
class TaskFilters:
    transaction_id: Optional[int] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assigned_to: Optional[int] = None
    overdue: bool = False
    sort: str = "due_date"
    ascending: bool = True


def list_tasks(
    session: Session,
    user: User,
    filters: TaskFilters,
    today: date,
    limit: int = 100,
    offset: int = 0,
) -> List[FollowUpEvent]:
    """Tasks of active, pending transactions the caller can see; overdue first, then by urgency."""
    visible_ids = (
        visible_transactions(session, user)
        .filter(Transaction.status == "pending")
        .with_entities(Transaction.id.label("id"))
        .subquery()
    )
    query = (
        session.query(FollowUpEvent)
        .filter(FollowUpEvent.transaction_id.in_(select(visible_ids.c.id)))
        .options(
            joinedload(FollowUpEvent.transaction).joinedload(Transaction.property),
            joinedload(FollowUpEvent.assigned_to),
        )
    )
    if filters.transaction_id is not None:
        query = query.filter(FollowUpEvent.transaction_id == filters.transaction_id)
    is_overdue = (FollowUpEvent.status == "overdue") | overdue_condition(today)
    if filters.status:
        if filters.status == "overdue":
            query = query.filter(is_overdue)
        else:
            query = query.filter(FollowUpEvent.status == filters.status)
    if filters.priority:
        query = query.filter(FollowUpEvent.priority == filters.priority)
    if filters.assigned_to is not None:
        query = query.filter(FollowUpEvent.assigned_to_user_id == filters.assigned_to)
    if filters.overdue:
        query = query.filter(is_overdue)

    overdue_first = case((is_overdue, 0), else_=1)
    column = FollowUpEvent.due_date if filters.sort == "due_date" else FollowUpEvent.created_at
    query = query.order_by(
        overdue_first,
        task_priority_rank,
        nulls_last(column.asc() if filters.ascending else column.desc()),
        FollowUpEvent.id.asc(),
    )
    return query.limit(limit).offset(offset).all()
