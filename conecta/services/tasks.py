from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ..constants import TASK_DONE_STATUSES
from ..core.errors import NotFound, ValidationFailure
from ..models.models import FollowUpEvent, User, utcnow
from ..schemas.schemas import TaskCreate, TaskRead, TaskUpdate
from . import notifications as notification_service
from .audit import audit_log
from .queries import get_visible_transaction
from .transactions import close_if_all_tasks_done

logger = logging.getLogger(__name__)

NON_NULLABLE_FIELDS = {"event_name", "priority", "status"}


@dataclass
class TaskUpdateOutcome:
    task: FollowUpEvent
    transaction_auto_closed: bool = False


def is_overdue(task: FollowUpEvent, today: date) -> bool:
    if task.status == "overdue":
        return True
    if task.due_date is None or task.status in TASK_DONE_STATUSES or task.status == "cancelled":
        return False
    return task.due_date < today


def to_read(task: FollowUpEvent, today: Optional[date] = None) -> TaskRead:
    today = today or date.today()
    transaction = task.transaction
    read = TaskRead.model_validate(task)
    return read.model_copy(
        update={
            "property_address": transaction.property_address if transaction else None,
            "transaction_type": transaction.transaction_type if transaction else None,
            "assigned_to_name": task.assigned_to.full_name if task.assigned_to else None,
            "is_overdue": is_overdue(task, today),
        }
    )


def get_visible_task(session: Session, user: User, task_id: int) -> FollowUpEvent:
    task = session.get(FollowUpEvent, task_id)
    if task is None or get_visible_transaction(session, user, task.transaction_id) is None:
        raise NotFound("Follow-up not found")
    return task


def _check_assignee(session: Session, user_id: Optional[int]) -> None:
    if user_id is not None and session.get(User, user_id) is None:
        raise ValidationFailure(f"Unknown assigned_to_user_id: {user_id}")


def create_task(session: Session, payload: TaskCreate, actor: User) -> FollowUpEvent:
    if get_visible_transaction(session, actor, payload.transaction_id) is None:
        raise NotFound("Transaction not found")
    _check_assignee(session, payload.assigned_to_user_id)
    task = FollowUpEvent(**payload.model_dump())
    if task.status == "completed":
        task.completed_at = utcnow()
    session.add(task)
    session.commit()
    session.refresh(task)
    return task


def update_task(session: Session, task: FollowUpEvent, payload: TaskUpdate, actor: User) -> TaskUpdateOutcome:
    """Apply a partial update.

    Completing a task notifies the transaction's customers; moving the last
    outstanding task to a done status closes the transaction.
    """
    data = payload.model_dump(exclude_unset=True)
    for field in NON_NULLABLE_FIELDS:
        if field in data and data[field] is None:
            data.pop(field)
    if "assigned_to_user_id" in data:
        _check_assignee(session, data["assigned_to_user_id"])

    previous_status = task.status
    for key, value in data.items():
        setattr(task, key, value)
    if "status" in data:
        if task.status == "completed":
            if previous_status != "completed" or task.completed_at is None:
                task.completed_at = utcnow()
        else:
            task.completed_at = None
    session.flush()

    outcome = TaskUpdateOutcome(task=task)
    if task.status != previous_status:
        audit_log(
            session,
            actor,
            "task.status_change",
            task,
            before={"status": previous_status},
            after={"status": task.status},
        )
        if task.status in TASK_DONE_STATUSES:
            outcome.transaction_auto_closed = close_if_all_tasks_done(session, task.transaction_id, actor)
    session.commit()
    session.refresh(task)

    if task.status == "completed" and previous_status != "completed":
        try:
            notification_service.notify_task_completion(session, task)
        except Exception:
            # The task update is already committed; notification problems are reported, not raised.
            session.rollback()
            logger.exception("Failed to dispatch completion notifications for task %s", task.id)
    return outcome


def delete_task(session: Session, task: FollowUpEvent, actor: User) -> None:
    audit_log(
        session,
        actor,
        "task.delete",
        task,
        before={"event_name": task.event_name, "status": task.status, "transaction_id": task.transaction_id},
    )
    session.delete(task)
    session.commit()
