from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.policy import Capability, Resource, require_capability
from ..models.models import User
from ..schemas.schemas import TaskCreate, TaskEnvelope, TaskListResponse, TaskUpdate, TaskUpdateResponse
from ..services import tasks as task_service
from ..services.queries import TaskFilters, list_tasks
from .dependencies import get_db

router = APIRouter()

require_view = require_capability(Resource.TASK, Capability.VIEW)
require_create = require_capability(Resource.TASK, Capability.CREATE)
require_update = require_capability(Resource.TASK, Capability.UPDATE)
require_delete = require_capability(Resource.TASK, Capability.DELETE)

AUTO_CLOSE_MESSAGE = (
    "All tasks completed or marked as not applicable. Transaction has been automatically closed."
)


@router.get("", response_model=TaskListResponse)
def list_follow_ups(
    transaction_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    assigned_to: Optional[int] = Query(None),
    overdue: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    sort: str = Query("due_date"),
    order: str = Query("asc"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_view),
) -> TaskListResponse:
    filters = TaskFilters(
        transaction_id=transaction_id,
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        overdue=overdue,
        sort=sort,
        ascending=order.lower() == "asc",
    )
    today = date.today()
    tasks = list_tasks(db, current_user, filters, today, limit=limit, offset=offset)
    return TaskListResponse(followUps=[task_service.to_read(task, today) for task in tasks])


@router.post("", response_model=TaskEnvelope)
def create_follow_up(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_create),
) -> TaskEnvelope:
    task = task_service.create_task(db, payload, current_user)
    return TaskEnvelope(followUp=task_service.to_read(task))


@router.get("/{task_id}", response_model=TaskEnvelope)
def get_follow_up(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_view),
) -> TaskEnvelope:
    return TaskEnvelope(followUp=task_service.to_read(task_service.get_visible_task(db, current_user, task_id)))


@router.put("/{task_id}", response_model=TaskUpdateResponse)
@router.patch("/{task_id}", response_model=TaskUpdateResponse)
def update_follow_up(
    task_id: int,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_update),
) -> TaskUpdateResponse:
    task = task_service.get_visible_task(db, current_user, task_id)
    outcome = task_service.update_task(db, task, payload, current_user)
    return TaskUpdateResponse(
        followUp=task_service.to_read(outcome.task),
        transaction_auto_closed=outcome.transaction_auto_closed,
        message=AUTO_CLOSE_MESSAGE if outcome.transaction_auto_closed else None,
    )


@router.delete("/{task_id}")
def delete_follow_up(
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_delete),
) -> dict:
    task = task_service.get_visible_task(db, current_user, task_id)
    task_service.delete_task(db, task, current_user)
    return {"message": "Follow-up deleted successfully"}
