from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ..constants import ANCHOR_DATE_FIELDS, DEFAULT_TASK_TEMPLATES, TRANSACTION_TYPES
from ..core.errors import NotFound
from ..models.models import FollowUpEvent, TaskTemplate, Transaction
from ..schemas.schemas import TemplateCreate, TemplateUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateSpec:
    event_name: str
    anchor: str
    days_offset: int
    priority: str
    description: Optional[str] = None
    template_id: Optional[int] = None


def templates_for(session: Session, transaction_type: str) -> List[TemplateSpec]:
    """Active stored templates for the type, or the built-in set when none exist."""
    stored = (
        session.query(TaskTemplate)
        .filter(TaskTemplate.transaction_type == transaction_type, TaskTemplate.is_active.is_(True))
        .order_by(TaskTemplate.sort_order.asc(), TaskTemplate.id.asc())
        .all()
    )
    if stored:
        return [
            TemplateSpec(
                event_name=template.event_name,
                anchor=template.anchor,
                days_offset=template.days_offset,
                priority=template.priority,
                description=template.description,
                template_id=template.id,
            )
            for template in stored
        ]
    return [TemplateSpec(**entry) for entry in DEFAULT_TASK_TEMPLATES]


def resolve_due_date(transaction: Transaction, anchor: str, days_offset: int) -> Optional[date]:
    field = ANCHOR_DATE_FIELDS.get(anchor, "contract_date")
    base = getattr(transaction, field, None) or transaction.contract_date
    if base is None:
        return None
    return base + timedelta(days=days_offset)


def instantiate_tasks(session: Session, transaction: Transaction) -> List[FollowUpEvent]:
    tasks: List[FollowUpEvent] = []
    for spec in templates_for(session, transaction.transaction_type):
        task = FollowUpEvent(
            transaction_id=transaction.id,
            template_id=spec.template_id,
            event_name=spec.event_name,
            description=spec.description,
            due_date=resolve_due_date(transaction, spec.anchor, spec.days_offset),
            priority=spec.priority,
            status="pending",
        )
        session.add(task)
        tasks.append(task)
    session.flush()
    logger.info("Created %d follow-up tasks for transaction %s", len(tasks), transaction.id)
    return tasks


def ensure_default_templates(session: Session) -> None:
    if session.query(TaskTemplate.id).first():
        return
    for transaction_type in TRANSACTION_TYPES:
        for index, entry in enumerate(DEFAULT_TASK_TEMPLATES):
            session.add(TaskTemplate(transaction_type=transaction_type, sort_order=index, **entry))
    session.commit()


def list_templates(session: Session, transaction_type: Optional[str] = None, include_inactive: bool = False):
    query = session.query(TaskTemplate)
    if transaction_type:
        query = query.filter(TaskTemplate.transaction_type == transaction_type)
    if not include_inactive:
        query = query.filter(TaskTemplate.is_active.is_(True))
    return query.order_by(
        TaskTemplate.transaction_type.asc(), TaskTemplate.sort_order.asc(), TaskTemplate.id.asc()
    ).all()


def create_template(session: Session, payload: TemplateCreate) -> TaskTemplate:
    template = TaskTemplate(**payload.model_dump())
    session.add(template)
    session.commit()
    session.refresh(template)
    return template


def _get_template(session: Session, template_id: int) -> TaskTemplate:
    template = session.get(TaskTemplate, template_id)
    if not template:
        raise NotFound("Template not found")
    return template


def update_template(session: Session, template_id: int, payload: TemplateUpdate) -> TaskTemplate:
    template = _get_template(session, template_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is None and key not in {"description"}:
            continue
        setattr(template, key, value)
    session.commit()
    session.refresh(template)
    return template


def delete_template(session: Session, template_id: int) -> None:
    template = _get_template(session, template_id)
    session.delete(template)
    session.commit()
