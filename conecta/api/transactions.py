from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.jwt import get_current_user
from ..auth.policy import Capability, Resource, require_capability
from ..core.errors import NotFound
from ..models.models import Transaction, User
from ..schemas.schemas import (
    AssignmentCreate,
    AssignmentListResponse,
    TransactionCreate,
    TransactionDetail,
    TransactionEnvelope,
    TransactionListResponse,
    TransactionRead,
    TransactionUpdate,
)
from ..services import transactions as transaction_service
from ..services.queries import TransactionFilters, get_visible_transaction, list_transactions, parse_sort
from .dependencies import get_db

router = APIRouter()

require_create = require_capability(Resource.TRANSACTION, Capability.CREATE)
require_update = require_capability(Resource.TRANSACTION, Capability.UPDATE)
require_delete = require_capability(Resource.TRANSACTION, Capability.DELETE)
require_assign = require_capability(Resource.TRANSACTION, Capability.ASSIGN)


def _get_or_404(db: Session, user: User, transaction_id: int) -> Transaction:
    transaction = get_visible_transaction(db, user, transaction_id)
    if not transaction:
        raise NotFound("Transaction not found")
    return transaction


@router.get("", response_model=TransactionListResponse)
def list_transactions_endpoint(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    transaction_type: Optional[str] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    sort: Optional[str] = Query(None),
    order: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TransactionListResponse:
    filters = TransactionFilters(status=status_filter, priority=priority, transaction_type=transaction_type)
    rows = list_transactions(db, current_user, filters, parse_sort(sort, order), limit=limit, offset=offset)
    return TransactionListResponse(
        transactions=[transaction_service.to_list_item(transaction, total, done) for transaction, total, done in rows]
    )


@router.post("", response_model=TransactionEnvelope)
def create_transaction_endpoint(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_create),
) -> TransactionEnvelope:
    transaction = transaction_service.create_transaction(db, payload, current_user)
    return TransactionEnvelope(transaction=TransactionRead.model_validate(transaction))


@router.get("/{transaction_id}", response_model=TransactionDetail)
def get_transaction_endpoint(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TransactionDetail:
    return transaction_service.build_detail(_get_or_404(db, current_user, transaction_id))


@router.put("/{transaction_id}", response_model=TransactionEnvelope)
def update_transaction_endpoint(
    transaction_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_update),
) -> TransactionEnvelope:
    transaction = _get_or_404(db, current_user, transaction_id)
    transaction = transaction_service.update_transaction(db, transaction, payload, current_user)
    return TransactionEnvelope(transaction=TransactionRead.model_validate(transaction))


@router.delete("/{transaction_id}")
def delete_transaction_endpoint(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_delete),
) -> dict:
    transaction = _get_or_404(db, current_user, transaction_id)
    transaction_service.soft_delete_transaction(db, transaction, current_user)
    return {"success": True, "message": "Transaction deleted"}


@router.get("/{transaction_id}/assignments", response_model=AssignmentListResponse)
def list_assignments_endpoint(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AssignmentListResponse:
    _get_or_404(db, current_user, transaction_id)
    return AssignmentListResponse(assignments=transaction_service.list_assignments(db, transaction_id))


@router.post("/{transaction_id}/assignments")
def create_assignment_endpoint(
    transaction_id: int,
    payload: AssignmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_assign),
) -> dict:
    transaction = _get_or_404(db, current_user, transaction_id)
    assignment = transaction_service.assign_assistant(
        db, transaction, payload.assistant_user_id, payload.notes, current_user
    )
    return {"assignment": assignment.model_dump(mode="json")}


@router.delete("/{transaction_id}/assignments")
def delete_assignment_endpoint(
    transaction_id: int,
    assistant_user_id: int = Query(..., alias="assistantUserId"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_assign),
) -> dict:
    transaction = _get_or_404(db, current_user, transaction_id)
    transaction_service.remove_assignment(db, transaction, assistant_user_id, current_user)
    return {"success": True}
