from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.policy import Capability, Resource, require_capability
from ..models.models import User
from ..schemas.schemas import TemplateCreate, TemplateListResponse, TemplateRead, TemplateUpdate
from ..services import templates as template_service
from .dependencies import get_db

router = APIRouter()

require_view = require_capability(Resource.TEMPLATE, Capability.VIEW)
require_manage = require_capability(Resource.TEMPLATE, Capability.CREATE, Capability.UPDATE, Capability.DELETE)


@router.get("", response_model=TemplateListResponse)
def list_templates_endpoint(
    transaction_type: Optional[str] = Query(None, alias="type"),
    include_inactive: bool = Query(False),
    db: Session = Depends(get_db),
    _: User = Depends(require_view),
) -> TemplateListResponse:
    templates = template_service.list_templates(db, transaction_type, include_inactive)
    return TemplateListResponse(templates=[TemplateRead.model_validate(item) for item in templates])


@router.post("", response_model=TemplateRead)
def create_template_endpoint(
    payload: TemplateCreate,
    db: Session = Depends(get_db),
    _: User = Depends(require_manage),
):
    return template_service.create_template(db, payload)


@router.put("/{template_id}", response_model=TemplateRead)
def update_template_endpoint(
    template_id: int,
    payload: TemplateUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_manage),
):
    return template_service.update_template(db, template_id, payload)


@router.delete("/{template_id}")
def delete_template_endpoint(
    template_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_manage),
) -> dict:
    template_service.delete_template(db, template_id)
    return {"message": "Template deleted successfully"}
