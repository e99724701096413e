from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.jwt import get_current_user
from ..models.models import User
from ..schemas.schemas import AssistantRead
from ..services.transactions import list_assistants
from .dependencies import get_db

router = APIRouter()


@router.get("/assistants")
def list_assistants_endpoint(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
) -> dict:
    return {
        "assistants": [
            AssistantRead(id=user.id, email=user.email, full_name=user.full_name).model_dump()
            for user in list_assistants(db)
        ]
    }
