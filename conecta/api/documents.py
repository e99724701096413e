from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ..auth.jwt import get_current_user
from ..auth.policy import Capability, Resource, require_capability
from ..core.errors import NotFound
from ..models.models import User
from ..schemas.schemas import (
    DocumentEnvelope,
    DocumentListResponse,
    DocumentRegister,
    DocumentTypeRead,
    FixPermissionsRequest,
    FixPermissionsResponse,
    MigrationReportResponse,
    SetPublicRequest,
    SetPublicResponse,
    UploadTokenRequest,
    UploadTokenResponse,
)
from ..services import documents as document_service
from ..services.google_drive import GoogleDriveService, get_drive_service
from ..services.queries import get_visible_transaction
from .dependencies import get_db

router = APIRouter()
types_router = APIRouter()

require_view = require_capability(Resource.DOCUMENT, Capability.VIEW)
require_register = require_capability(Resource.DOCUMENT, Capability.REGISTER)
require_upload = require_capability(Resource.DRIVE, Capability.UPLOAD)
require_drive_admin = require_capability(Resource.DRIVE, Capability.MANAGE)


@types_router.get("")
def list_document_types(db: Session = Depends(get_db), _: User = Depends(get_current_user)) -> dict:
    types = document_service.list_document_types(db)
    return {"documentTypes": [DocumentTypeRead.model_validate(item).model_dump() for item in types]}


@router.get("", response_model=DocumentListResponse)
def list_documents(
    task_id: Optional[int] = Query(None),
    transaction_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_view),
) -> DocumentListResponse:
    documents = document_service.list_documents(db, current_user, task_id=task_id, transaction_id=transaction_id)
    return DocumentListResponse(documents=[document_service.to_read(item) for item in documents])


@router.post("", response_model=DocumentEnvelope, status_code=status.HTTP_201_CREATED)
def register_document(
    payload: DocumentRegister,
    db: Session = Depends(get_db),
    drive: GoogleDriveService = Depends(get_drive_service),
    current_user: User = Depends(require_register),
) -> DocumentEnvelope:
    document = document_service.register_document(db, drive, payload, current_user)
    return DocumentEnvelope(document=document_service.to_read(document))


@router.post("/upload-token", response_model=UploadTokenResponse)
def create_upload_token(
    payload: UploadTokenRequest,
    db: Session = Depends(get_db),
    drive: GoogleDriveService = Depends(get_drive_service),
    current_user: User = Depends(require_upload),
) -> UploadTokenResponse:
    """Hand the browser a short-lived token so it can upload straight to Drive."""
    access_token = drive.access_token()
    if payload.transaction_id is not None:
        transaction = get_visible_transaction(db, current_user, payload.transaction_id)
        if not transaction:
            raise NotFound("Transaction not found")
        folder_id: Optional[str] = drive.get_or_create_transaction_folder(transaction)
    else:
        folder = drive.current_folder()
        folder_id = folder.id if folder else None
    return UploadTokenResponse(accessToken=access_token, folderId=folder_id)


@router.post("/set-public", response_model=SetPublicResponse)
def set_public(
    payload: SetPublicRequest,
    drive: GoogleDriveService = Depends(get_drive_service),
    _: User = Depends(require_upload),
) -> SetPublicResponse:
    drive.make_public(payload.file_id)
    info = drive.get_file(payload.file_id, fields="id,webViewLink")
    return SetPublicResponse(success=True, webViewLink=info.web_view_link)


@router.post("/fix-permissions", response_model=FixPermissionsResponse)
def fix_permissions(
    payload: FixPermissionsRequest,
    db: Session = Depends(get_db),
    drive: GoogleDriveService = Depends(get_drive_service),
    current_user: User = Depends(require_upload),
) -> FixPermissionsResponse:
    report = document_service.fix_permissions(db, drive, current_user, transaction_id=payload.transaction_id)
    return FixPermissionsResponse(
        message=report.message,
        fixed=report.fixed,
        skipped=report.skipped,
        failed=report.failed,
        errors=report.errors,
    )


@router.get("/migration-report", response_model=MigrationReportResponse)
def migration_report(
    db: Session = Depends(get_db),
    _: User = Depends(require_drive_admin),
) -> MigrationReportResponse:
    items = document_service.migration_report(db)
    return MigrationReportResponse(total=len(items), documents=items)


@router.get("/{document_id}/download")
def download_document(
    document_id: int,
    db: Session = Depends(get_db),
    drive: GoogleDriveService = Depends(get_drive_service),
    current_user: User = Depends(require_view),
) -> Response:
    document = document_service.get_document(db, current_user, document_id)
    if not document.google_drive_id:
        raise NotFound("Document has no Drive file")
    downloaded = drive.download_file(document.google_drive_id)
    filename = document.name or downloaded.name
    return Response(
        content=downloaded.content,
        media_type=downloaded.mime_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@router.delete("/{document_id}")
def delete_document(
    document_id: int,
    db: Session = Depends(get_db),
    drive: GoogleDriveService = Depends(get_drive_service),
    current_user: User = Depends(require_view),
) -> dict:
    document = document_service.get_document(db, current_user, document_id)
    document_service.delete_document(db, drive, document, current_user)
    return {"success": True}
