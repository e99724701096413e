"""Document registration and the Drive sharing saga.

A document row moves ``uploaded`` -> ``shared`` -> ``registered``. Each step
is a separate Drive call; when one fails the row keeps the status it reached
and ``last_error`` records why, so ``resume_document`` can finish the job later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, joinedload

from ..auth.policy import Capability, Resource, can
from ..constants import DEFAULT_DOCUMENT_TYPES
from ..core.errors import AppError, Forbidden, NotFound, ValidationFailure
from ..models.models import Document, DocumentType, FollowUpEvent, Transaction, User
from ..schemas.schemas import DocumentRead, DocumentRegister, MigrationReportItem
from .audit import audit_log
from .google_drive import GoogleDriveService
from .queries import get_visible_transaction, visible_transactions

logger = logging.getLogger(__name__)

STATUS_UPLOADED = "uploaded"
STATUS_SHARED = "shared"
STATUS_REGISTERED = "registered"

DEFAULT_LIST_LIMIT = 50


@dataclass
class FixPermissionsReport:
    fixed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Fixed {self.fixed} document(s), skipped {self.skipped}, failed {self.failed}."


def ensure_document_types(session: Session) -> None:
    existing = {name for (name,) in session.query(DocumentType.name).all()}
    for name, description in DEFAULT_DOCUMENT_TYPES:
        if name not in existing:
            session.add(DocumentType(name=name, description=description))
    session.commit()


def list_document_types(session: Session) -> List[DocumentType]:
    return session.query(DocumentType).order_by(DocumentType.name.asc()).all()


def to_read(document: Document) -> DocumentRead:
    return DocumentRead(
        id=document.id,
        name=document.name,
        transaction_id=document.transaction_id,
        task_id=document.task_id,
        google_drive_id=document.google_drive_id,
        google_drive_url=document.google_drive_url,
        file_size=document.file_size,
        file_type=document.file_type,
        uploaded_by_user_id=document.uploaded_by_user_id,
        uploaded_by_name=document.uploaded_by.full_name if document.uploaded_by else None,
        document_type_id=document.document_type_id,
        document_type_name=document.document_type.name if document.document_type else None,
        drive_status=document.drive_status,
        last_error=document.last_error,
        created_at=document.created_at,
    )


def _visible_documents(session: Session, user: User):
    visible_ids = visible_transactions(session, user).with_entities(Transaction.id).subquery()
    return (
        session.query(Document)
        .options(joinedload(Document.uploaded_by), joinedload(Document.document_type))
        .filter(
            or_(
                Document.transaction_id.in_(select(visible_ids.c.id)),
                # Unattached uploads stay visible to the person who made them.
                (Document.transaction_id.is_(None)) & (Document.uploaded_by_user_id == user.id),
            )
        )
    )


def list_documents(
    session: Session,
    user: User,
    task_id: Optional[int] = None,
    transaction_id: Optional[int] = None,
) -> List[Document]:
    query = _visible_documents(session, user)
    if task_id is not None:
        return query.filter(Document.task_id == task_id).order_by(Document.created_at.desc()).all()
    if transaction_id is not None:
        return query.filter(Document.transaction_id == transaction_id).order_by(Document.created_at.desc()).all()
    return query.order_by(Document.created_at.desc(), Document.id.desc()).limit(DEFAULT_LIST_LIMIT).all()


def get_document(session: Session, user: User, document_id: int) -> Document:
    document = _visible_documents(session, user).filter(Document.id == document_id).first()
    if document is None:
        raise NotFound("Document not found")
    return document


def _resolve_links(session: Session, payload: DocumentRegister, user: User) -> Optional[int]:
    transaction_id = payload.transaction_id
    if payload.task_id is not None:
        task = session.get(FollowUpEvent, payload.task_id)
        if task is None:
            raise ValidationFailure(f"Unknown task_id: {payload.task_id}")
        if transaction_id is None:
            transaction_id = task.transaction_id
        elif task.transaction_id != transaction_id:
            raise ValidationFailure("Task does not belong to the given transaction")
    if transaction_id is not None and get_visible_transaction(session, user, transaction_id) is None:
        raise NotFound("Transaction not found")
    if payload.document_type_id is not None and session.get(DocumentType, payload.document_type_id) is None:
        raise ValidationFailure(f"Unknown document_type_id: {payload.document_type_id}")
    return transaction_id


def resume_document(session: Session, drive: GoogleDriveService, document: Document) -> bool:
    """Run whichever saga steps remain. Returns True when the row ends up registered."""
    try:
        if document.drive_status == STATUS_UPLOADED:
            drive.make_public(document.google_drive_id)
            document.drive_status = STATUS_SHARED
            session.commit()
        if document.drive_status == STATUS_SHARED:
            info = drive.get_file(document.google_drive_id, fields="id,webViewLink")
            if info.web_view_link:
                document.google_drive_url = info.web_view_link
            document.drive_status = STATUS_REGISTERED
        document.last_error = None
        session.commit()
    except AppError as exc:
        session.rollback()
        step = getattr(exc, "step", None)
        document.last_error = f"{step}: {exc.detail}" if step else exc.detail
        session.commit()
        logger.warning(
            "Document %s stopped at drive_status=%s: %s", document.id, document.drive_status, document.last_error
        )
        return False
    return True


def register_document(
    session: Session,
    drive: GoogleDriveService,
    payload: DocumentRegister,
    user: User,
) -> Document:
    transaction_id = _resolve_links(session, payload, user)
    document = Document(
        name=payload.name,
        google_drive_id=payload.google_drive_id,
        google_drive_url=payload.google_drive_url,
        file_type=payload.file_type,
        file_size=payload.file_size,
        task_id=payload.task_id,
        transaction_id=transaction_id,
        document_type_id=payload.document_type_id,
        uploaded_by_user_id=user.id,
        drive_status=STATUS_SHARED if payload.shared else STATUS_UPLOADED,
    )
    session.add(document)
    session.flush()
    audit_log(
        session,
        user,
        "document.register",
        document,
        after={"name": document.name, "transaction_id": transaction_id, "task_id": payload.task_id},
    )
    session.commit()
    resume_document(session, drive, document)
    session.refresh(document)
    return document


def delete_document(session: Session, drive: GoogleDriveService, document: Document, user: User) -> None:
    if document.uploaded_by_user_id != user.id and not can(user, Resource.DOCUMENT, Capability.DELETE_ANY):
        raise Forbidden("Only the uploader or an admin can delete this document")
    if document.google_drive_id:
        try:
            drive.delete_file(document.google_drive_id)
        except AppError as exc:
            logger.warning("Drive delete for document %s failed: %s", document.id, exc.detail)
    audit_log(
        session,
        user,
        "document.delete",
        document,
        before={"name": document.name, "google_drive_id": document.google_drive_id},
    )
    session.delete(document)
    session.commit()


def _share_transaction_folder(
    session: Session,
    drive: GoogleDriveService,
    user: User,
    transaction_id: int,
    report: FixPermissionsReport,
) -> None:
    transaction = get_visible_transaction(session, user, transaction_id)
    if transaction is None:
        raise NotFound("Transaction not found")
    if not transaction.google_drive_folder_id:
        return
    try:
        drive.make_public(transaction.google_drive_folder_id)
    except AppError as exc:
        report.failed += 1
        report.errors.append(f"Transaction folder: {exc.detail}")
        return
    report.fixed += 1


def fix_permissions(
    session: Session,
    drive: GoogleDriveService,
    user: User,
    transaction_id: Optional[int] = None,
) -> FixPermissionsReport:
    query = _visible_documents(session, user).filter(Document.google_drive_id.isnot(None))
    if transaction_id is not None:
        query = query.filter(Document.transaction_id == transaction_id)

    report = FixPermissionsReport()
    if transaction_id is not None:
        _share_transaction_folder(session, drive, user, transaction_id, report)

    for document in query.order_by(Document.id.asc()).all():
        try:
            public = drive.has_public_permission(document.google_drive_id)
        except AppError as exc:
            report.failed += 1
            report.errors.append(f"{document.name}: {exc.detail}")
            continue
        if public and document.drive_status == STATUS_REGISTERED:
            report.skipped += 1
            continue
        if public and document.drive_status == STATUS_UPLOADED:
            document.drive_status = STATUS_SHARED
            session.commit()
        elif not public and document.drive_status != STATUS_UPLOADED:
            # Link access was lost after sharing; run the share step again.
            document.drive_status = STATUS_UPLOADED
            session.commit()
        if resume_document(session, drive, document):
            report.fixed += 1
        else:
            report.failed += 1
            report.errors.append(f"{document.name}: {document.last_error}")
    logger.info(
        "fix-permissions: fixed=%d skipped=%d failed=%d", report.fixed, report.skipped, report.failed
    )
    return report


def migration_report(session: Session) -> List[MigrationReportItem]:
    rows = (
        session.query(Document)
        .outerjoin(Transaction, Transaction.id == Document.transaction_id)
        .filter(
            or_(
                Document.google_drive_id.is_(None),
                (Document.transaction_id.isnot(None)) & (Transaction.google_drive_folder_id.is_(None)),
            )
        )
        .order_by(Document.id.asc())
        .all()
    )
    items = []
    for document in rows:
        issue = "missing_drive_id" if not document.google_drive_id else "transaction_missing_folder"
        items.append(
            MigrationReportItem(
                id=document.id,
                name=document.name,
                transaction_id=document.transaction_id,
                google_drive_id=document.google_drive_id,
                drive_status=document.drive_status,
                issue=issue,
            )
        )
    return items
