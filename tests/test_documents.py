from fastapi.testclient import TestClient

from conecta.auth.jwt import get_current_user, get_db
from conecta.main import app
from conecta.models.models import Document
from conecta.schemas.schemas import DocumentRegister
from conecta.services import documents as document_service
from conecta.services import transactions as transaction_service
from conecta.services.google_drive import get_drive_service


def _override_get_db(session):
    def _get_db():
        try:
            yield session
        finally:
            pass

    return _get_db


def _override_user(user):
    def _get_user():
        return user

    return _get_user


def _client(db_session, drive_service, user) -> TestClient:
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_drive_service] = lambda: drive_service
    app.dependency_overrides[get_current_user] = _override_user(user)
    return TestClient(app)


def _register_payload(file_id: str, **extra) -> dict:
    payload = {
        "name": f"{file_id}.pdf",
        "google_drive_id": file_id,
        "google_drive_url": f"https://drive.google.com/open?id={file_id}",
        "file_type": "application/pdf",
        "file_size": 1024,
    }
    payload.update(extra)
    return payload


def test_register_runs_the_sharing_saga(
    db_session, drive_service, connect_drive, google_api, create_user, create_transaction
):
    connect_drive()
    google_api.add_file("doc-1")
    agent = create_user(email="agent@example.com", role_name="agent")
    transaction = create_transaction(actor=agent)

    client = _client(db_session, drive_service, agent)
    try:
        response = client.post("/api/documents", json=_register_payload("doc-1", transaction_id=transaction.id))
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 201
    document = response.json()["document"]
    assert document["drive_status"] == "registered"
    assert document["google_drive_url"] == "https://drive.google.com/file/d/doc-1/view"
    assert document["uploaded_by_name"] == "Agent Tester"
    assert document["last_error"] is None
    assert google_api.permissions["doc-1"] == [{"id": "anyone", "type": "anyone", "role": "reader"}]


def test_register_infers_transaction_from_task(
    db_session, drive_service, connect_drive, google_api, create_user, create_transaction, add_task
):
    connect_drive()
    google_api.add_file("doc-1")
    agent = create_user(email="agent@example.com", role_name="agent")
    transaction = create_transaction(actor=agent)
    other = create_transaction(actor=agent)
    task = add_task(transaction)

    document = document_service.register_document(
        db_session, drive_service, DocumentRegister(**_register_payload("doc-1", task_id=task.id)), agent
    )
    assert document.transaction_id == transaction.id

    client = _client(db_session, drive_service, agent)
    try:
        response = client.post(
            "/api/documents", json=_register_payload("doc-1", task_id=task.id, transaction_id=other.id)
        )
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 400
    assert response.json()["detail"] == "Task does not belong to the given transaction"


def test_failed_share_keeps_row_with_error(db_session, drive_service, connect_drive, google_api, create_user):
    connect_drive()
    google_api.add_file("doc-2")
    google_api.fail("POST", "/drive/v3/files/doc-2/permissions", status_code=403, message="insufficient scope")
    agent = create_user(email="agent@example.com", role_name="agent")

    client = _client(db_session, drive_service, agent)
    try:
        response = client.post("/api/documents", json=_register_payload("doc-2"))
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 201
    document = response.json()["document"]
    assert document["drive_status"] == "uploaded"
    assert document["last_error"].startswith("set_permission: ")
    assert "insufficient scope" in document["last_error"]
    assert db_session.query(Document).count() == 1


def test_already_shared_upload_only_fetches_link(
    db_session, drive_service, connect_drive, google_api, create_user
):
    connect_drive()
    google_api.add_file("doc-3", public=True)
    agent = create_user(email="agent@example.com", role_name="agent")

    document = document_service.register_document(
        db_session, drive_service, DocumentRegister(**_register_payload("doc-3", shared=True)), agent
    )

    assert document.drive_status == "registered"
    assert google_api.calls("POST", "/drive/v3/files") == []


def test_fix_permissions_resumes_and_is_idempotent(
    db_session, drive_service, connect_drive, google_api, create_user
):
    connect_drive()
    google_api.add_file("doc-ok", public=True)
    google_api.add_file("doc-stuck")
    google_api.fail("POST", "/drive/v3/files/doc-stuck/permissions")
    admin = create_user(email="admin@example.com", role_name="admin")
    for file_id in ("doc-ok", "doc-stuck"):
        payload = DocumentRegister(**_register_payload(file_id))
        document_service.register_document(db_session, drive_service, payload, admin)

    stuck = db_session.query(Document).filter(Document.google_drive_id == "doc-stuck").one()
    assert stuck.drive_status == "uploaded"
    google_api.failures.clear()

    client = _client(db_session, drive_service, admin)
    try:
        first = client.post("/api/documents/fix-permissions", json={}).json()
        second = client.post("/api/documents/fix-permissions", json={}).json()
    finally:
        app.dependency_overrides.clear()

    assert (first["fixed"], first["skipped"], first["failed"]) == (1, 1, 0)
    assert (second["fixed"], second["skipped"], second["failed"]) == (0, 2, 0)
    db_session.expire_all()
    assert {doc.drive_status for doc in db_session.query(Document)} == {"registered"}
    assert all(doc.last_error is None for doc in db_session.query(Document))


def test_fix_permissions_reshares_registered_file_that_lost_public_access(
    db_session, drive_service, connect_drive, google_api, create_user
):
    connect_drive()
    google_api.add_file("doc-a")
    admin = create_user(email="admin@example.com", role_name="admin")
    document = document_service.register_document(
        db_session, drive_service, DocumentRegister(**_register_payload("doc-a")), admin
    )
    assert document.drive_status == "registered"
    google_api.permissions["doc-a"] = []

    report = document_service.fix_permissions(db_session, drive_service, admin)

    assert (report.fixed, report.skipped, report.failed) == (1, 0, 0)
    assert drive_service.has_public_permission("doc-a") is True
    db_session.refresh(document)
    assert document.drive_status == "registered"


def test_fix_permissions_for_transaction_shares_its_folder(
    db_session, drive_service, connect_drive, google_api, create_user, create_transaction
):
    connect_drive()
    google_api.add_file("folder-tx")
    admin = create_user(email="admin@example.com", role_name="admin")
    transaction = create_transaction(actor=admin)
    transaction.google_drive_folder_id = "folder-tx"
    db_session.commit()

    client = _client(db_session, drive_service, admin)
    try:
        response = client.post("/api/documents/fix-permissions", json={"transactionId": transaction.id})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert (body["fixed"], body["skipped"], body["failed"]) == (1, 0, 0)
    assert google_api.permissions["folder-tx"] == [{"id": "anyone", "type": "anyone", "role": "reader"}]


def test_fix_permissions_reports_folder_share_failure(
    db_session, drive_service, connect_drive, google_api, create_user, create_transaction
):
    connect_drive()
    google_api.add_file("folder-tx")
    google_api.fail("POST", "/drive/v3/files/folder-tx/permissions", status_code=403, message="not owner")
    admin = create_user(email="admin@example.com", role_name="admin")
    transaction = create_transaction(actor=admin)
    transaction.google_drive_folder_id = "folder-tx"
    db_session.commit()

    report = document_service.fix_permissions(db_session, drive_service, admin, transaction_id=transaction.id)

    assert (report.fixed, report.failed) == (0, 1)
    assert "not owner" in report.errors[0]


def test_delete_requires_uploader_or_admin(
    db_session, drive_service, connect_drive, google_api, create_user
):
    connect_drive()
    google_api.add_file("doc-4")
    uploader = create_user(email="uploader@example.com", role_name="agent")
    colleague = create_user(email="colleague@example.com", role_name="agent")
    admin = create_user(email="admin@example.com", role_name="admin")
    document = document_service.register_document(
        db_session, drive_service, DocumentRegister(**_register_payload("doc-4")), uploader
    )
    google_api.add_file("doc-5")
    other = document_service.register_document(
        db_session, drive_service, DocumentRegister(**_register_payload("doc-5")), uploader
    )

    client = _client(db_session, drive_service, uploader)
    try:
        assert client.delete(f"/api/documents/{document.id}").status_code == 200
    finally:
        app.dependency_overrides.clear()
    assert "doc-4" not in google_api.files

    # Unattached documents are only visible to their uploader.
    client = _client(db_session, drive_service, colleague)
    try:
        assert client.delete(f"/api/documents/{other.id}").status_code == 404
    finally:
        app.dependency_overrides.clear()

    google_api.fail("DELETE", "/drive/v3/files/doc-5")
    assert document_service.get_document(db_session, uploader, other.id).id == other.id
    document_service.delete_document(db_session, drive_service, other, admin)
    assert db_session.query(Document).count() == 0


def test_colleague_cannot_delete_attached_document(
    db_session, drive_service, connect_drive, google_api, create_user, create_transaction
):
    connect_drive()
    google_api.add_file("doc-6")
    uploader = create_user(email="uploader@example.com", role_name="agent")
    colleague = create_user(email="colleague@example.com", role_name="agent")
    transaction = create_transaction(actor=uploader)
    document = document_service.register_document(
        db_session,
        drive_service,
        DocumentRegister(**_register_payload("doc-6", transaction_id=transaction.id)),
        uploader,
    )

    client = _client(db_session, drive_service, colleague)
    try:
        response = client.delete(f"/api/documents/{document.id}")
    finally:
        app.dependency_overrides.clear()
    assert response.status_code == 403


def test_assistant_cannot_reach_documents_of_unassigned_transactions(
    db_session, drive_service, connect_drive, google_api, create_user, create_transaction
):
    connect_drive()
    google_api.add_file("doc-7", content=b"contract bytes")
    manager = create_user(email="manager@example.com", role_name="manager")
    assistant = create_user(email="assistant@example.com", role_name="assistant")
    transaction = create_transaction(actor=manager)
    document = document_service.register_document(
        db_session,
        drive_service,
        DocumentRegister(**_register_payload("doc-7", name="Contrato firmado.pdf", transaction_id=transaction.id)),
        manager,
    )

    client = _client(db_session, drive_service, assistant)
    try:
        assert client.get(f"/api/documents/{document.id}/download").status_code == 404
        assert client.get("/api/documents", params={"transaction_id": transaction.id}).json()["documents"] == []
        transaction_service.assign_assistant(db_session, transaction, assistant.id, None, manager)
        response = client.get(f"/api/documents/{document.id}/download")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.content == b"contract bytes"
    assert response.headers["content-disposition"] == "attachment; filename*=UTF-8''Contrato%20firmado.pdf"


def test_migration_report_flags_missing_links(db_session, drive_service, create_user, create_transaction):
    admin = create_user(email="admin@example.com", role_name="admin")
    transaction = create_transaction(actor=admin)
    db_session.add_all(
        [
            Document(name="legacy.pdf", drive_status="uploaded", uploaded_by_user_id=admin.id),
            Document(
                name="orphan-folder.pdf",
                google_drive_id="doc-8",
                drive_status="registered",
                transaction_id=transaction.id,
            ),
        ]
    )
    db_session.commit()

    client = _client(db_session, drive_service, admin)
    try:
        report = client.get("/api/documents/migration-report").json()
    finally:
        app.dependency_overrides.clear()

    assert report["total"] == 2
    assert [item["issue"] for item in report["documents"]] == ["missing_drive_id", "transaction_missing_folder"]
