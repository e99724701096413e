from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from conecta.auth.jwt import get_current_user, get_db
from conecta.core.errors import UpstreamFailure
from conecta.main import app
from conecta.models.models import AuditLog, GoogleDriveCredential
from conecta.services.google_drive import DriveNotConnected, get_drive_service


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


def _client(db_session, drive_service, user=None) -> TestClient:
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_drive_service] = lambda: drive_service
    if user is not None:
        app.dependency_overrides[get_current_user] = _override_user(user)
    return TestClient(app)


def test_fresh_token_is_returned_without_calling_google(drive_service, connect_drive, google_api):
    connect_drive(access_token="still-good", expires_in=3600)

    assert drive_service.access_token() == "still-good"
    assert google_api.requests == []


def test_token_inside_refresh_skew_is_refreshed(db_session, drive_service, connect_drive, google_api):
    connect_drive(access_token="about-to-expire", expires_in=120)

    token = drive_service.access_token()

    assert token == "access-1"
    (request,) = google_api.calls("POST", "/token")
    form = parse_qs(request.content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["stored-refresh"]
    db_session.expire_all()
    stored = db_session.query(GoogleDriveCredential).one()
    assert stored.access_token == "access-1"
    assert stored.refresh_token == "refresh-1"


def test_expired_token_without_refresh_token_asks_for_reconnect(drive_service, connect_drive):
    connect_drive(refresh_token=None, expires_in=-60)

    with pytest.raises(UpstreamFailure) as exc:
        drive_service.access_token()
    assert exc.value.step == "token_refresh"
    assert "reconnect" in exc.value.detail


def test_refresh_rejection_names_the_step(drive_service, connect_drive, google_api):
    connect_drive(expires_in=-60)
    google_api.fail("POST", "/token", status_code=400, message="invalid_grant")

    with pytest.raises(UpstreamFailure) as exc:
        drive_service.access_token()
    assert exc.value.step == "token_refresh"


def test_missing_credential_is_not_connected(drive_service):
    assert drive_service.is_connected() is False
    with pytest.raises(DriveNotConnected):
        drive_service.access_token()


def test_authorization_url_requests_offline_consent(drive_service):
    query = parse_qs(urlparse(drive_service.authorization_url()).query)

    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["client_id"] == ["client-id"]
    assert "https://www.googleapis.com/auth/drive.file" in query["scope"][0]


def test_reconsent_keeps_existing_refresh_token(db_session, drive_service, connect_drive, google_api):
    connect_drive(refresh_token="original-refresh")
    google_api.issue_refresh_token = False

    credential = drive_service.exchange_code("auth-code")

    assert credential.access_token == "access-1"
    assert credential.refresh_token == "original-refresh"
    assert db_session.query(GoogleDriveCredential).count() == 1


def test_callback_success_page_notifies_opener(db_session, drive_service, google_api):
    client = _client(db_session, drive_service)
    try:
        response = client.get("/api/google-drive/callback", params={"code": "auth-code"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "google-drive-connected" in response.text
    assert "window.close()" in response.text
    assert db_session.query(GoogleDriveCredential).one().refresh_token == "refresh-1"
    assert db_session.query(AuditLog).filter(AuditLog.action == "google_drive.connect").count() == 1


def test_callback_error_renders_failure_page(db_session, drive_service, google_api):
    client = _client(db_session, drive_service)
    try:
        response = client.get("/api/google-drive/callback", params={"error": "access_denied"})
        missing = client.get("/api/google-drive/callback")
        google_api.fail("POST", "/token", status_code=400, message="bad code")
        rejected = client.get("/api/google-drive/callback", params={"code": "stale"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert "Connection Failed" in response.text
    assert "access_denied" in response.text
    assert "google-drive-connected" not in response.text
    assert "No authorization code" in missing.text
    assert "Failed to exchange authorization code" in rejected.text
    assert google_api.calls("POST", "/token")
    assert db_session.query(GoogleDriveCredential).count() == 0


def test_status_reports_admin_flag(db_session, drive_service, connect_drive, create_user):
    connect_drive()
    admin = create_user(email="admin@example.com", role_name="admin")
    agent = create_user(email="agent@example.com", role_name="agent")

    client = _client(db_session, drive_service, admin)
    try:
        assert client.get("/api/google-drive/status").json() == {"connected": True, "isAdmin": True}
        app.dependency_overrides[get_current_user] = _override_user(agent)
        assert client.get("/api/google-drive/status").json() == {"connected": True, "isAdmin": False}
        assert client.get("/api/google-drive/auth").status_code == 403
    finally:
        app.dependency_overrides.clear()


def test_upload_token_creates_transaction_folder_once(
    db_session, drive_service, connect_drive, create_user, create_property, create_transaction, google_api
):
    connect_drive(folder_id="root-folder")
    google_api.add_file("root-folder", name="Closings")
    agent = create_user(email="agent@example.com", role_name="agent")
    prop = create_property(address="12 Oak Lane")
    transaction = create_transaction(actor=agent, property_id=prop.id)

    client = _client(db_session, drive_service, agent)
    try:
        first = client.post("/api/documents/upload-token", json={"transactionId": transaction.id})
        second = client.post("/api/documents/upload-token", json={"transactionId": transaction.id})
        default = client.post("/api/documents/upload-token", json={})
    finally:
        app.dependency_overrides.clear()

    assert first.status_code == 200
    assert first.json()["accessToken"] == "stored-access"
    folder_id = first.json()["folderId"]
    assert second.json()["folderId"] == folder_id
    assert default.json()["folderId"] == "root-folder"
    assert google_api.files[folder_id]["name"] == "12 Oak Lane - Purchase"
    assert google_api.files[folder_id]["parents"] == ["root-folder"]
    assert len(google_api.calls("POST", "/drive/v3/files")) == 1


def test_upload_token_requires_connection(db_session, drive_service, create_user):
    agent = create_user(email="agent@example.com", role_name="agent")
    client = _client(db_session, drive_service, agent)
    try:
        response = client.post("/api/documents/upload-token", json={})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 400
    assert response.json()["error"] == "Google Drive not connected"


def test_folder_selection(db_session, drive_service, connect_drive, create_user, google_api):
    connect_drive()
    google_api.files["f-1"] = {"id": "f-1", "name": "Closings 2026", "parents": []}
    admin = create_user(email="admin@example.com", role_name="admin")

    client = _client(db_session, drive_service, admin)
    try:
        listed = client.get("/api/google-drive/folders").json()
        selected = client.post("/api/google-drive/folders", json={"folderId": "f-1"}).json()
        cleared = client.post("/api/google-drive/folders", json={"folderId": "root"}).json()
    finally:
        app.dependency_overrides.clear()

    assert listed["connected"] is True
    assert listed["folders"] == [{"id": "f-1", "name": "Closings 2026"}]
    assert selected["currentFolder"] == {"id": "f-1", "name": "Closings 2026"}
    assert cleared["currentFolder"] is None
