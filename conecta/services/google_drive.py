"""Google Drive access through the single system-wide OAuth credential.

``GoogleDriveService`` is built per request (see ``get_drive_service``) around
the request's DB session and an ``httpx.Client``. It is the only code that
reads or writes the ``google_drive_credentials`` row, and ``access_token()`` is
the only way to obtain a usable token: refreshes happen there, under a
process-wide lock, so concurrent requests never refresh twice.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, List, Optional
from urllib.parse import urlencode

import httpx
from fastapi import Depends
from sqlalchemy.orm import Session

from ..auth.jwt import get_db
from ..config import Settings, settings
from ..constants import (
    DRIVE_DEFAULT_TOKEN_TTL_SECONDS,
    DRIVE_SCOPES,
    DRIVE_TOKEN_REFRESH_SKEW_SECONDS,
    SYSTEM_DRIVE_USER_ID,
)
from ..core.errors import UpstreamFailure, ValidationFailure
from ..models.models import GoogleDriveCredential, Transaction, utcnow

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

_refresh_lock = threading.Lock()


class DriveNotConnected(ValidationFailure):
    error = "Google Drive not connected"

    def __init__(self, detail: str = "Google Drive is not connected. Connect it in Settings.") -> None:
        super().__init__(detail)


class DriveNotConfigured(ValidationFailure):
    error = "Google Drive not configured"


@dataclass
class DriveFile:
    id: str
    name: str
    mime_type: Optional[str] = None
    web_view_link: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "DriveFile":
        return cls(
            id=payload["id"],
            name=payload.get("name", ""),
            mime_type=payload.get("mimeType"),
            web_view_link=payload.get("webViewLink"),
        )


@dataclass
class DownloadedFile:
    content: bytes
    mime_type: str
    name: str


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _error_text(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("message") or str(error)
    return payload.get("error_description") or str(error or payload)


class GoogleDriveService:
    def __init__(self, db: Session, http: httpx.Client, config: Settings = settings) -> None:
        self.db = db
        self.http = http
        self.config = config

    # --- credential lifecycle ---

    def credential(self) -> Optional[GoogleDriveCredential]:
        return (
            self.db.query(GoogleDriveCredential)
            .filter(GoogleDriveCredential.user_id == SYSTEM_DRIVE_USER_ID)
            .first()
        )

    def is_connected(self) -> bool:
        credential = self.credential()
        return bool(credential and credential.refresh_token)

    def _require_oauth_config(self) -> None:
        if not self.config.google_oauth_configured:
            raise DriveNotConfigured(
                "Google OAuth is not configured. Set GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET and GOOGLE_REDIRECT_URI."
            )

    def authorization_url(self, state: Optional[str] = None) -> str:
        self._require_oauth_config()
        params = {
            "client_id": self.config.google_client_id,
            "redirect_uri": self.config.google_redirect_uri,
            "response_type": "code",
            "scope": " ".join(DRIVE_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def _token_request(self, step: str, data: Dict[str, str]) -> Dict[str, Any]:
        try:
            response = self.http.post(GOOGLE_TOKEN_URL, data=data)
        except httpx.HTTPError as exc:
            raise UpstreamFailure(step, f"Token endpoint unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise UpstreamFailure(step, f"Token endpoint rejected the request: {_error_text(response)}")
        return response.json()

    def exchange_code(self, code: str, connected_by_user_id: Optional[int] = None) -> GoogleDriveCredential:
        self._require_oauth_config()
        tokens = self._token_request(
            "oauth_exchange",
            {
                "code": code,
                "client_id": self.config.google_client_id,
                "client_secret": self.config.google_client_secret,
                "redirect_uri": self.config.google_redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        if not tokens.get("access_token"):
            raise UpstreamFailure("oauth_exchange", "Google did not return an access token.")

        credential = self.credential()
        if credential is None:
            credential = GoogleDriveCredential(user_id=SYSTEM_DRIVE_USER_ID)
            self.db.add(credential)
        credential.access_token = tokens["access_token"]
        # Google omits refresh_token on re-consent for an already-authorized client.
        if tokens.get("refresh_token"):
            credential.refresh_token = tokens["refresh_token"]
        credential.expires_at = utcnow() + timedelta(
            seconds=int(tokens.get("expires_in") or DRIVE_DEFAULT_TOKEN_TTL_SECONDS)
        )
        if connected_by_user_id is not None:
            credential.connected_by_user_id = connected_by_user_id
        self.db.commit()
        logger.info("Google Drive connected (refresh token stored=%s)", bool(credential.refresh_token))
        return credential

    def disconnect(self) -> bool:
        credential = self.credential()
        if credential is None:
            return False
        self.db.delete(credential)
        self.db.commit()
        logger.info("Google Drive disconnected; existing file permissions are left in place")
        return True

    @staticmethod
    def _needs_refresh(credential: GoogleDriveCredential) -> bool:
        expires_at = _as_aware(credential.expires_at)
        if not credential.access_token or expires_at is None:
            return True
        return expires_at - utcnow() <= timedelta(seconds=DRIVE_TOKEN_REFRESH_SKEW_SECONDS)

    def access_token(self) -> str:
        """Return a token valid for at least the refresh skew, refreshing if needed."""
        credential = self.credential()
        if credential is None:
            raise DriveNotConnected()
        if not self._needs_refresh(credential):
            return credential.access_token

        with _refresh_lock:
            # Another request may have refreshed while we waited.
            self.db.refresh(credential)
            if not self._needs_refresh(credential):
                return credential.access_token
            return self._refresh(credential)

    def _refresh(self, credential: GoogleDriveCredential) -> str:
        if not credential.refresh_token:
            raise UpstreamFailure(
                "token_refresh",
                "Access token expired and no refresh token is stored. Please reconnect Google Drive in Settings.",
            )
        self._require_oauth_config()
        tokens = self._token_request(
            "token_refresh",
            {
                "client_id": self.config.google_client_id,
                "client_secret": self.config.google_client_secret,
                "refresh_token": credential.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        credential.access_token = tokens["access_token"]
        if tokens.get("refresh_token"):
            credential.refresh_token = tokens["refresh_token"]
        credential.expires_at = utcnow() + timedelta(
            seconds=int(tokens.get("expires_in") or DRIVE_DEFAULT_TOKEN_TTL_SECONDS)
        )
        self.db.commit()
        logger.info("Refreshed Google Drive access token")
        return credential.access_token

    # --- Drive REST calls ---

    def _request(self, step: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {self.access_token()}"
        try:
            response = self.http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamFailure(step, f"Google Drive request failed: {exc}") from exc
        if response.status_code >= 400:
            raise UpstreamFailure(
                step,
                f"Google Drive returned {response.status_code}: {_error_text(response)}",
                upstream_status=response.status_code,
            )
        return response

    def list_folders(self) -> List[DriveFile]:
        response = self._request(
            "list_folders",
            "GET",
            DRIVE_FILES_URL,
            params={
                "q": f"mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
                "fields": "files(id,name)",
                "pageSize": 100,
                "orderBy": "name",
            },
        )
        return [DriveFile.from_api(item) for item in response.json().get("files", [])]

    def get_file(self, file_id: str, fields: str = "id,name,mimeType,webViewLink") -> DriveFile:
        response = self._request("get_file", "GET", f"{DRIVE_FILES_URL}/{file_id}", params={"fields": fields})
        return DriveFile.from_api(response.json())

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> DriveFile:
        body: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            body["parents"] = [parent_id]
        response = self._request("create_folder", "POST", DRIVE_FILES_URL, params={"fields": "id,name"}, json=body)
        return DriveFile.from_api(response.json())

    def delete_file(self, file_id: str) -> None:
        self._request("delete_file", "DELETE", f"{DRIVE_FILES_URL}/{file_id}")

    def download_file(self, file_id: str) -> DownloadedFile:
        meta = self.get_file(file_id, fields="id,name,mimeType")
        response = self._request("download", "GET", f"{DRIVE_FILES_URL}/{file_id}", params={"alt": "media"})
        return DownloadedFile(
            content=response.content,
            mime_type=meta.mime_type or response.headers.get("content-type", "application/octet-stream"),
            name=meta.name or file_id,
        )

    def list_permissions(self, file_id: str) -> List[Dict[str, Any]]:
        response = self._request(
            "list_permissions",
            "GET",
            f"{DRIVE_FILES_URL}/{file_id}/permissions",
            params={"fields": "permissions(id,type,role)"},
        )
        return response.json().get("permissions", [])

    def has_public_permission(self, file_id: str) -> bool:
        return any(
            permission.get("type") == "anyone" and permission.get("role") in {"reader", "commenter", "writer"}
            for permission in self.list_permissions(file_id)
        )

    def make_public(self, file_id: str) -> None:
        """Grant anyone-with-the-link read access; an existing grant is not an error."""
        try:
            self._request(
                "set_permission",
                "POST",
                f"{DRIVE_FILES_URL}/{file_id}/permissions",
                json={"type": "anyone", "role": "reader"},
            )
        except UpstreamFailure as exc:
            if "already" in exc.detail.lower():
                logger.info("File %s already has a public permission", file_id)
                return
            raise

    # --- folder configuration ---

    def current_folder(self) -> Optional[DriveFile]:
        credential = self.credential()
        if credential is None or not credential.folder_id:
            return None
        return DriveFile(id=credential.folder_id, name=credential.folder_name or credential.folder_id)

    def set_current_folder(self, folder_id: Optional[str]) -> Optional[DriveFile]:
        """Select the default upload folder; empty or ``"root"`` means the drive root."""
        credential = self.credential()
        if credential is None:
            raise DriveNotConnected()
        if not folder_id or folder_id == "root":
            credential.folder_id = None
            credential.folder_name = None
            self.db.commit()
            return None
        folder = self.get_file(folder_id, fields="id,name")
        credential.folder_id = folder.id
        credential.folder_name = folder.name
        self.db.commit()
        return folder

    def get_or_create_transaction_folder(self, transaction: Transaction) -> str:
        if transaction.google_drive_folder_id:
            return transaction.google_drive_folder_id
        address = transaction.property_address or "Unknown Address"
        transaction_type = (transaction.transaction_type or "transaction").capitalize()
        parent = self.current_folder()
        folder = self.create_folder(f"{address} - {transaction_type}", parent.id if parent else None)
        transaction.google_drive_folder_id = folder.id
        self.db.commit()
        logger.info("Created Drive folder %s for transaction %s", folder.id, transaction.id)
        return folder.id


def get_drive_service(db: Session = Depends(get_db)) -> Generator[GoogleDriveService, None, None]:
    http = httpx.Client(timeout=settings.google_http_timeout_seconds)
    try:
        yield GoogleDriveService(db, http)
    finally:
        http.close()
