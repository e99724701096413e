import html
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse

from ..auth.jwt import get_current_user, get_optional_user
from ..auth.policy import Capability, Resource, can, require_capability
from ..core.errors import AppError
from ..models.models import User
from ..schemas.schemas import (
    DriveAuthResponse,
    DriveFolder,
    DriveFoldersResponse,
    DriveStatusResponse,
    FolderSelectRequest,
)
from ..services.audit import audit_log
from ..services.google_drive import GoogleDriveService, get_drive_service

logger = logging.getLogger(__name__)

router = APIRouter()

require_drive_admin = require_capability(Resource.DRIVE, Capability.MANAGE)

_PAGE_STYLE = (
    "body { font-family: system-ui, -apple-system, sans-serif; text-align: center; padding: 50px; }"
    ".container { max-width: 500px; margin: 0 auto; background: white; padding: 40px; border-radius: 12px;"
    " box-shadow: 0 4px 6px rgba(0,0,0,0.1); }"
    ".error { color: #dc2626; } .success { color: #16a34a; }"
    ".details { font-size: 12px; color: #666; margin-top: 10px; word-break: break-all; }"
)

_SUCCESS_SCRIPT = """
<script>
  if (window.opener) {
    window.opener.postMessage({ type: 'google-drive-connected', success: true }, '*');
    setTimeout(function () { window.close(); }, 1500);
  }
</script>
"""


def _callback_page(title: str, message: str, *, details: str = "", success: bool = False) -> HTMLResponse:
    css_class = "success" if success else "error"
    details_html = f'<p class="details">{html.escape(details)}</p>' if details else ""
    body = (
        "<!DOCTYPE html><html><head>"
        f"<title>{html.escape(title)}</title><style>{_PAGE_STYLE}</style></head><body>"
        '<div class="container">'
        f'<h1 class="{css_class}">{html.escape(title)}</h1>'
        f"<p>{html.escape(message)}</p>{details_html}"
        '<button onclick="window.close()">Close Window</button>'
        "</div>"
        f"{_SUCCESS_SCRIPT if success else ''}"
        "</body></html>"
    )
    return HTMLResponse(content=body)


@router.get("/auth", response_model=DriveAuthResponse)
def start_authorization(
    drive: GoogleDriveService = Depends(get_drive_service),
    _: User = Depends(require_drive_admin),
) -> DriveAuthResponse:
    return DriveAuthResponse(authUrl=drive.authorization_url())


@router.get("/callback", response_class=HTMLResponse)
def authorization_callback(
    code: str | None = Query(None),
    error: str | None = Query(None),
    drive: GoogleDriveService = Depends(get_drive_service),
    current_user: User | None = Depends(get_optional_user),
) -> HTMLResponse:
    if error:
        return _callback_page(
            "Connection Failed", "Google Drive authorization was cancelled or failed.", details=f"Error: {error}"
        )
    if not code:
        return _callback_page("Connection Failed", "No authorization code was provided.")
    if not drive.config.google_oauth_configured:
        return _callback_page(
            "Configuration Error", "Google OAuth is not properly configured. Please contact your administrator."
        )
    try:
        credential = drive.exchange_code(code, connected_by_user_id=current_user.id if current_user else None)
    except AppError as exc:
        logger.warning("Google Drive code exchange failed: %s", exc.detail)
        return _callback_page(
            "Connection Failed", "Failed to exchange authorization code for access token.", details=exc.detail
        )
    audit_log(drive.db, current_user, "google_drive.connect", credential)
    drive.db.commit()
    return _callback_page(
        "Connected Successfully",
        "Google Drive has been connected. This window will close automatically.",
        success=True,
    )


@router.get("/status", response_model=DriveStatusResponse)
def drive_status(
    drive: GoogleDriveService = Depends(get_drive_service),
    current_user: User = Depends(get_current_user),
) -> DriveStatusResponse:
    return DriveStatusResponse(
        connected=drive.is_connected(),
        isAdmin=can(current_user, Resource.DRIVE, Capability.MANAGE),
    )


@router.post("/disconnect")
def disconnect(
    drive: GoogleDriveService = Depends(get_drive_service),
    current_user: User = Depends(require_drive_admin),
) -> dict:
    removed = drive.disconnect()
    if removed:
        audit_log(drive.db, current_user, "google_drive.disconnect", entity_type="google_drive_credential")
        drive.db.commit()
    return {"success": True, "message": "Google Drive disconnected"}


@router.get("/folders", response_model=DriveFoldersResponse)
def list_folders(
    drive: GoogleDriveService = Depends(get_drive_service),
    _: User = Depends(require_drive_admin),
) -> DriveFoldersResponse:
    if not drive.is_connected():
        return DriveFoldersResponse(connected=False)
    current = drive.current_folder()
    return DriveFoldersResponse(
        connected=True,
        folders=[DriveFolder(id=folder.id, name=folder.name) for folder in drive.list_folders()],
        currentFolder=DriveFolder(id=current.id, name=current.name) if current else None,
    )


@router.post("/folders")
def select_folder(
    payload: FolderSelectRequest,
    drive: GoogleDriveService = Depends(get_drive_service),
    _: User = Depends(require_drive_admin),
) -> dict:
    folder = drive.set_current_folder(payload.folder_id)
    return {
        "success": True,
        "currentFolder": DriveFolder(id=folder.id, name=folder.name).model_dump() if folder else None,
    }
