import logging
from typing import Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import Settings

logger = logging.getLogger(__name__)

BASE_SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}
HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add the baseline security headers; HSTS only when the request came in over https."""

    def __init__(self, app, *, force_hsts: bool = False, extra_headers: Optional[Dict[str, str]] = None) -> None:
        super().__init__(app)
        self.force_hsts = force_hsts
        self.headers = {**BASE_SECURITY_HEADERS, **(extra_headers or {})}

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        forwarded_proto = request.headers.get("X-Forwarded-Proto", request.url.scheme)
        if self.force_hsts or forwarded_proto == "https":
            response.headers.setdefault("Strict-Transport-Security", HSTS_VALUE)
        return response


def log_security_warnings(settings: Settings) -> None:
    if settings.jwt_secret == "dev-secret-please-change":
        logger.warning("JWT secret is using the insecure default; set NEXTAUTH_SECRET in the environment.")
    backend_normalized = (settings.email_backend or "local").lower().strip()
    if backend_normalized == "local":
        logger.warning("Email backend is set to local stub; customer emails will not be delivered.")
    if not settings.google_oauth_configured:
        logger.warning("Google OAuth client is not configured; Drive uploads are disabled.")
    if settings.expose_error_details and settings.is_production:
        logger.warning("EXPOSE_ERROR_DETAILS is on in production; 500 responses include exception messages.")
