import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config import settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code = 500
    error = "Request failed"

    def __init__(self, detail: Optional[str] = None, **extra: Any) -> None:
        super().__init__(detail or self.error)
        self.detail = detail or self.error
        self.extra = extra

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error, "detail": self.detail}
        payload.update(self.extra)
        return payload


class Unauthorized(AppError):
    status_code = 401
    error = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    error = "Forbidden"


class NotFound(AppError):
    status_code = 404
    error = "Not found"


class ValidationFailure(AppError):
    status_code = 400
    error = "Validation failed"


class UpstreamFailure(AppError):
    """An external call (Google, email provider) failed at a named step."""

    status_code = 500
    error = "Upstream request failed"

    def __init__(self, step: str, detail: Optional[str] = None, *, status_code: Optional[int] = None, **extra: Any):
        super().__init__(detail, step=step, **extra)
        self.step = step
        if status_code is not None:
            self.status_code = status_code


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:  # type: ignore[override]
        payload = exc.to_payload()
        payload["path"] = str(request.url)
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation failed",
                "detail": "Validation failed.",
                "errors": jsonable_encoder(exc.errors()),
                "path": str(request.url),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore[override]
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content: Dict[str, Any] = {
            "error": "Internal server error",
            "detail": "Internal server error.",
            "path": str(request.url),
        }
        # TODO: turn EXPOSE_ERROR_DETAILS off by default once the dashboard stops rendering raw errors.
        if settings.expose_error_details:
            content["details"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload: Dict[str, Any] = {"detail": exc.detail or "HTTP error.", "path": str(request.url)}
        if exc.headers:
            payload["headers"] = exc.headers
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)
