"""
Application errors and FastAPI exception handlers

Error taxonomy:
- ValidationError: bad input, never retried (400)
- AuthenticationError: invalid credentials on credit/tier aware routes (401)
- TransientUpstreamError: timeout, 5xx, network failure; retried inside a strategy
- PermanentUpstreamError: "no captions", private, removed; never retried
- InfrastructureError: the transcript service is not ready to take requests (503)
"""

from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.core.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base application error rendered as {success, error, errorCode}"""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers or {}
        super().__init__(f"[{self.error_code}] {message}")


class ValidationError(AppError):
    status_code = 400
    error_code = "INVALID_REQUEST"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "UNAUTHORIZED"


class UpstreamError(AppError):
    status_code = 502
    error_code = "UPSTREAM_ERROR"


class TransientUpstreamError(UpstreamError):
    """Worth retrying within the strategy's own budget"""


class PermanentUpstreamError(UpstreamError):
    """The upstream positively answered that there is no content"""

    error_code = "NO_CONTENT"


class InfrastructureError(AppError):
    status_code = 503
    error_code = "SERVICE_UNAVAILABLE"


def _error_body(message: str, error_code: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": message, "errorCode": error_code, **extra}


async def app_exception_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.error_code),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail), f"HTTP_{exc.status_code}"),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=_error_body("Invalid request body", "INVALID_REQUEST", details=jsonable_errors(exc)),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=_error_body("Internal server error", "INTERNAL_ERROR"),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
