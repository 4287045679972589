"""Map domain failures onto the ``{success, message, data?}`` response envelope."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..domain.errors import AuthError, InvalidTokenError, LockedError, RateLimitedError

logger = logging.getLogger(__name__)


def error_response(
    status_code: int,
    message: str,
    data: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message}
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _field_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        message = str(error.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": ".".join(location), "message": message})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-producing handlers for domain, validation and HTTP errors."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        headers = None
        if isinstance(exc, LockedError) or (isinstance(exc, RateLimitedError) and exc.retry_after_seconds):
            headers = {"Retry-After": str(exc.retry_after_seconds)}
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed with %s: %s",
                request.method,
                request.url.path,
                type(exc).__name__,
                exc.message,
            )
        else:
            logger.info(
                "%s %s rejected with %d (%s%s)",
                request.method,
                request.url.path,
                exc.status_code,
                type(exc).__name__,
                f", reason={exc.reason}" if isinstance(exc, InvalidTokenError) else "",
            )
        return error_response(exc.status_code, exc.message, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = _field_errors(exc)
        logger.info("%s %s failed validation: %s", request.method, request.url.path, errors)
        return error_response(400, "Validation failed", {"errors": errors})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))
