"""API error handling: consistent ``{"error": {"code", "message"}}`` bodies.

Status code mapping:
- ``ValueError`` (bad client input) → 400 Bad Request
- ``KeyError`` (unknown resource) → 404 Not Found
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from qala.api.models import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def _handle_value_error(request: Request, exc: ValueError) -> JSONResponse:
    logger.info("Validation error on %s: %s", request.url.path, exc)
    return _error(400, "VALIDATION_ERROR", str(exc))


async def _handle_key_error(request: Request, exc: KeyError) -> JSONResponse:
    missing = exc.args[0] if exc.args else None
    logger.info("Not found on %s: %s", request.url.path, missing)
    return _error(404, "NOT_FOUND", f"Not found: {missing}")


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """Convert any unhandled exception into the standard 500 envelope."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return _error(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Attach the exception handlers and the catch-all middleware to *app*."""
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_exception_handler(KeyError, _handle_key_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
