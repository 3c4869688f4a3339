"""Request correlation, error translation and CORS for the relay API.

Starlette runs the last-added middleware first, so a request passes
through RequestIDMiddleware, then ErrorHandlerMiddleware, then CORS.

Every error body has the shape ``{"error", "category", "message"}``.
Categories decide the status code:

    validation            400
    not_found             404
    precondition_conflict 409, or 403 when a delete is refused
    external              503, record store failures included
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from escrow_relay.domain.exceptions import (
    DeletionNotAllowedError,
    EscrowRelayError,
    InvalidStateTransitionError,
    RecordStoreError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

STATUS_BY_CATEGORY = {
    "validation": 400,
    "not_found": 404,
    "precondition_conflict": 409,
    "external": 503,
}


def _error_response(status_code: int, code: str, category: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": code, "category": category, "message": message},
    )


def _domain_error_response(exc: EscrowRelayError) -> JSONResponse:
    if isinstance(exc, DeletionNotAllowedError):
        status_code = 403
    else:
        status_code = STATUS_BY_CATEGORY.get(exc.category, 500)

    fields = {"code": exc.code, "category": exc.category, "error": exc.message}
    if isinstance(exc, InvalidStateTransitionError):
        fields.update(current=exc.current_state, attempted=exc.attempted)
    if status_code >= 500:
        logger.error("request.failed", **fields)
    else:
        logger.warning("request.rejected", **fields)
    return _error_response(status_code, exc.code, exc.category, exc.message)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind the caller's X-Request-ID (or a fresh one) to the log context and echo it back."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, method=request.method, path=request.url.path
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except EscrowRelayError as exc:
            return _domain_error_response(exc)
        except SQLAlchemyError as exc:
            return _domain_error_response(RecordStoreError(f"Record store failure: {exc}"))
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return _error_response(500, "INTERNAL_ERROR", "internal", "An unexpected error occurred")


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report the first schema violation as a validation error with a 400."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid input')}" if location else "Invalid input"
    logger.warning("request.invalid", errors=len(errors), first=message)
    return _error_response(400, "INVALID_INPUT", "validation", message)


def setup_middleware(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # wallets call from arbitrary origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
