"""HTTP middleware: request correlation, escrow error translation, CORS.

Starlette applies middleware in reverse registration order, so the request
id is bound before anything else runs and is present on every log line a
request produces, including the error handler's.

Every ``EscrowError`` leaves the API as ``exc.to_dict()`` with the status
code from ``ERROR_STATUS_CODES``; callers branch on the ``error`` field.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from wap3_escrow.domain.exceptions import (
    ConsistencyViolationError,
    DuplicateOperationError,
    EscrowError,
    EscrowNotFoundError,
    InvalidInputError,
    InvalidStateTransitionError,
    LedgerUnavailableError,
    TransferFailedError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Checked in order; subclasses before their bases
ERROR_STATUS_CODES: tuple[tuple[type[EscrowError], int], ...] = (
    (InvalidInputError, 422),
    (EscrowNotFoundError, 404),
    (UnauthorizedError, 403),
    (InvalidStateTransitionError, 409),
    (DuplicateOperationError, 409),
    (TransferFailedError, 402),
    (LedgerUnavailableError, 503),
    (ConsistencyViolationError, 500),
)


def status_code_for(exc: EscrowError) -> int:
    """HTTP status for a domain error; 400 for codes with no entry (ledger rejections)."""
    return next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)),
        400,
    )


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the structlog context and echo it on the response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Translate escrow errors into JSON bodies; anything else becomes a 500."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except EscrowError as exc:
            status_code = status_code_for(exc)
            # A rejected transition is routine; a broken ledger is not
            emit = logger.error if status_code >= 500 else logger.warning
            emit(
                "escrow.request_failed",
                code=exc.code,
                status_code=status_code,
                escrow_id=exc.escrow_id,
                caller=exc.caller,
                error=exc.message,
            )
            return JSONResponse(status_code=status_code, content=exc.to_dict())
        except Exception:
            logger.exception("escrow.request_crashed")
            return JSONResponse(
                status_code=500,
                content={"error": "INTERNAL_ERROR", "message": "Unexpected server error"},
            )


def setup_middleware(app: FastAPI, allow_origins: Sequence[str] = ("*",)) -> None:
    """Register CORS, error translation and request ids (outermost last)."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allow_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
