"""
Domain error taxonomy + global exception handlers.

Policy outcomes (out of range, already checked in, ...) are NOT exceptions;
they are typed results returned by the attendance state machine.  Only
validation errors and infrastructure failures are raised.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


# ── Domain errors ───────────────────────────────────────────────────
class AttendanceError(Exception):
    """Base class for errors raised by the attendance core."""


class InvalidCoordinates(AttendanceError, ValueError):
    """Latitude / longitude / radius is non-finite or out of range."""


class InvalidTimestamp(AttendanceError, ValueError):
    """A timestamp violates ordering (e.g. check-out not after check-in)."""


class StorageUnavailable(AttendanceError):
    """The relational store could not complete an operation."""


class TransportError(AttendanceError):
    """The chat platform rejected or failed to deliver a message."""


# ── HTTP handlers (prevent stack-trace leakage) ─────────────────────
async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "success": False},
    )


async def _validation_error_handler(_request: Request, exc: AttendanceError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "success": False},
    )


async def _storage_unavailable_handler(_request: Request, exc: StorageUnavailable) -> JSONResponse:
    logger.error("Storage unavailable: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable, please retry later", "success": False},
    )


async def _integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("Database integrity error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=409,
        content={"detail": "Database constraint violation", "success": False},
    )


async def _sqlalchemy_error_handler(_request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal database error", "success": False},
    )


async def _generic_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "success": False},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI app."""
    app.add_exception_handler(HTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(InvalidCoordinates, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(InvalidTimestamp, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StorageUnavailable, _storage_unavailable_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, _integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_exception_handler)
