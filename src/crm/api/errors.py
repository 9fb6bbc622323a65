"""Exception handlers that render every API failure as ``{"error": message}``."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.crm.meetings.errors import MeetingError

logger = structlog.get_logger(__name__)


def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return _error(422, message)


async def meeting_error_handler(request: Request, exc: MeetingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("meeting_request_failed", path=request.url.path, error=exc.message)
    return _error(exc.status_code, exc.message)


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("database_request_failed", path=request.url.path, error=str(exc))
    return _error(500, "Database error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(MeetingError, meeting_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
