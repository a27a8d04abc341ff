from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.services.storage_errors import (
    AccessDeniedError,
    FileValidationError,
    LinkUnusableError,
    NotFoundError,
    PartialUploadError,
    ReconciliationRequiredError,
    SharePasswordRequiredError,
    StorageError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

# Most specific classes first.
_STATUS_BY_ERROR: tuple[tuple[type[StorageError], int], ...] = (
    (SharePasswordRequiredError, 401),
    (AccessDeniedError, 403),
    (NotFoundError, 404),
    (FileValidationError, 400),
    (LinkUnusableError, 410),
    (PartialUploadError, 502),
    (StorageUnavailableError, 503),
    (ReconciliationRequiredError, 500),
)


def _error_payload(code: str, message: str, details: object, request_id: str | None):
    return {"code": code, "message": message, "details": details, "request_id": request_id}


def _request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    return str(rid) if rid else "unknown"


def status_for_error(exc: StorageError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 500


def register_error_handlers(app) -> None:
    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.error(
                "storage_error code=%s path=%s details=%s", exc.code, request.url.path, exc.details
            )
        return JSONResponse(
            status_code=status_code,
            content=_error_payload(
                exc.code, exc.message, jsonable_encoder(exc.details), _request_id(request)
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(
                f"http_{exc.status_code}", str(exc.detail), None, _request_id(request)
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(HTTPException)
    async def fastapi_http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                "validation_error",
                "Request validation failed",
                jsonable_encoder(exc.errors()),
                _request_id(request),
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                "internal_error", "Internal server error", None, _request_id(request)
            ),
        )
