"""Error envelope shared by every endpoint.

All failures leave the API as::

    {"error": {"code": "NOT_FOUND", "message": "...", "details": {...}}}

``details`` is omitted when empty. Handlers are installed by
``install_error_handlers(app)`` from the application factory.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.generation.errors import API_ERROR_STATUS, ApiErrorCode

log = structlog.get_logger(__name__)


class ApiError(Exception):
    """An error with a public code; the status is derived from the code."""

    def __init__(
        self,
        code: ApiErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.headers = headers

    @property
    def status_code(self) -> int:
        return API_ERROR_STATUS[self.code]


def error_body(code: ApiErrorCode, message: str, details: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code.value, "message": message}
    if details:
        error["details"] = details
    return {"error": error}


def not_found(resource: str) -> ApiError:
    return ApiError(ApiErrorCode.NOT_FOUND, f"{resource} not found")


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
        headers=exc.headers,
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    issues = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=API_ERROR_STATUS[ApiErrorCode.INVALID_REQUEST],
        content=error_body(ApiErrorCode.INVALID_REQUEST, "Invalid request", {"issues": issues}),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "app.unhandled_exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content=error_body(ApiErrorCode.INTERNAL_ERROR, "Internal server error"),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, _validation_error_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, _unhandled_exception_handler)
