"""
Exception handlers rendering every failure as ``{"error": {...}}``.

Dispatch is by exception type, never by message.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from treasury_kernel.exceptions import (
    AmountError,
    CurrencyError,
    ImmutabilityViolationError,
    InvalidAllocationRequestError,
    NotFoundError,
    StaleAllocationError,
    TreasuryError,
)
from treasury_kernel.logging_config import get_logger

logger = get_logger("api.errors")

# First match wins; order subclasses before bases
_STATUS_BY_TYPE: tuple[tuple[type[TreasuryError], int], ...] = (
    (NotFoundError, 404),
    (StaleAllocationError, 409),
    (ImmutabilityViolationError, 409),
    (AmountError, 422),
    (CurrencyError, 422),
    (InvalidAllocationRequestError, 422),
)


def status_for(exc: TreasuryError) -> int:
    for exc_type, status in _STATUS_BY_TYPE:
        if isinstance(exc, exc_type):
            return status
    return 500


def _details(exc: Exception) -> dict[str, Any]:
    return {
        key: value if isinstance(value, (str, int, bool)) or value is None else str(value)
        for key, value in vars(exc).items()
        if not key.startswith("_")
    }


def _error_body(code: str, message: str, **details: Any) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, **details}}


async def treasury_error_handler(request: Request, exc: TreasuryError) -> JSONResponse:
    status = status_for(exc)
    log = logger.error if status >= 500 else logger.warning
    log("request_failed", extra={
        "path": request.url.path,
        "status_code": status,
        "error_code": exc.code,
    })
    return JSONResponse(
        status_code=status,
        content=_error_body(exc.code, str(exc), **_details(exc)),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("request_invalid", extra={"path": request.url.path})
    return JSONResponse(
        status_code=422,
        content=_error_body(
            "INVALID_REQUEST",
            "Request body failed validation",
            fields=[
                {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
                for err in exc.errors()
            ],
        ),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = "BAD_REQUEST" if exc.status_code == 400 else f"HTTP_{exc.status_code}"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(code, str(exc.detail)),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TreasuryError, treasury_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
