"""
api/errors.py -- Helpers for raising errors in the ErrorResponse envelope.

Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump();
the HTTPException handler below wraps that dict as {"error": ...}.
The helpers here keep the common cases to one line in the routes.

install_error_handlers() extends that envelope to failures raised outside the
routes, from router 404s to unexpected 500s.
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, FieldErrorModel

logger = logging.getLogger("snippetvault.api")

# Message prefix -> field name, for core.validation messages.
_FIELD_PREFIXES = (
    ("Title", "title"),
    ("Description", "description"),
    ("Code", "code"),
    ("Programming language", "language"),
    ("Collection name", "name"),
    ("Collections cannot be nested", "parent_id"),
    ("Tag", "tags"),
)


def api_error(
    status_code: int,
    code: str,
    message: str,
    detail: Optional[str] = None,
    fields: Optional[list[tuple[str, str]]] = None,
) -> HTTPException:
    """Build (not raise) an HTTPException carrying a structured ErrorDetail."""
    return HTTPException(
        status_code=status_code,
        detail=ErrorDetail(
            code=code,
            message=message,
            detail=detail,
            fields=[FieldErrorModel(field=f, message=m) for f, m in fields] if fields else None,
        ).model_dump(),
    )


def not_found(code: str, message: str) -> HTTPException:
    return api_error(404, code, message)


def permission_denied(message: str = "You do not have permission to perform this action.") -> HTTPException:
    return api_error(403, "permission_denied", message)


def field_for_message(message: str) -> str:
    for prefix, field in _FIELD_PREFIXES:
        if message.startswith(prefix):
            return field
    return "body"


def validation_failed(messages: list[str]) -> HTTPException:
    """422 for business-rule failures reported as plain messages."""
    return api_error(
        422,
        "validation_error",
        messages[0] if len(messages) == 1 else "Request validation failed.",
        fields=[(field_for_message(m), m) for m in messages],
    )


# ---------------------------------------------------------------------------
# Application handlers
# ---------------------------------------------------------------------------

_LOCATION_PREFIXES = {"body", "query", "path", "header", "cookie"}
_STATUS_CODES = {404: "not_found", 405: "method_not_allowed"}


def _envelope(status_code: int, error: dict, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


def _error(code: str, message: str, **extra) -> dict:
    return ErrorDetail(code=code, message=message, **extra).model_dump()


def _field_name(loc) -> str:
    return ".".join(str(part) for part in loc if str(part) not in _LOCATION_PREFIXES) or "body"


async def _rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = int(getattr(exc, "retry_after", 60))
    return _envelope(
        429,
        _error("rate_limited", "Too many requests.", detail=str(exc)),
        headers={"Retry-After": str(retry_after)},
    )


async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [FieldErrorModel(field=_field_name(e.get("loc", ())), message=e.get("msg", "")) for e in exc.errors()]
    return _envelope(422, _error("validation_error", "Request validation failed.", fields=fields))


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # api_error() puts a ready ErrorDetail dict in detail; router 404/405 carry a string.
    if isinstance(exc.detail, dict):
        error = exc.detail
    else:
        error = _error(_STATUS_CODES.get(exc.status_code, f"http_{exc.status_code}"), str(exc.detail))
    return _envelope(exc.status_code, error, headers=getattr(exc, "headers", None))


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    # Never echo the exception: storage errors carry SQL and file paths.
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope(500, _error("internal_error", "An unexpected error occurred."))


def install_error_handlers(app: FastAPI) -> None:
    """Route every error the app can produce through the {"error": ...} envelope."""
    app.add_exception_handler(RateLimitExceeded, _rate_limited)
    app.add_exception_handler(RequestValidationError, _invalid_request)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(Exception, _unhandled)
