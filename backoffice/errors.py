"""
Error envelope handlers.

Every failure leaves the API as ``{"success": false, "message": ..., "error": ...}``
with the status code of the underlying error.
"""
from http import HTTPStatus

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = structlog.get_logger(__name__)


def error_response(status_code: int, message: str, error: str = None, headers: dict = None) -> JSONResponse:
    if error is None:
        try:
            error = HTTPStatus(status_code).phrase
        except ValueError:
            error = "Error"
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error},
        headers=headers,
    )


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "form")]
    return ".".join(parts) or "body"


def describe_validation_errors(errors) -> str:
    """Collapse pydantic errors into one client-facing sentence."""
    missing = [_field_name(e.get("loc", ())) for e in errors if e.get("type") == "missing"]
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    first = errors[0] if errors else {}
    msg = str(first.get("msg", "Invalid request"))
    return f"Invalid value for {_field_name(first.get('loc', ()))}: {msg}"


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_response(exc.status_code, detail, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(400, describe_validation_errors(exc.errors()), error="Validation failed")


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, f"Rate limit exceeded: {exc.detail}")


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return error_response(500, str(exc) or exc.__class__.__name__, error="Internal server error")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
