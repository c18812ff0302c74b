"""Error taxonomy and the handlers that map it onto HTTP responses."""

import logging
import builtins
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from askmoe.core.logging import get_request_id


class ErrorKind(str, Enum):
    """Closed set of machine-readable error kinds exposed to callers."""
    INVALID_ARGUMENT = "invalid_argument"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    EMPTY_RESPONSE = "empty_response"
    DUPLICATE_KEY = "duplicate_key"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    INTERNAL = "internal_error"


class AppError(Exception):
    kind = ErrorKind.INTERNAL
    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    @property
    def code(self) -> str:
        return self.kind.value

    def extra_payload(self) -> Dict[str, Any]:
        return {}

    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(AppError, ValueError):
    kind = ErrorKind.INVALID_ARGUMENT
    status_code = 400


class NotFoundError(AppError, LookupError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class UnauthorizedError(AppError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401


class PermissionError(AppError, builtins.PermissionError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class QuotaExceededError(AppError):
    """Entitlement denial; the caller is pointed at an upgrade."""
    kind = ErrorKind.QUOTA_EXCEEDED
    status_code = 403

    def extra_payload(self) -> Dict[str, Any]:
        return {"upgradeRequired": True}


class RateLimitError(AppError):
    kind = ErrorKind.RATE_LIMITED
    status_code = 429

    def __init__(self, message: str, *, retry_after: int = 1, limit: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message, request_id=request_id)
        self.retry_after = max(1, int(retry_after))
        self.limit = limit

    def extra_payload(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after}

    def headers(self) -> Dict[str, str]:
        headers = {"Retry-After": str(self.retry_after), "X-RateLimit-Remaining": "0"}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
        return headers


class UpstreamUnavailableError(AppError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    status_code = 502


class EmptyResponseError(AppError):
    kind = ErrorKind.EMPTY_RESPONSE
    status_code = 502


class DuplicateKeyError(AppError):
    """Unique-key race on insert. Recovered by the caller, never surfaced."""
    kind = ErrorKind.DUPLICATE_KEY
    status_code = 409

    def __init__(self, key: str):
        super().__init__(f"Duplicate key: {key}")
        self.key = key


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    payload.update(exc.extra_payload())
    logger = logging.getLogger("askmoe")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    for name, value in exc.headers().items():
        response.headers[name] = value
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    if exc.status_code == 404:
        code = ErrorKind.NOT_FOUND.value
    elif exc.status_code == 401:
        code = ErrorKind.UNAUTHORIZED.value
    else:
        code = "http_error"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("askmoe")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid input: {location} {first.get('msg', '')}".strip() if location else "Invalid input"
    logging.getLogger("askmoe").warning(
        "validation.error",
        extra={"request_id": rid, "error_code": ErrorKind.INVALID_ARGUMENT.value, "status": 400},
    )
    response = JSONResponse(status_code=400, content=_error_payload(ErrorKind.INVALID_ARGUMENT.value, message, rid))
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("askmoe")
    logger.error(
        "unhandled.exception",
        exc_info=exc,
        extra={"request_id": rid, "error_code": ErrorKind.INTERNAL.value, "path": request.url.path},
    )
    payload = _error_payload(ErrorKind.INTERNAL.value, "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
