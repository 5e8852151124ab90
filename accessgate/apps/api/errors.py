from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from accessgate.apps.api.response import error_response
from accessgate.core.errors import AccessGateError, AuthenticationError
from accessgate.persistence.guards import ScopePredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def access_error_handler(request: Request, exc: AccessGateError) -> JSONResponse:
    # Domain errors carry their own status and code; map them one to one.
    payload = error_response(
        request=request,
        code=exc.code,
        message=exc.message,
        details=jsonable_encoder(exc.details) if exc.details else None,
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(content=payload, status_code=exc.status_code, headers=headers)


async def http_exception_handler(request: Request, exc: HTTPException | StarletteHTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Surface request-shape errors with structured details for client parsing.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def scope_predicate_exception_handler(request: Request, exc: ScopePredicateError) -> JSONResponse:
    # A scope predicate without an identifier is a server bug, never a client error.
    logger.error("scope_predicate_missing path=%s message=%s", request.url.path, exc.message)
    payload = error_response(
        request=request,
        code="SCOPE_PREDICATE_REQUIRED",
        message="Scope predicate required",
    )
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("unhandled_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
