from __future__ import annotations

from typing import Any

from accessgate.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response(
        "Validation failed",
        _error_example(code="VALIDATION_ERROR", message="title must not be blank", details={"field": "title"}),
    ),
    401: _response(
        "Unauthorized",
        _error_example(code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    ),
    403: _response(
        "Forbidden",
        _error_example(code="AUTH_ROLE_MISMATCH", message="Token role developer cannot access manager endpoints"),
    ),
    404: _response("Not found", _error_example(code="NOT_FOUND", message="Task not found")),
    409: _response(
        "Conflict",
        _error_example(
            code="RESOURCE_LOCKED",
            message="Cannot modify a completed task",
            details={"status": "completed"},
        ),
    ),
    422: _response(
        "Request validation error",
        _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    ),
    500: _response(
        "Internal server error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
}
