from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field

from accessgate.services.access import Page, Pagination


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    # Include request/version metadata for consistent client tracing.
    request_id: str
    api_version: str = Field(default=API_VERSION)


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class PageEnvelope(BaseModel, Generic[T]):
    # List responses carry pagination next to the data, never inside it.
    pagination: Pagination
    data: list[T]
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def _meta(request: Request) -> dict[str, Any]:
    return ResponseMeta(request_id=get_request_id(request)).model_dump()


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    return {"data": data, "meta": _meta(request)}


def page_response(*, request: Request, page: Page[Any]) -> dict[str, Any]:
    return {**page.as_dict(), "meta": _meta(request)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Return the standard error envelope with request metadata.
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}
