from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.apps.api.deps import get_app_settings, get_db, require_any_role
from accessgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from accessgate.apps.api.response import PageEnvelope, SuccessEnvelope, get_request_id, page_response, success_response
from accessgate.core.config import Settings
from accessgate.domain.roles import Actor
from accessgate.services import comments as comments_service


router = APIRouter(prefix="/{role}", tags=["comments"], responses=DEFAULT_ERROR_RESPONSES)

_PAGING_FIELDS = {"page", "limit", "sort", "order"}


class CommentResponse(BaseModel):
    id: str
    task_id: str
    author_id: str
    author_role: str
    body: str
    version: int
    created_at: str
    updated_at: str


class CommentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    body: str


class CommentUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    body: str | None = None
    task_id: str | None = None
    author_id: str | None = None
    version: int | None = None


class CommentSearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    search: str | None = None
    task_id: str | None = None
    author_id: str | None = None
    created_at_from: datetime | None = None
    created_at_to: datetime | None = None
    page: int | None = None
    limit: int | None = None
    sort: str | None = None
    order: str | None = None


@router.post(
    "/tasks/{task_id}/comments",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[CommentResponse],
)
async def create_comment(
    task_id: str,
    payload: CommentCreateRequest,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
) -> dict:
    comment = await comments_service.create_comment(
        db, actor, task_id, body=payload.body, request_id=get_request_id(request)
    )
    return success_response(request=request, data=comment)


@router.post("/tasks/{task_id}/comments/search", response_model=PageEnvelope[CommentResponse])
async def search_task_comments(
    task_id: str,
    payload: CommentSearchRequest,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    filters = payload.model_dump(exclude_unset=True, exclude=_PAGING_FIELDS)
    page = await comments_service.list_task_comments(
        db,
        actor,
        task_id,
        filters,
        page=payload.page,
        limit=payload.limit,
        sort=payload.sort,
        order=payload.order,
        settings=settings,
    )
    return page_response(request=request, page=page)


@router.post("/comments/search", response_model=PageEnvelope[CommentResponse])
async def search_own_comments(
    payload: CommentSearchRequest,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    filters = payload.model_dump(exclude_unset=True, exclude=_PAGING_FIELDS)
    page = await comments_service.search_own_comments(
        db,
        actor,
        filters,
        page=payload.page,
        limit=payload.limit,
        sort=payload.sort,
        order=payload.order,
        settings=settings,
    )
    return page_response(request=request, page=page)


@router.get("/comments/{comment_id}", response_model=SuccessEnvelope[CommentResponse])
async def get_comment(
    comment_id: str,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
) -> dict:
    comment = await comments_service.get_comment(db, actor, comment_id)
    return success_response(request=request, data=comment)


@router.patch("/comments/{comment_id}", response_model=SuccessEnvelope[CommentResponse])
async def update_comment(
    comment_id: str,
    payload: CommentUpdateRequest,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    expected_version = changes.pop("version", None)
    comment = await comments_service.update_comment(
        db,
        actor,
        comment_id,
        changes,
        expected_version=expected_version,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=comment)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: str,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await comments_service.delete_comment(db, actor, comment_id, request_id=get_request_id(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
