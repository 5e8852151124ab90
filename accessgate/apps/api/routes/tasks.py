from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.apps.api.deps import get_app_settings, get_db, require_any_role, require_manager
from accessgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from accessgate.apps.api.response import PageEnvelope, SuccessEnvelope, get_request_id, page_response, success_response
from accessgate.core.config import Settings
from accessgate.domain.roles import Actor
from accessgate.services import tasks as tasks_service


router = APIRouter(prefix="/{role}/tasks", tags=["tasks"], responses=DEFAULT_ERROR_RESPONSES)

_PAGING_FIELDS = {"page", "limit", "sort", "order", "include_deleted"}


class TaskResponse(BaseModel):
    id: str
    organization_id: str
    project_id: str
    creator_id: str
    assignee_id: str | None
    title: str
    description: str | None
    status: str
    priority: int
    due_date: str | None
    version: int
    created_at: str
    updated_at: str
    deleted_at: str | None = None


class TaskCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project_id: str
    title: str = Field(max_length=200)
    description: str | None = None
    priority: int = 3
    due_date: date | None = None
    assignee_id: str | None = None


class TaskUpdateRequest(BaseModel):
    # One shape for every role; the guard decides which fields each role may change.
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    status: str | None = None
    priority: int | None = None
    due_date: date | None = None
    assignee_id: str | None = None
    project_id: str | None = None
    organization_id: str | None = None
    version: int | None = None


class TaskSearchRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    search: str | None = None
    project_id: str | None = None
    status: str | None = None
    priority: int | None = None
    # Send null explicitly to select unassigned tasks.
    assignee_id: str | None = None
    due_date_from: date | None = None
    due_date_to: date | None = None
    created_at_from: datetime | None = None
    created_at_to: datetime | None = None
    page: int | None = None
    limit: int | None = None
    sort: str | None = None
    order: str | None = None
    include_deleted: bool = False


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[TaskResponse],
    response_model_exclude_unset=True,
)
async def create_task(
    payload: TaskCreateRequest,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> dict:
    task = await tasks_service.create_task(
        db,
        actor,
        project_id=payload.project_id,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        due_date=payload.due_date,
        assignee_id=payload.assignee_id,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=task)


@router.post("/search", response_model=PageEnvelope[TaskResponse], response_model_exclude_unset=True)
async def search_tasks(
    payload: TaskSearchRequest,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    filters = payload.model_dump(exclude_unset=True, exclude=_PAGING_FIELDS)
    page = await tasks_service.search_tasks(
        db,
        actor,
        filters,
        page=payload.page,
        limit=payload.limit,
        sort=payload.sort,
        order=payload.order,
        include_deleted=payload.include_deleted,
        settings=settings,
    )
    return page_response(request=request, page=page)


@router.get("/{task_id}", response_model=SuccessEnvelope[TaskResponse], response_model_exclude_unset=True)
async def get_task(
    task_id: str,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
) -> dict:
    task = await tasks_service.get_task(db, actor, task_id)
    return success_response(request=request, data=task)


@router.patch("/{task_id}", response_model=SuccessEnvelope[TaskResponse], response_model_exclude_unset=True)
async def update_task(
    task_id: str,
    payload: TaskUpdateRequest,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    expected_version = changes.pop("version", None)
    task = await tasks_service.update_task(
        db,
        actor,
        task_id,
        changes,
        expected_version=expected_version,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await tasks_service.delete_task(db, actor, task_id, request_id=get_request_id(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
