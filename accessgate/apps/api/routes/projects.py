from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.apps.api.deps import get_app_settings, get_db, require_any_role, require_manager
from accessgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from accessgate.apps.api.response import PageEnvelope, SuccessEnvelope, get_request_id, page_response, success_response
from accessgate.core.config import Settings
from accessgate.domain.roles import Actor
from accessgate.services import projects as projects_service


router = APIRouter(prefix="/{role}/projects", tags=["projects"], responses=DEFAULT_ERROR_RESPONSES)

_PAGING_FIELDS = {"page", "limit", "sort", "order", "include_deleted"}


class ProjectResponse(BaseModel):
    id: str
    organization_id: str
    owner_id: str
    code: str
    title: str
    description: str | None
    status: str
    version: int
    created_at: str
    updated_at: str
    deleted_at: str | None = None


class ProjectMemberResponse(BaseModel):
    id: str
    project_id: str
    member_id: str
    member_role: str
    created_at: str


class ProjectCreateRequest(BaseModel):
    # Reject unknown fields so tenant and owner cannot be supplied in the payload.
    model_config = ConfigDict(extra="forbid")

    code: str = Field(max_length=64)
    title: str = Field(max_length=200)
    description: str | None = None


class ProjectUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str | None = Field(default=None, max_length=64)
    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    status: str | None = None
    # Accepted so clients may echo them back; any change is rejected.
    organization_id: str | None = None
    owner_id: str | None = None
    version: int | None = None


class ProjectSearchRequest(BaseModel):
    # Unknown filter keys are ignored rather than rejected.
    model_config = ConfigDict(extra="ignore")

    search: str | None = None
    code: str | None = None
    status: str | None = None
    owner_id: str | None = None
    created_at_from: datetime | None = None
    created_at_to: datetime | None = None
    page: int | None = None
    limit: int | None = None
    sort: str | None = None
    order: str | None = None
    include_deleted: bool = False


class ProjectMemberAddRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    member_id: str


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[ProjectResponse],
    response_model_exclude_unset=True,
)
async def create_project(
    payload: ProjectCreateRequest,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> dict:
    project = await projects_service.create_project(
        db,
        actor,
        code=payload.code,
        title=payload.title,
        description=payload.description,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=project)


@router.post("/search", response_model=PageEnvelope[ProjectResponse], response_model_exclude_unset=True)
async def search_projects(
    payload: ProjectSearchRequest,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    # Only keys the caller actually sent become filters, so null stays distinct from absent.
    filters = payload.model_dump(exclude_unset=True, exclude=_PAGING_FIELDS)
    page = await projects_service.search_projects(
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


@router.get(
    "/{project_id}",
    response_model=SuccessEnvelope[ProjectResponse],
    response_model_exclude_unset=True,
)
async def get_project(
    project_id: str,
    request: Request,
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
) -> dict:
    project = await projects_service.get_project(db, actor, project_id)
    return success_response(request=request, data=project)


@router.patch(
    "/{project_id}",
    response_model=SuccessEnvelope[ProjectResponse],
    response_model_exclude_unset=True,
)
async def update_project(
    project_id: str,
    payload: ProjectUpdateRequest,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    expected_version = changes.pop("version", None)
    project = await projects_service.update_project(
        db,
        actor,
        project_id,
        changes,
        expected_version=expected_version,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await projects_service.delete_project(db, actor, project_id, request_id=get_request_id(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{project_id}/members", response_model=PageEnvelope[ProjectMemberResponse])
async def list_project_members(
    project_id: str,
    request: Request,
    page: int | None = Query(default=None),
    limit: int | None = Query(default=None),
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    members = await projects_service.list_project_members(
        db, actor, project_id, page=page, limit=limit, settings=settings
    )
    return page_response(request=request, page=members)


@router.post(
    "/{project_id}/members",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessEnvelope[ProjectMemberResponse],
)
async def add_project_member(
    project_id: str,
    payload: ProjectMemberAddRequest,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> dict:
    member = await projects_service.add_project_member(
        db,
        actor,
        project_id,
        member_id=payload.member_id,
        request_id=get_request_id(request),
    )
    return success_response(request=request, data=member)


@router.delete("/{project_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_project_member(
    project_id: str,
    member_id: str,
    request: Request,
    actor: Actor = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await projects_service.remove_project_member(
        db, actor, project_id, member_id, request_id=get_request_id(request)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
