from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.core.config import Settings, get_settings
from accessgate.core.errors import ConflictError, NotFoundError, ValidationError
from accessgate.domain.models import Project, ProjectMember, Task
from accessgate.domain.roles import Actor
from accessgate.persistence.guards import not_deleted, tenant_predicate
from accessgate.persistence.repos import accounts as accounts_repo
from accessgate.services.access import (
    Contains,
    Exact,
    MembershipScope,
    MutationPolicy,
    Page,
    Range,
    RecordMapper,
    ScopeRule,
    SortSpec,
    TenantScope,
    apply_changes,
    build_predicates,
    check_version,
    commit_guarded,
    ensure_unique,
    load_for_mutation,
    paginate,
    resolve_window,
    timestamp,
    value,
)
from accessgate.services.audit import record_event


logger = logging.getLogger(__name__)

PROJECT_STATUSES = ("active", "archived")

PROJECT_MAPPER = RecordMapper(
    (
        value("id"),
        value("organization_id"),
        value("owner_id"),
        value("code"),
        value("title"),
        value("description", nullable=True),
        value("status"),
        value("version"),
        timestamp("created_at"),
        timestamp("updated_at"),
        timestamp("deleted_at", optional=True),
    )
)

MEMBER_MAPPER = RecordMapper(
    (
        value("id"),
        value("project_id"),
        value("member_id"),
        value("member_role"),
        timestamp("created_at"),
    )
)

PROJECT_FILTERS = {
    "search": Contains(Project.title, Project.code, Project.description),
    "code": Exact(Project.code),
    "status": Exact(Project.status),
    "owner_id": Exact(Project.owner_id),
    "created_at": Range(Project.created_at),
}

PROJECT_SORT = SortSpec(
    columns={
        "created_at": Project.created_at,
        "updated_at": Project.updated_at,
        "title": Project.title,
        "code": Project.code,
    },
    tie_breaker=Project.id,
)

MEMBER_SORT = SortSpec(columns={"created_at": ProjectMember.created_at}, tie_breaker=ProjectMember.id)

TENANT_SCOPE = TenantScope(Project.organization_id)
MEMBERSHIP_SCOPE = MembershipScope(
    link_model=ProjectMember,
    link_column=ProjectMember.project_id,
    resource_column=Project.id,
    member_column=ProjectMember.member_id,
)

UPDATE_POLICY = MutationPolicy(
    resource="project",
    scope=TENANT_SCOPE,
    mutable_fields=frozenset({"code", "title", "description", "status"}),
    locked_fields=frozenset({"organization_id", "owner_id"}),
    required_text_fields=frozenset({"code", "title"}),
    terminal_statuses=frozenset({"archived"}),
    transitions={"active": frozenset({"archived"})},
)

# Deleting and re-deleting archived projects is allowed; only live rows are loaded.
DELETE_POLICY = MutationPolicy(resource="project", scope=TENANT_SCOPE, mutable_fields=frozenset())


def project_scope(actor: Actor) -> ScopeRule:
    # Managers see their whole organization; members only projects they belong to.
    if actor.is_member_role:
        return MEMBERSHIP_SCOPE
    return TENANT_SCOPE


def _require_text(name: str, raw: str | None) -> str:
    if raw is None or not raw.strip():
        raise ValidationError(f"{name} must not be blank", details={"field": name})
    return raw.strip()


async def create_project(
    session: AsyncSession,
    actor: Actor,
    *,
    code: str,
    title: str,
    description: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    code = _require_text("code", code)
    title = _require_text("title", title)
    await ensure_unique(
        session,
        model=Project,
        column=Project.code,
        value=code,
        scope=[tenant_predicate(Project.organization_id, actor.organization_id)],
        label="Project code",
    )
    project = Project(
        id=str(uuid4()),
        organization_id=actor.organization_id,
        owner_id=actor.id,
        code=code,
        title=title,
        description=description,
        status="active",
    )
    session.add(project)
    await record_event(
        session=session,
        actor=actor,
        event_type="project.created",
        resource_type="project",
        resource_id=project.id,
        request_id=request_id,
        metadata={"code": code},
    )
    await commit_guarded(session, resource="project", unique_conflicts=True)
    return PROJECT_MAPPER.map(project)


async def search_projects(
    session: AsyncSession,
    actor: Actor,
    filters: Mapping[str, Any],
    *,
    page: int | None = None,
    limit: int | None = None,
    sort: str | None = None,
    order: str | None = None,
    include_deleted: bool = False,
    settings: Settings | None = None,
) -> Page[dict[str, Any]]:
    resolved = settings or get_settings()
    window = resolve_window(
        page,
        limit,
        default_limit=resolved.pagination_default_limit,
        max_limit=resolved.pagination_max_limit,
    )
    predicates = build_predicates(
        model=Project,
        actor=actor,
        scope=project_scope(actor),
        fields=PROJECT_FILTERS,
        filters=filters,
        # Only tenant-wide readers may look at soft-deleted projects.
        include_deleted=include_deleted and not actor.is_member_role,
    )
    result = await paginate(
        session,
        model=Project,
        predicates=predicates,
        window=window,
        order_by=PROJECT_SORT.order_by(sort, order),
    )
    return result.map(PROJECT_MAPPER.map)


async def load_visible_project(session: AsyncSession, actor: Actor, project_id: str) -> Project:
    # Missing, deleted and out-of-scope projects are indistinguishable to the caller.
    stmt = select(Project).where(
        Project.id == project_id,
        not_deleted(Project),
        project_scope(actor).clause(actor),
    )
    project = (await session.execute(stmt)).scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project not found")
    return project


async def get_project(session: AsyncSession, actor: Actor, project_id: str) -> dict[str, Any]:
    return PROJECT_MAPPER.map(await load_visible_project(session, actor, project_id))


async def update_project(
    session: AsyncSession,
    actor: Actor,
    project_id: str,
    changes: Mapping[str, Any],
    *,
    expected_version: int | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    project = await load_for_mutation(
        session, model=Project, resource_id=project_id, actor=actor, policy=UPDATE_POLICY
    )
    check_version(project, expected_version)
    normalized = dict(changes)
    for name in ("code", "title"):
        if isinstance(normalized.get(name), str):
            normalized[name] = normalized[name].strip()
    if "status" in normalized and normalized["status"] not in PROJECT_STATUSES:
        raise ValidationError("Unknown project status", details={"status": normalized["status"]})
    if normalized.get("code") and normalized["code"] != project.code:
        await ensure_unique(
            session,
            model=Project,
            column=Project.code,
            value=normalized["code"],
            scope=[tenant_predicate(Project.organization_id, actor.organization_id)],
            label="Project code",
            exclude_id=project.id,
        )

    updated_fields = apply_changes(project, normalized, UPDATE_POLICY)
    if updated_fields:
        await record_event(
            session=session,
            actor=actor,
            event_type="project.updated",
            resource_type="project",
            resource_id=project.id,
            request_id=request_id,
            metadata={"updated_fields": updated_fields},
        )
        await commit_guarded(session, resource="project", unique_conflicts=True)
    return PROJECT_MAPPER.map(project)


async def delete_project(
    session: AsyncSession,
    actor: Actor,
    project_id: str,
    *,
    request_id: str | None = None,
) -> None:
    project = await load_for_mutation(
        session, model=Project, resource_id=project_id, actor=actor, policy=DELETE_POLICY
    )
    now = datetime.now(timezone.utc)
    project.deleted_at = now
    # Tasks and membership links of a removed project disappear with it.
    cascaded = await session.execute(
        update(Task)
        .where(Task.project_id == project.id, not_deleted(Task))
        .values(deleted_at=now, version=Task.version + 1)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(ProjectMember)
        .where(ProjectMember.project_id == project.id, not_deleted(ProjectMember))
        .values(deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    await record_event(
        session=session,
        actor=actor,
        event_type="project.deleted",
        resource_type="project",
        resource_id=project.id,
        request_id=request_id,
        metadata={"cascaded_tasks": cascaded.rowcount},
    )
    await commit_guarded(session, resource="project")


async def list_project_members(
    session: AsyncSession,
    actor: Actor,
    project_id: str,
    *,
    page: int | None = None,
    limit: int | None = None,
    settings: Settings | None = None,
) -> Page[dict[str, Any]]:
    resolved = settings or get_settings()
    window = resolve_window(
        page,
        limit,
        default_limit=resolved.pagination_default_limit,
        max_limit=resolved.pagination_max_limit,
    )
    project = await load_visible_project(session, actor, project_id)
    result = await paginate(
        session,
        model=ProjectMember,
        predicates=[ProjectMember.project_id == project.id, not_deleted(ProjectMember)],
        window=window,
        order_by=MEMBER_SORT.order_by(None),
    )
    return result.map(MEMBER_MAPPER.map)


async def add_project_member(
    session: AsyncSession,
    actor: Actor,
    project_id: str,
    *,
    member_id: str,
    request_id: str | None = None,
) -> dict[str, Any]:
    project = await load_for_mutation(
        session, model=Project, resource_id=project_id, actor=actor, policy=UPDATE_POLICY
    )
    found = await accounts_repo.get_member_account(session, member_id, project.organization_id)
    if found is None:
        raise NotFoundError("Member account not found", details={"id": member_id})
    role, _account = found
    existing = await session.execute(
        select(ProjectMember.id).where(
            ProjectMember.project_id == project.id,
            ProjectMember.member_id == member_id,
            not_deleted(ProjectMember),
        )
    )
    if existing.first() is not None:
        raise ConflictError("Account is already a project member", code="DUPLICATE")

    link = ProjectMember(
        id=str(uuid4()),
        project_id=project.id,
        member_id=member_id,
        member_role=role.value,
    )
    session.add(link)
    await record_event(
        session=session,
        actor=actor,
        event_type="project.member_added",
        resource_type="project",
        resource_id=project.id,
        request_id=request_id,
        metadata={"member_id": member_id, "member_role": role.value},
    )
    await commit_guarded(session, resource="project_member")
    return MEMBER_MAPPER.map(link)


async def remove_project_member(
    session: AsyncSession,
    actor: Actor,
    project_id: str,
    member_id: str,
    *,
    request_id: str | None = None,
) -> None:
    project = await load_for_mutation(
        session, model=Project, resource_id=project_id, actor=actor, policy=UPDATE_POLICY
    )
    link = (
        await session.execute(
            select(ProjectMember).where(
                ProjectMember.project_id == project.id,
                ProjectMember.member_id == member_id,
                not_deleted(ProjectMember),
            )
        )
    ).scalar_one_or_none()
    if link is None:
        raise NotFoundError("Project member not found", details={"id": member_id})
    await session.delete(link)
    # Open work assigned to the removed member goes back to the unassigned pool.
    unassigned = await session.execute(
        update(Task)
        .where(
            Task.project_id == project.id,
            Task.assignee_id == member_id,
            Task.status.not_in(("completed", "cancelled")),
            not_deleted(Task),
        )
        .values(assignee_id=None, version=Task.version + 1)
        .execution_options(synchronize_session=False)
    )
    await record_event(
        session=session,
        actor=actor,
        event_type="project.member_removed",
        resource_type="project",
        resource_id=project.id,
        request_id=request_id,
        metadata={"member_id": member_id, "unassigned_tasks": unassigned.rowcount},
    )
    await commit_guarded(session, resource="project_member")
