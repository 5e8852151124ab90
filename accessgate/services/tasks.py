from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.core.config import Settings, get_settings
from accessgate.core.errors import ConflictError, NotFoundError, ValidationError
from accessgate.domain.models import Project, ProjectMember, Task
from accessgate.domain.roles import Actor
from accessgate.persistence.guards import not_deleted
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
    date_field,
    load_for_mutation,
    paginate,
    require_reference,
    resolve_window,
    timestamp,
    value,
)
from accessgate.services.audit import record_event


logger = logging.getLogger(__name__)

TASK_STATUSES = ("open", "in_progress", "blocked", "completed", "cancelled")
TERMINAL_STATUSES = frozenset({"completed", "cancelled"})

TASK_TRANSITIONS = {
    "open": frozenset({"in_progress", "blocked", "completed", "cancelled"}),
    "in_progress": frozenset({"open", "blocked", "completed", "cancelled"}),
    "blocked": frozenset({"open", "in_progress", "cancelled"}),
}

TASK_MAPPER = RecordMapper(
    (
        value("id"),
        value("organization_id"),
        value("project_id"),
        value("creator_id"),
        value("assignee_id", nullable=True),
        value("title"),
        value("description", nullable=True),
        value("status"),
        value("priority"),
        date_field("due_date", nullable=True),
        value("version"),
        timestamp("created_at"),
        timestamp("updated_at"),
        timestamp("deleted_at", optional=True),
    )
)

TASK_FILTERS = {
    "search": Contains(Task.title, Task.description),
    "project_id": Exact(Task.project_id),
    "status": Exact(Task.status),
    "priority": Exact(Task.priority),
    # An explicit null selects unassigned tasks.
    "assignee_id": Exact(Task.assignee_id, null_matches=True),
    "due_date": Range(Task.due_date),
    "created_at": Range(Task.created_at),
}

TASK_SORT = SortSpec(
    columns={
        "created_at": Task.created_at,
        "updated_at": Task.updated_at,
        "due_date": Task.due_date,
        "priority": Task.priority,
        "title": Task.title,
    },
    tie_breaker=Task.id,
)

TENANT_SCOPE = TenantScope(Task.organization_id)
MEMBERSHIP_SCOPE = MembershipScope(
    link_model=ProjectMember,
    link_column=ProjectMember.project_id,
    resource_column=Task.project_id,
    member_column=ProjectMember.member_id,
)

MANAGER_POLICY = MutationPolicy(
    resource="task",
    scope=TENANT_SCOPE,
    mutable_fields=frozenset(
        {"title", "description", "status", "priority", "due_date", "assignee_id", "project_id"}
    ),
    locked_fields=frozenset({"organization_id", "creator_id"}),
    required_text_fields=frozenset({"title"}),
    terminal_statuses=TERMINAL_STATUSES,
    transitions=TASK_TRANSITIONS,
)

# Members progress work on tasks of their projects but cannot reshape them.
MEMBER_POLICY = MutationPolicy(
    resource="task",
    scope=MEMBERSHIP_SCOPE,
    mutable_fields=frozenset({"status", "description"}),
    locked_fields=frozenset(
        {"organization_id", "creator_id", "project_id", "assignee_id", "title", "priority", "due_date"}
    ),
    terminal_statuses=TERMINAL_STATUSES,
    transitions=TASK_TRANSITIONS,
    hide_out_of_scope=True,
)

DELETE_POLICY = MutationPolicy(resource="task", scope=TENANT_SCOPE, mutable_fields=frozenset())


def task_scope(actor: Actor) -> ScopeRule:
    if actor.is_member_role:
        return MEMBERSHIP_SCOPE
    return TENANT_SCOPE


def mutation_policy(actor: Actor) -> MutationPolicy:
    return MEMBER_POLICY if actor.is_member_role else MANAGER_POLICY


async def _require_active_project(session: AsyncSession, actor: Actor, project_id: str) -> Project:
    project = await require_reference(
        session,
        model=Project,
        reference_id=project_id,
        organization_id=actor.organization_id,
        label="Project",
    )
    if project.status == "archived":
        raise ConflictError(
            "Cannot add tasks to an archived project",
            code="RESOURCE_LOCKED",
            details={"project_id": project_id},
        )
    return project


async def _require_assignable(session: AsyncSession, project_id: str, assignee_id: str) -> None:
    # Assignees must hold a live membership on the task's project.
    link = await session.execute(
        select(ProjectMember.id).where(
            ProjectMember.project_id == project_id,
            ProjectMember.member_id == assignee_id,
            not_deleted(ProjectMember),
        )
    )
    if link.first() is None:
        raise ValidationError(
            "Assignee is not a member of the project",
            details={"assignee_id": assignee_id, "project_id": project_id},
        )


async def ensure_project_writable(session: AsyncSession, project_id: str) -> None:
    # Archived projects are read-only, including their tasks and comment threads.
    status = await session.scalar(select(Project.status).where(Project.id == project_id))
    if status == "archived":
        raise ConflictError(
            "Project is archived",
            code="RESOURCE_LOCKED",
            details={"project_id": project_id},
        )


def _check_priority(priority: int) -> None:
    if not 1 <= priority <= 5:
        raise ValidationError("priority must be between 1 and 5", details={"priority": priority})


async def create_task(
    session: AsyncSession,
    actor: Actor,
    *,
    project_id: str,
    title: str,
    description: str | None = None,
    priority: int = 3,
    due_date: date | None = None,
    assignee_id: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    if title is None or not title.strip():
        raise ValidationError("title must not be blank", details={"field": "title"})
    _check_priority(priority)
    project = await _require_active_project(session, actor, project_id)
    if assignee_id is not None:
        await _require_assignable(session, project.id, assignee_id)

    task = Task(
        id=str(uuid4()),
        organization_id=project.organization_id,
        project_id=project.id,
        creator_id=actor.id,
        assignee_id=assignee_id,
        title=title.strip(),
        description=description,
        status="open",
        priority=priority,
        due_date=due_date,
    )
    session.add(task)
    await record_event(
        session=session,
        actor=actor,
        event_type="task.created",
        resource_type="task",
        resource_id=task.id,
        request_id=request_id,
        metadata={"project_id": project.id, "assignee_id": assignee_id},
    )
    await commit_guarded(session, resource="task")
    return TASK_MAPPER.map(task)


async def search_tasks(
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
        model=Task,
        actor=actor,
        scope=task_scope(actor),
        fields=TASK_FILTERS,
        filters=filters,
        include_deleted=include_deleted and not actor.is_member_role,
    )
    result = await paginate(
        session,
        model=Task,
        predicates=predicates,
        window=window,
        order_by=TASK_SORT.order_by(sort, order),
    )
    return result.map(TASK_MAPPER.map)


async def load_visible_task(session: AsyncSession, actor: Actor, task_id: str) -> Task:
    stmt = select(Task).where(Task.id == task_id, not_deleted(Task), task_scope(actor).clause(actor))
    task = (await session.execute(stmt)).scalar_one_or_none()
    if task is None:
        raise NotFoundError("Task not found")
    return task


async def get_task(session: AsyncSession, actor: Actor, task_id: str) -> dict[str, Any]:
    return TASK_MAPPER.map(await load_visible_task(session, actor, task_id))


async def update_task(
    session: AsyncSession,
    actor: Actor,
    task_id: str,
    changes: Mapping[str, Any],
    *,
    expected_version: int | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    policy = mutation_policy(actor)
    task = await load_for_mutation(session, model=Task, resource_id=task_id, actor=actor, policy=policy)
    check_version(task, expected_version)
    await ensure_project_writable(session, task.project_id)

    normalized = dict(changes)
    if isinstance(normalized.get("title"), str):
        normalized["title"] = normalized["title"].strip()
    if "status" in normalized and normalized["status"] not in TASK_STATUSES:
        raise ValidationError("Unknown task status", details={"status": normalized["status"]})
    if "priority" in normalized:
        if normalized["priority"] is None:
            raise ValidationError("priority must not be null", details={"field": "priority"})
        _check_priority(normalized["priority"])

    if not actor.is_member_role:
        if "project_id" in normalized and normalized["project_id"] is None:
            raise ValidationError("project_id must not be null", details={"field": "project_id"})
        target_project = normalized.get("project_id") or task.project_id
        if target_project != task.project_id:
            await _require_active_project(session, actor, target_project)
        target_assignee = normalized["assignee_id"] if "assignee_id" in normalized else task.assignee_id
        reassigned = "assignee_id" in normalized and normalized["assignee_id"] != task.assignee_id
        moved = target_project != task.project_id
        if target_assignee is not None and (reassigned or moved):
            await _require_assignable(session, target_project, target_assignee)

    updated_fields = apply_changes(task, normalized, policy)
    if updated_fields:
        await record_event(
            session=session,
            actor=actor,
            event_type="task.updated",
            resource_type="task",
            resource_id=task.id,
            request_id=request_id,
            metadata={"updated_fields": updated_fields, "status": task.status},
        )
        await commit_guarded(session, resource="task")
    return TASK_MAPPER.map(task)


async def delete_task(
    session: AsyncSession,
    actor: Actor,
    task_id: str,
    *,
    request_id: str | None = None,
) -> None:
    task = await load_for_mutation(session, model=Task, resource_id=task_id, actor=actor, policy=DELETE_POLICY)
    task.deleted_at = datetime.now(timezone.utc)
    await record_event(
        session=session,
        actor=actor,
        event_type="task.deleted",
        resource_type="task",
        resource_id=task.id,
        request_id=request_id,
        metadata={"project_id": task.project_id},
    )
    await commit_guarded(session, resource="task")
