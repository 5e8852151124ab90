from __future__ import annotations

import logging
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.core.config import Settings, get_settings
from accessgate.core.errors import ConflictError, NotFoundError, ValidationError
from accessgate.domain.models import Comment, Task
from accessgate.domain.roles import Actor
from accessgate.persistence.guards import not_deleted
from accessgate.services.access import (
    Contains,
    Exact,
    MutationPolicy,
    OwnerScope,
    Page,
    Range,
    RecordMapper,
    SortSpec,
    TenantScope,
    apply_changes,
    build_predicates,
    check_version,
    commit_guarded,
    load_for_mutation,
    paginate,
    resolve_window,
    timestamp,
    value,
)
from accessgate.services.audit import record_event
from accessgate.services.tasks import TERMINAL_STATUSES, ensure_project_writable, load_visible_task, task_scope


logger = logging.getLogger(__name__)

COMMENT_MAPPER = RecordMapper(
    (
        value("id"),
        value("task_id"),
        value("author_id"),
        value("author_role"),
        value("body"),
        value("version"),
        timestamp("created_at"),
        timestamp("updated_at"),
    )
)

COMMENT_FILTERS = {
    "search": Contains(Comment.body),
    "task_id": Exact(Comment.task_id),
    "author_id": Exact(Comment.author_id),
    "created_at": Range(Comment.created_at),
}

COMMENT_SORT = SortSpec(
    columns={"created_at": Comment.created_at, "updated_at": Comment.updated_at},
    tie_breaker=Comment.id,
)

OWNER_SCOPE = OwnerScope(Comment.author_id)
TENANT_SCOPE = TenantScope(Comment.organization_id)

OWNER_POLICY = MutationPolicy(
    resource="comment",
    scope=OWNER_SCOPE,
    mutable_fields=frozenset({"body"}),
    locked_fields=frozenset({"task_id", "author_id", "author_role", "organization_id"}),
    required_text_fields=frozenset({"body"}),
)


def _on_visible_task(actor: Actor):
    return exists().where(
        Task.id == Comment.task_id,
        not_deleted(Task),
        task_scope(actor).clause(actor),
    )


def _window(page: int | None, limit: int | None, settings: Settings | None):
    resolved = settings or get_settings()
    return resolve_window(
        page,
        limit,
        default_limit=resolved.pagination_default_limit,
        max_limit=resolved.pagination_max_limit,
    )


async def create_comment(
    session: AsyncSession,
    actor: Actor,
    task_id: str,
    *,
    body: str,
    request_id: str | None = None,
) -> dict[str, Any]:
    if body is None or not body.strip():
        raise ValidationError("body must not be blank", details={"field": "body"})
    task = await load_visible_task(session, actor, task_id)
    if task.status in TERMINAL_STATUSES:
        raise ConflictError(
            f"Cannot comment on a {task.status} task",
            code="RESOURCE_LOCKED",
            details={"status": task.status},
        )
    await ensure_project_writable(session, task.project_id)
    comment = Comment(
        id=str(uuid4()),
        organization_id=task.organization_id,
        task_id=task.id,
        author_id=actor.id,
        author_role=actor.role.value,
        body=body.strip(),
    )
    session.add(comment)
    await record_event(
        session=session,
        actor=actor,
        event_type="comment.created",
        resource_type="comment",
        resource_id=comment.id,
        request_id=request_id,
        metadata={"task_id": task.id},
    )
    await commit_guarded(session, resource="comment")
    return COMMENT_MAPPER.map(comment)


async def list_task_comments(
    session: AsyncSession,
    actor: Actor,
    task_id: str,
    filters: Mapping[str, Any],
    *,
    page: int | None = None,
    limit: int | None = None,
    sort: str | None = None,
    order: str | None = None,
    settings: Settings | None = None,
) -> Page[dict[str, Any]]:
    window = _window(page, limit, settings)
    # Visibility of a thread follows visibility of its task.
    task = await load_visible_task(session, actor, task_id)
    predicates = build_predicates(
        model=Comment,
        actor=actor,
        scope=TENANT_SCOPE,
        fields=COMMENT_FILTERS,
        filters={**filters, "task_id": task.id},
    )
    result = await paginate(
        session,
        model=Comment,
        predicates=predicates,
        window=window,
        order_by=COMMENT_SORT.order_by(sort, order),
    )
    return result.map(COMMENT_MAPPER.map)


async def search_own_comments(
    session: AsyncSession,
    actor: Actor,
    filters: Mapping[str, Any],
    *,
    page: int | None = None,
    limit: int | None = None,
    sort: str | None = None,
    order: str | None = None,
    settings: Settings | None = None,
) -> Page[dict[str, Any]]:
    window = _window(page, limit, settings)
    # Only the caller's own comments; author_id in filters cannot widen this.
    predicates = build_predicates(
        model=Comment,
        actor=actor,
        scope=OWNER_SCOPE,
        fields=COMMENT_FILTERS,
        filters=filters,
    )
    # Comments stay hidden once their task is deleted or out of reach.
    predicates.append(_on_visible_task(actor))
    result = await paginate(
        session,
        model=Comment,
        predicates=predicates,
        window=window,
        order_by=COMMENT_SORT.order_by(sort, order),
    )
    return result.map(COMMENT_MAPPER.map)


async def get_comment(session: AsyncSession, actor: Actor, comment_id: str) -> dict[str, Any]:
    stmt = select(Comment).where(Comment.id == comment_id, TENANT_SCOPE.clause(actor))
    comment = (await session.execute(stmt)).scalar_one_or_none()
    if comment is None:
        raise NotFoundError("Comment not found")
    # Member roles only see comments on tasks they can reach.
    await load_visible_task(session, actor, comment.task_id)
    return COMMENT_MAPPER.map(comment)


async def update_comment(
    session: AsyncSession,
    actor: Actor,
    comment_id: str,
    changes: Mapping[str, Any],
    *,
    expected_version: int | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    comment = await load_for_mutation(
        session, model=Comment, resource_id=comment_id, actor=actor, policy=OWNER_POLICY
    )
    task = await load_visible_task(session, actor, comment.task_id)
    await ensure_project_writable(session, task.project_id)
    check_version(comment, expected_version)
    normalized = dict(changes)
    if isinstance(normalized.get("body"), str):
        normalized["body"] = normalized["body"].strip()
    updated_fields = apply_changes(comment, normalized, OWNER_POLICY)
    if updated_fields:
        await record_event(
            session=session,
            actor=actor,
            event_type="comment.updated",
            resource_type="comment",
            resource_id=comment.id,
            request_id=request_id,
            metadata={"task_id": comment.task_id},
        )
        await commit_guarded(session, resource="comment")
    return COMMENT_MAPPER.map(comment)


async def delete_comment(
    session: AsyncSession,
    actor: Actor,
    comment_id: str,
    *,
    request_id: str | None = None,
) -> None:
    comment = await load_for_mutation(
        session, model=Comment, resource_id=comment_id, actor=actor, policy=OWNER_POLICY
    )
    await load_visible_task(session, actor, comment.task_id)
    task_id = comment.task_id
    await session.delete(comment)
    await record_event(
        session=session,
        actor=actor,
        event_type="comment.deleted",
        resource_type="comment",
        resource_id=comment_id,
        request_id=request_id,
        metadata={"task_id": task_id},
    )
    await commit_guarded(session, resource="comment")
