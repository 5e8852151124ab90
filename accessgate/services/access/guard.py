from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Mapping, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.sql.elements import ColumnElement

from accessgate.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from accessgate.domain.roles import Actor
from accessgate.persistence.guards import not_deleted, tenant_predicate
from accessgate.services.access.filters import ScopeRule
from accessgate.services.audit import record_event


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationPolicy:
    """Per-endpoint write rules.

    Fields outside ``mutable_fields`` are ignored; ``locked_fields`` may be
    echoed back unchanged but any change is treated as privilege escalation.
    ``transitions`` maps a current status to the statuses it may move to; when
    omitted any non-terminal status may move anywhere.
    """

    resource: str
    scope: ScopeRule
    mutable_fields: frozenset[str]
    locked_fields: frozenset[str] = frozenset()
    required_text_fields: frozenset[str] = frozenset()
    status_field: str = "status"
    terminal_statuses: frozenset[str] = frozenset()
    transitions: Mapping[str, frozenset[str]] | None = None
    # Report out-of-scope rows as missing instead of forbidden.
    hide_out_of_scope: bool = False
    label: str = ""

    @property
    def display(self) -> str:
        return self.label or self.resource.replace("_", " ").capitalize()


async def load_for_mutation(
    session: AsyncSession,
    *,
    model: Any,
    resource_id: str,
    actor: Actor,
    policy: MutationPolicy,
) -> Any:
    # Existence first, then scope, then state, so each failure maps to one error kind.
    conditions: list[ColumnElement[bool]] = [model.id == resource_id]
    if hasattr(model, "deleted_at"):
        conditions.append(not_deleted(model))
    row = (await session.execute(select(model).where(*conditions))).scalar_one_or_none()
    if row is None:
        raise NotFoundError(f"{policy.display} not found")

    in_scope = await session.scalar(
        select(func.count()).select_from(model).where(model.id == resource_id, policy.scope.clause(actor))
    )
    if not in_scope:
        logger.warning(
            "mutation_out_of_scope resource=%s id=%s actor=%s role=%s",
            policy.resource,
            resource_id,
            actor.id,
            actor.role.value,
        )
        error = (
            NotFoundError(f"{policy.display} not found")
            if policy.hide_out_of_scope
            else AuthorizationError(f"Not permitted to modify this {policy.resource.replace('_', ' ')}")
        )
        # Nothing is staged before the load, so the denial commits alone.
        await record_event(
            session=session,
            actor=actor,
            event_type=f"{policy.resource}.mutation_denied",
            outcome="failure",
            resource_type=policy.resource,
            resource_id=resource_id,
            error_code=error.code,
            commit=True,
        )
        raise error

    ensure_mutable(row, policy)
    return row


def ensure_mutable(row: Any, policy: MutationPolicy) -> None:
    if getattr(row, "deleted_at", None) is not None:
        raise ConflictError(f"Cannot modify a deleted {policy.resource.replace('_', ' ')}", code="RESOURCE_LOCKED")
    status = getattr(row, policy.status_field, None)
    if status is not None and status in policy.terminal_statuses:
        raise ConflictError(
            f"Cannot modify a {status} {policy.resource.replace('_', ' ')}",
            code="RESOURCE_LOCKED",
            details={"status": status},
        )


def check_version(row: Any, expected: int | None) -> None:
    # Client-side compare-and-swap: a stale version means someone else wrote first.
    if expected is None:
        return
    current = getattr(row, "version", None)
    if current != expected:
        raise ConflictError(
            "Resource was modified by another request",
            code="VERSION_CONFLICT",
            details={"expected_version": expected, "current_version": current},
        )


def apply_changes(row: Any, changes: Mapping[str, Any], policy: MutationPolicy) -> list[str]:
    """Validate every requested change, then apply the allowed ones.

    Nothing is written to ``row`` unless all checks pass. Returns the names of
    fields whose value actually changed.
    """
    for name in policy.locked_fields:
        if name in changes and changes[name] != getattr(row, name):
            raise AuthorizationError(
                f"Changing {name} is not permitted",
                code="PRIVILEGE_ESCALATION",
                details={"field": name},
            )

    pending = {name: val for name, val in changes.items() if name in policy.mutable_fields}
    for name in policy.required_text_fields:
        if name in pending and (pending[name] is None or not str(pending[name]).strip()):
            raise ValidationError(f"{name} must not be blank", details={"field": name})

    status_field = policy.status_field
    if status_field in pending:
        current = getattr(row, status_field)
        target = pending[status_field]
        if target != current and policy.transitions is not None:
            if target not in policy.transitions.get(current, frozenset()):
                raise ConflictError(
                    f"Cannot move {policy.resource.replace('_', ' ')} from {current} to {target}",
                    code="INVALID_TRANSITION",
                    details={"from": current, "to": target},
                )

    updated: list[str] = []
    for name, val in pending.items():
        if getattr(row, name) != val:
            setattr(row, name, val)
            updated.append(name)
    return updated


async def require_reference(
    session: AsyncSession,
    *,
    model: Any,
    reference_id: str,
    organization_id: str,
    label: str,
    extra: Sequence[ColumnElement[bool]] = (),
) -> Any:
    # Referenced rows must be live and belong to the same tenant as the target.
    conditions: list[ColumnElement[bool]] = [
        model.id == reference_id,
        tenant_predicate(model.organization_id, organization_id),
        *extra,
    ]
    if hasattr(model, "deleted_at"):
        conditions.append(not_deleted(model))
    row = (await session.execute(select(model).where(*conditions))).scalar_one_or_none()
    if row is None:
        raise NotFoundError(f"{label} not found", details={"id": reference_id})
    return row


async def ensure_unique(
    session: AsyncSession,
    *,
    model: Any,
    column: Any,
    value: Any,
    scope: Sequence[ColumnElement[bool]],
    label: str,
    exclude_id: str | None = None,
) -> None:
    conditions: list[ColumnElement[bool]] = [column == value, *scope]
    if hasattr(model, "deleted_at"):
        conditions.append(not_deleted(model))
    if exclude_id is not None:
        conditions.append(model.id != exclude_id)
    existing = await session.scalar(select(func.count()).select_from(model).where(*conditions))
    if existing:
        raise ConflictError(f"{label} already exists", code="DUPLICATE", details={"value": value})


async def commit_guarded(session: AsyncSession, *, resource: str, unique_conflicts: bool = False) -> None:
    # Version mismatches surface at flush time; translate them into conflicts.
    try:
        await session.commit()
    except StaleDataError as exc:
        await session.rollback()
        logger.warning("mutation_version_conflict resource=%s", resource)
        raise ConflictError(
            f"{resource.replace('_', ' ').capitalize()} was modified by another request",
            code="VERSION_CONFLICT",
        ) from exc
    except IntegrityError as exc:
        await session.rollback()
        if not unique_conflicts:
            raise
        raise ConflictError(
            f"{resource.replace('_', ' ').capitalize()} conflicts with an existing record",
            code="DUPLICATE",
        ) from exc
