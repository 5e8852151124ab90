from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from sqlalchemy import exists, or_
from sqlalchemy.sql.elements import ColumnElement

from accessgate.domain.roles import Actor
from accessgate.persistence.guards import not_deleted, owner_predicate, require_scope_value, tenant_predicate


class ScopeRule(Protocol):
    # One scope strategy per endpoint, fixed in code and never caller-selectable.
    def clause(self, actor: Actor) -> ColumnElement[bool]: ...


@dataclass(frozen=True)
class OwnerScope:
    """Rows whose owner column equals the actor's id."""

    column: Any

    def clause(self, actor: Actor) -> ColumnElement[bool]:
        return owner_predicate(self.column, actor.id)


@dataclass(frozen=True)
class TenantScope:
    """Rows belonging to the actor's organization."""

    column: Any

    def clause(self, actor: Actor) -> ColumnElement[bool]:
        return tenant_predicate(self.column, actor.organization_id)


@dataclass(frozen=True)
class MembershipScope:
    """Rows reachable through a live link row naming the actor.

    ``link_column`` is matched against ``resource_column`` and ``member_column``
    against the actor id, e.g. ``ProjectMember.project_id == Task.project_id``.
    """

    link_model: Any
    link_column: Any
    resource_column: Any
    member_column: Any

    def clause(self, actor: Actor) -> ColumnElement[bool]:
        require_scope_value(actor.id, label="member_id")
        conditions = [self.link_column == self.resource_column, self.member_column == actor.id]
        if hasattr(self.link_model, "deleted_at"):
            conditions.append(not_deleted(self.link_model))
        return exists().where(*conditions)


class FilterField(Protocol):
    def predicates(self, name: str, values: Mapping[str, Any]) -> list[ColumnElement[bool]]: ...


@dataclass(frozen=True)
class Exact:
    """Equality on one column.

    An explicit ``None`` adds no predicate unless ``null_matches`` is set, in
    which case it matches rows where the column IS NULL.
    """

    column: Any
    null_matches: bool = False

    def predicates(self, name: str, values: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        if name not in values:
            return []
        value = values[name]
        if value is None:
            return [self.column.is_(None)] if self.null_matches else []
        return [self.column == value]


class Contains:
    """Substring match OR-ed across one or more text columns."""

    def __init__(self, *columns: Any) -> None:
        if not columns:
            raise ValueError("Contains filter needs at least one column")
        self.columns = columns

    def predicates(self, name: str, values: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        value = values.get(name)
        if value is None or value == "":
            return []
        # autoescape keeps caller-supplied % and _ literal.
        return [or_(*(column.contains(str(value), autoescape=True) for column in self.columns))]


@dataclass(frozen=True)
class Range:
    """Inclusive bounds read from ``<name>_from`` and ``<name>_to``; either may be absent."""

    column: Any

    def predicates(self, name: str, values: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        lower = values.get(f"{name}_from")
        upper = values.get(f"{name}_to")
        if lower is not None:
            clauses.append(self.column >= lower)
        if upper is not None:
            clauses.append(self.column <= upper)
        return clauses


def build_predicates(
    *,
    model: Any,
    actor: Actor,
    scope: ScopeRule,
    fields: Mapping[str, FilterField],
    filters: Mapping[str, Any],
    include_deleted: bool = False,
) -> list[ColumnElement[bool]]:
    """Combine soft-delete exclusion, the endpoint scope and caller filters.

    ``filters`` must contain only the keys the caller actually supplied
    (``model_dump(exclude_unset=True)``) so that absent and null stay distinct.
    Unknown keys are ignored.
    """
    predicates: list[ColumnElement[bool]] = []
    if not include_deleted and hasattr(model, "deleted_at"):
        predicates.append(not_deleted(model))
    predicates.append(scope.clause(actor))
    for name, field in fields.items():
        predicates.extend(field.predicates(name, filters))
    return predicates
