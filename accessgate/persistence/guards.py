from __future__ import annotations

from accessgate.core.config import get_settings


class ScopePredicateError(RuntimeError):
    # Surface scope predicates built from empty identifiers when enforcement is enabled.
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def require_scope_value(value: str | None, *, label: str) -> None:
    # Refuse to build an owner/tenant predicate from a missing identifier.
    settings = get_settings()
    if not settings.access_require_scope_predicate:
        return
    if not value:
        raise ScopePredicateError(f"Scope predicate required but {label} is missing")


def tenant_predicate(column, organization_id: str | None) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    require_scope_value(organization_id, label="organization_id")
    return column == organization_id


def owner_predicate(column, owner_id: str | None) -> object:
    require_scope_value(owner_id, label="owner_id")
    return column == owner_id


def not_deleted(model) -> object:
    # Soft-deleted rows are invisible to every scoped read and guarded write.
    return model.deleted_at.is_(None)
