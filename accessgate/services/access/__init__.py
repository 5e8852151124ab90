from __future__ import annotations

from accessgate.services.access.filters import (
    Contains,
    Exact,
    MembershipScope,
    OwnerScope,
    Range,
    ScopeRule,
    TenantScope,
    build_predicates,
)
from accessgate.services.access.guard import (
    MutationPolicy,
    apply_changes,
    check_version,
    commit_guarded,
    ensure_mutable,
    ensure_unique,
    load_for_mutation,
    require_reference,
)
from accessgate.services.access.mapping import FieldPolicy, RecordMapper, date_field, timestamp, value
from accessgate.services.access.pagination import (
    Page,
    PageWindow,
    Pagination,
    SortSpec,
    paginate,
    resolve_window,
)

__all__ = [
    "Contains",
    "Exact",
    "FieldPolicy",
    "MembershipScope",
    "MutationPolicy",
    "OwnerScope",
    "Page",
    "PageWindow",
    "Pagination",
    "Range",
    "RecordMapper",
    "ScopeRule",
    "SortSpec",
    "TenantScope",
    "apply_changes",
    "build_predicates",
    "check_version",
    "commit_guarded",
    "date_field",
    "ensure_mutable",
    "ensure_unique",
    "load_for_mutation",
    "paginate",
    "require_reference",
    "resolve_window",
    "timestamp",
    "value",
]
