from __future__ import annotations

from datetime import datetime

from accessgate.domain.models import AuditEvent
from accessgate.persistence.guards import tenant_predicate


def event_predicates(
    *,
    organization_id: str,
    event_type: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
) -> list:
    # Scope all audit queries to a tenant to prevent cross-tenant leakage.
    conditions = [tenant_predicate(AuditEvent.organization_id, organization_id)]
    if event_type:
        conditions.append(AuditEvent.event_type == event_type)
    if resource_type:
        conditions.append(AuditEvent.resource_type == resource_type)
    if resource_id:
        conditions.append(AuditEvent.resource_id == resource_id)
    if occurred_from:
        conditions.append(AuditEvent.occurred_at >= occurred_from)
    if occurred_to:
        conditions.append(AuditEvent.occurred_at <= occurred_to)
    return conditions
