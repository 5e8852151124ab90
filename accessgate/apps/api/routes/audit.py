from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.apps.api.deps import get_app_settings, get_db, require_manager
from accessgate.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from accessgate.apps.api.response import PageEnvelope, page_response
from accessgate.core.config import Settings
from accessgate.domain.models import AuditEvent
from accessgate.domain.roles import Actor
from accessgate.persistence.repos import audit as audit_repo
from accessgate.services.access import RecordMapper, SortSpec, paginate, resolve_window, timestamp, value


router = APIRouter(prefix="/{role}/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEventResponse(BaseModel):
    id: int
    occurred_at: str
    actor_id: str | None
    actor_role: str | None
    event_type: str
    outcome: str
    resource_type: str | None
    resource_id: str | None
    request_id: str | None
    metadata_json: dict[str, Any] | None
    error_code: str | None


AUDIT_MAPPER = RecordMapper(
    (
        value("id"),
        timestamp("occurred_at"),
        value("actor_id", nullable=True),
        value("actor_role", nullable=True),
        value("event_type"),
        value("outcome"),
        value("resource_type", nullable=True),
        value("resource_id", nullable=True),
        value("request_id", nullable=True),
        value("metadata_json", nullable=True),
        value("error_code", nullable=True),
    )
)

AUDIT_SORT = SortSpec(columns={"occurred_at": AuditEvent.occurred_at}, default="occurred_at", tie_breaker=AuditEvent.id)


@router.get("/events", response_model=PageEnvelope[AuditEventResponse])
async def list_audit_events(
    request: Request,
    event_type: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    page: int | None = Query(default=None),
    limit: int | None = Query(default=None),
    actor: Actor = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    # Managers read the trail of their own organization only.
    window = resolve_window(
        page,
        limit,
        default_limit=settings.pagination_default_limit,
        max_limit=settings.pagination_max_limit,
    )
    predicates = audit_repo.event_predicates(
        organization_id=actor.organization_id,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=resource_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )
    result = await paginate(
        db,
        model=AuditEvent,
        predicates=predicates,
        window=window,
        order_by=AUDIT_SORT.order_by(None),
    )
    return page_response(request=request, page=result.map(AUDIT_MAPPER.map))
