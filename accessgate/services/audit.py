from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.core.config import get_settings
from accessgate.domain.models import AuditEvent
from accessgate.domain.roles import Actor


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "email"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields and make dates JSON-safe.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


async def record_event(
    *,
    session: AsyncSession,
    actor: Actor | None,
    event_type: str,
    outcome: str = "success",
    resource_type: str | None = None,
    resource_id: str | None = None,
    request_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    error_code: str | None = None,
    occurred_at: datetime | None = None,
    commit: bool = False,
    best_effort: bool = True,
) -> None:
    """Stage an audit row on ``session``.

    By default the row rides along with the caller's transaction so it commits
    or rolls back together with the mutation it describes.
    """
    if not get_settings().audit_enabled:
        return
    event = AuditEvent(
        occurred_at=occurred_at or datetime.now(timezone.utc),
        organization_id=actor.organization_id if actor else None,
        actor_id=actor.id if actor else None,
        actor_role=actor.role.value if actor else None,
        event_type=event_type,
        outcome=outcome,
        resource_type=resource_type,
        resource_id=resource_id,
        request_id=request_id,
        metadata_json=sanitize_metadata(metadata or {}),
        error_code=error_code,
    )
    try:
        session.add(event)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        if commit:
            await session.rollback()
        level = logger.warning if best_effort else logger.error
        level(
            "audit_event_write_failed event_type=%s request_id=%s",
            event_type,
            request_id,
            exc_info=exc,
        )
        if not best_effort:
            raise
