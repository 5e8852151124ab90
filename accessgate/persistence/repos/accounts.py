from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.domain.models import Designer, Developer, Manager
from accessgate.domain.roles import RoleKind
from accessgate.persistence.guards import not_deleted


# Each role tag resolves to exactly one account table.
ACCOUNT_MODELS: dict[RoleKind, Any] = {
    RoleKind.MANAGER: Manager,
    RoleKind.DEVELOPER: Developer,
    RoleKind.DESIGNER: Designer,
}


def account_model(role: RoleKind) -> Any:
    return ACCOUNT_MODELS[role]


async def get_active_account(session: AsyncSession, role: RoleKind, account_id: str) -> Any | None:
    # Soft-deleted accounts are treated exactly like missing ones.
    model = account_model(role)
    result = await session.execute(select(model).where(model.id == account_id, not_deleted(model)))
    return result.scalar_one_or_none()


async def get_member_account(
    session: AsyncSession, account_id: str, organization_id: str
) -> tuple[RoleKind, Any] | None:
    # Look an id up across member role tables within one organization.
    for role in (RoleKind.DEVELOPER, RoleKind.DESIGNER):
        model = account_model(role)
        result = await session.execute(
            select(model).where(
                model.id == account_id,
                model.organization_id == organization_id,
                not_deleted(model),
            )
        )
        account = result.scalar_one_or_none()
        if account is not None:
            return role, account
    return None
