from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.core.errors import AuthorizationError
from accessgate.domain.roles import Actor, Principal
from accessgate.persistence.repos import accounts as accounts_repo


logger = logging.getLogger(__name__)


async def validate_principal(session: AsyncSession, principal: Principal) -> Actor:
    # Runs on every request so a deactivated account loses access immediately.
    account = await accounts_repo.get_active_account(session, principal.role, principal.id)
    if account is None:
        logger.warning("principal_not_enrolled role=%s subject=%s", principal.role.value, principal.id)
        raise AuthorizationError(
            f"{principal.role.value.capitalize()} is not enrolled or has been deactivated",
            code="AUTH_NOT_ENROLLED",
        )
    return Actor(principal=principal, organization_id=account.organization_id)
