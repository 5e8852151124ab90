from __future__ import annotations

from typing import AsyncGenerator, Awaitable, Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from accessgate.core.config import Settings
from accessgate.core.errors import AuthorizationError
from accessgate.domain.roles import Actor, RoleKind
from accessgate.services.auth.principals import validate_principal
from accessgate.services.auth.tokens import parse_bearer_token, resolve_principal


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with request.app.state.database.session() as session:
        yield session


def require_actor(*allowed: RoleKind) -> Callable[..., Awaitable[Actor]]:
    """Dependency factory resolving the caller for ``/{role}/...`` routes.

    The token is decoded against the role named in the path, then the account
    row is checked on every request. Nothing is cached between requests.
    """
    permitted = frozenset(allowed or RoleKind)

    async def _dependency(
        request: Request,
        role: RoleKind,
        db: AsyncSession = Depends(get_db),
        settings: Settings = Depends(get_app_settings),
    ) -> Actor:
        token = parse_bearer_token(request.headers.get(settings.auth_header))
        principal = resolve_principal(token, expected_role=role, settings=settings)
        if principal.role not in permitted:
            raise AuthorizationError(f"Operation not available to {principal.role.value} accounts")
        actor = await validate_principal(db, principal)
        request.state.actor_id = actor.id
        return actor

    return _dependency


require_manager = require_actor(RoleKind.MANAGER)
require_any_role = require_actor()
