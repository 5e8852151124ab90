from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RoleKind(str, Enum):
    # Closed set of role tags carried in the token "type" claim.
    MANAGER = "manager"
    DEVELOPER = "developer"
    DESIGNER = "designer"


# Roles that reach projects and tasks through project membership rather than tenancy.
MEMBER_ROLES: frozenset[RoleKind] = frozenset({RoleKind.DEVELOPER, RoleKind.DESIGNER})


def parse_role(value: str) -> RoleKind:
    # Normalize role tags once at the token boundary.
    try:
        return RoleKind(value.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported role: {value}") from exc


@dataclass(frozen=True)
class Principal:
    # Identity decoded from a verified access token; valid for one request.
    id: str
    role: RoleKind


@dataclass(frozen=True)
class Actor:
    # Principal confirmed against its account row and bound to the account's tenant.
    principal: Principal
    organization_id: str

    @property
    def id(self) -> str:
        return self.principal.id

    @property
    def role(self) -> RoleKind:
        return self.principal.role

    @property
    def is_member_role(self) -> bool:
        return self.principal.role in MEMBER_ROLES
