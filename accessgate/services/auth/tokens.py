from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any
from uuid import UUID

import jwt

from accessgate.core.config import Settings, get_settings
from accessgate.core.errors import AuthenticationError, AuthorizationError
from accessgate.domain.roles import Principal, RoleKind, parse_role


logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["exp", "iat", "iss", "sub", "type"]


def issue_access_token(
    *,
    subject_id: str,
    role: RoleKind,
    settings: Settings | None = None,
    expires_in: timedelta | None = None,
    now: datetime | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    # Mint HS256 access tokens for local tooling and tests; production issuers sign the same claims.
    resolved = settings or get_settings()
    issued_at = now or datetime.now(timezone.utc)
    lifetime = expires_in if expires_in is not None else timedelta(minutes=resolved.jwt_access_ttl_minutes)
    claims: dict[str, Any] = {
        "sub": subject_id,
        "id": subject_id,
        "type": role.value,
        "iss": resolved.jwt_issuer,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
    }
    if extra_claims:
        claims.update(extra_claims)
    return jwt.encode(claims, resolved.jwt_secret, algorithm=resolved.jwt_algorithm)


def parse_bearer_token(header_value: str | None) -> str:
    # Enforce the "Bearer <token>" format before attempting any decode.
    if not header_value:
        raise AuthenticationError("Missing bearer token")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Missing or invalid bearer token")
    return parts[1]


def decode_access_token(token: str, *, settings: Settings | None = None) -> dict[str, Any]:
    resolved = settings or get_settings()
    try:
        return jwt.decode(
            token,
            resolved.jwt_secret,
            algorithms=[resolved.jwt_algorithm],
            issuer=resolved.jwt_issuer,
            leeway=resolved.jwt_leeway_seconds,
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Access token expired", code="AUTH_TOKEN_EXPIRED") from exc
    except jwt.PyJWTError as exc:
        logger.warning("access_token_rejected reason=%s", type(exc).__name__)
        raise AuthenticationError("Invalid access token") from exc


def resolve_principal(
    token: str | None,
    *,
    expected_role: RoleKind | None = None,
    settings: Settings | None = None,
) -> Principal:
    """Decode a bearer token into a typed principal.

    Signature, issuer and expiry problems, unknown role tags and malformed ids
    are authentication failures. A well-formed token for a different role than
    the endpoint serves is an authorization failure.
    """
    if not token:
        raise AuthenticationError("Missing bearer token")
    claims = decode_access_token(token, settings=settings)

    raw_id = claims.get("id") or claims.get("sub")
    try:
        subject_id = str(UUID(str(raw_id)))
    except (TypeError, ValueError) as exc:
        raise AuthenticationError("Access token subject is not a valid id") from exc
    try:
        role = parse_role(str(claims.get("type") or ""))
    except ValueError as exc:
        raise AuthenticationError("Access token carries an unknown role") from exc

    if expected_role is not None and role is not expected_role:
        logger.warning(
            "principal_role_mismatch expected=%s actual=%s subject=%s",
            expected_role.value,
            role.value,
            subject_id,
        )
        raise AuthorizationError(
            f"Token role {role.value} cannot access {expected_role.value} endpoints",
            code="AUTH_ROLE_MISMATCH",
        )
    return Principal(id=subject_id, role=role)
