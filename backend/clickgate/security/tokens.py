"""Session Token Verifier.

Access tokens are short-lived HMAC-signed JWTs carrying a point-in-time
snapshot of the principal's roles and permissions. Verification is a pure
function of the token and the signing key; it never touches the store.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

import jwt

from ..config import settings

logger = logging.getLogger(__name__)

TOKEN_TYPE_ACCESS = "access"
_REQUIRED_CLAIMS = ["sub", "exp", "iat", "iss", "aud"]


class InvalidTokenError(Exception):
    """Base class for every access token rejection."""

    reason = "invalid"


class InvalidSignatureError(InvalidTokenError):
    reason = "invalid_signature"


class ExpiredTokenError(InvalidTokenError):
    reason = "expired"


class MalformedTokenError(InvalidTokenError):
    reason = "malformed"


@dataclass(frozen=True)
class TokenClaims:
    principal_id: uuid.UUID
    email: str | None
    username: str | None
    roles: tuple[str, ...]
    permission_snapshot: frozenset[str]
    session_id: uuid.UUID | None
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    expires_in: int


def issue_access_token(
    user_id: uuid.UUID,
    *,
    email: str | None,
    username: str | None,
    roles: Iterable[str],
    permissions: Iterable[str],
    session_id: uuid.UUID | None,
    now: datetime | None = None,
) -> IssuedToken:
    issued_at = now or datetime.now(timezone.utc)
    lifetime = timedelta(minutes=settings.access_token_expire_minutes)
    expires_at = issued_at + lifetime
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "username": username,
        "roles": sorted(set(roles)),
        "permissions": sorted(set(permissions)),
        "sid": str(session_id) if session_id else None,
        "type": TOKEN_TYPE_ACCESS,
        "iat": issued_at,
        "exp": expires_at,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)
    return IssuedToken(
        token=token,
        expires_at=expires_at,
        expires_in=int(lifetime.total_seconds()),
    )


def _decode(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as exc:
        raise ExpiredTokenError from exc
    except jwt.InvalidSignatureError as exc:
        raise InvalidSignatureError from exc
    except jwt.InvalidTokenError as exc:
        raise MalformedTokenError from exc


def _string_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise MalformedTokenError()
    return value


def _optional_string(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise MalformedTokenError()
    return value


def _parse_uuid(value: Any) -> uuid.UUID:
    if not isinstance(value, str):
        raise MalformedTokenError()
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise MalformedTokenError from exc


def verify_access_token(token: str) -> TokenClaims:
    """
    Verify signature, expiry, issuer, audience and claim shapes.

    Raises:
        InvalidSignatureError: Signature does not match the signing key
        ExpiredTokenError: ``exp`` is in the past
        MalformedTokenError: Anything else wrong with the token
    """
    if not token or not isinstance(token, str):
        raise MalformedTokenError()

    try:
        payload = _decode(token)
        if payload.get("type") != TOKEN_TYPE_ACCESS:
            raise MalformedTokenError()

        sid = payload.get("sid")
        claims = TokenClaims(
            principal_id=_parse_uuid(payload.get("sub")),
            email=_optional_string(payload, "email"),
            username=_optional_string(payload, "username"),
            roles=tuple(_string_list(payload, "roles")),
            permission_snapshot=frozenset(_string_list(payload, "permissions")),
            session_id=_parse_uuid(sid) if sid is not None else None,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    except InvalidTokenError as exc:
        logger.warning("token_rejected reason=%s", exc.reason)
        raise
    return claims


def verify_access_token_optional(token: str | None) -> TokenClaims | None:
    """Like verify_access_token, but an absent or invalid token yields None."""
    if not token:
        return None
    try:
        return verify_access_token(token)
    except InvalidTokenError:
        return None


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()
