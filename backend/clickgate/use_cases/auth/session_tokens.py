import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ...config import settings
from ...domain.ports.session import SessionData, SessionPort
from ...domain.ports.user import UserData, UserPort
from ...security.passwords import create_refresh_token, hash_refresh_token
from ...security.tokens import issue_access_token


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: uuid.UUID | None = None
    token_type: str = "bearer"


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_session_usable(stored: SessionData, now: datetime) -> bool:
    return stored.revoked_at is None and as_utc(stored.expires_at) > now


def is_user_usable(user: UserData | None) -> bool:
    return user is not None and user.is_active and user.deleted_at is None


async def start_session(
    user_port: UserPort,
    session_port: SessionPort,
    user: UserData,
    *,
    now: datetime,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> TokenPair:
    """Create a session row and sign an access token with a fresh snapshot."""
    roles = await user_port.get_role_names(user.id)
    permissions = await user_port.get_permission_names(user.id)
    refresh_token = create_refresh_token()
    stored = await session_port.create(
        user.id,
        hash_refresh_token(refresh_token),
        now + timedelta(days=settings.refresh_token_expire_days),
        ip_address=client_ip,
        user_agent=user_agent,
    )
    access = issue_access_token(
        user.id,
        email=user.email,
        username=user.username,
        roles=roles,
        permissions=permissions,
        session_id=stored.id,
        now=now,
    )
    return TokenPair(
        access_token=access.token,
        refresh_token=refresh_token,
        expires_in=access.expires_in,
        session_id=stored.id,
    )
