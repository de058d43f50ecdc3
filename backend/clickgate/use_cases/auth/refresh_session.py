import logging
from datetime import datetime, timezone

from ...application.auth_rate_limit import (
    check_refresh_rate_limit,
    record_refresh_failure,
    reset_refresh_limit,
)
from ...auth.rbac_contract import AuditAction
from ...domain.audit import AuditEvent
from ...domain.ports.audit import AuditPort
from ...domain.ports.session import SessionPort
from ...domain.ports.user import UserPort
from ...errors import AppError, AuthError
from ...security.passwords import hash_refresh_token
from .session_tokens import TokenPair, is_session_usable, is_user_usable, start_session

logger = logging.getLogger(__name__)

INVALID_REFRESH_MESSAGE = "Invalid refresh token"


async def refresh_session(
    user_port: UserPort,
    session_port: SessionPort,
    audit_port: AuditPort,
    refresh_token: str,
    *,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> TokenPair:
    """Rotate a refresh token: the old session is revoked, a new one issued."""
    rate_limit_key = check_refresh_rate_limit(refresh_token, client_ip)
    now = datetime.now(timezone.utc)

    try:
        stored = await session_port.get_by_hash(
            hash_refresh_token(refresh_token), for_update=True
        )
        if stored is None or not is_session_usable(stored, now):
            raise AuthError(INVALID_REFRESH_MESSAGE)

        user = await user_port.get_by_id(stored.user_id)
        if not is_user_usable(user):
            raise AuthError(INVALID_REFRESH_MESSAGE)

        await session_port.revoke(stored.id)
        tokens = await start_session(
            user_port,
            session_port,
            user,
            now=now,
            client_ip=client_ip,
            user_agent=user_agent,
        )
        await session_port.commit()
    except AuthError:
        await session_port.rollback()
        record_refresh_failure(rate_limit_key)
        logger.warning("refresh_rejected ip=%s", client_ip)
        raise
    except AppError:
        await session_port.rollback()
        raise
    except Exception:
        await session_port.rollback()
        raise

    reset_refresh_limit(rate_limit_key)
    await audit_port.record(
        AuditEvent(
            action=AuditAction.TOKEN_REFRESH.value,
            user_id=user.id,
            username=user.username,
            email=user.email,
            resource_type="session",
            resource_id=str(tokens.session_id),
            details={"previous_session_id": str(stored.id)},
            ip_address=client_ip,
            user_agent=user_agent,
        )
    )
    return tokens
