import logging
from datetime import datetime, timezone

from ...application.auth_rate_limit import (
    check_login_rate_limit,
    record_login_failure,
    reset_login_limit,
)
from ...auth.rbac_contract import AuditAction
from ...domain.audit import STATUS_FAILURE, AuditEvent
from ...domain.ports.audit import AuditPort
from ...domain.ports.session import SessionPort
from ...domain.ports.user import UserPort
from ...errors import AppError, AuthError
from ...security.passwords import DUMMY_PASSWORD_HASH, verify_password
from .session_tokens import TokenPair, is_user_usable, start_session

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"


async def login_user(
    user_port: UserPort,
    session_port: SessionPort,
    audit_port: AuditPort,
    identifier: str,
    password: str,
    *,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> TokenPair:
    rate_limit_key = check_login_rate_limit(identifier, client_ip)

    user = await user_port.get_by_identifier(identifier)
    password_ok = verify_password(
        password, user.password_hash if user is not None else DUMMY_PASSWORD_HASH
    )
    if not password_ok or not is_user_usable(user):
        record_login_failure(rate_limit_key)
        logger.warning("login_failed ip=%s", client_ip)
        await audit_port.record(
            AuditEvent(
                action=AuditAction.LOGIN_FAILED.value,
                status=STATUS_FAILURE,
                user_id=user.id if user is not None else None,
                details={"identifier": identifier.strip().lower()},
                ip_address=client_ip,
                user_agent=user_agent,
                error_message=INVALID_CREDENTIALS_MESSAGE,
            )
        )
        raise AuthError(INVALID_CREDENTIALS_MESSAGE)

    now = datetime.now(timezone.utc)
    try:
        tokens = await start_session(
            user_port,
            session_port,
            user,
            now=now,
            client_ip=client_ip,
            user_agent=user_agent,
        )
        await user_port.mark_login(user.id, now)
        await session_port.commit()
    except AppError:
        await session_port.rollback()
        raise
    except Exception:
        await session_port.rollback()
        raise

    reset_login_limit(rate_limit_key)
    await audit_port.record(
        AuditEvent(
            action=AuditAction.LOGIN.value,
            user_id=user.id,
            username=user.username,
            email=user.email,
            resource_type="session",
            resource_id=str(tokens.session_id),
            ip_address=client_ip,
            user_agent=user_agent,
        )
    )
    logger.info("login_succeeded user=%s session=%s", user.id, tokens.session_id)
    return tokens
