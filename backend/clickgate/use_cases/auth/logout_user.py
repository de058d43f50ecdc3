import uuid

from ...auth.rbac_contract import AuditAction
from ...domain.audit import AuditEvent
from ...domain.ports.audit import AuditPort
from ...domain.ports.session import SessionPort
from ...errors import AppError
from ...security.passwords import hash_refresh_token


async def logout_user(
    session_port: SessionPort,
    audit_port: AuditPort,
    refresh_token: str | None,
    *,
    user_id: uuid.UUID | None = None,
    session_id: uuid.UUID | None = None,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    """Revoke the session named by the refresh token, else the caller's session."""
    token_hash = hash_refresh_token(refresh_token) if refresh_token else None
    try:
        stored = None
        if token_hash:
            stored = await session_port.get_by_hash(token_hash, for_update=True)
        if stored is not None and user_id is not None and stored.user_id != user_id:
            # Another user's token: only the caller's own session is ended.
            stored = None

        revoke_id = stored.id if stored is not None else session_id
        if revoke_id is None:
            return

        revoked = await session_port.revoke(revoke_id)
        await session_port.commit()
    except AppError:
        await session_port.rollback()
        raise
    except Exception:
        await session_port.rollback()
        raise

    if revoked is not None:
        await audit_port.record(
            AuditEvent(
                action=AuditAction.LOGOUT.value,
                user_id=revoked.user_id,
                resource_type="session",
                resource_id=str(revoked.id),
                ip_address=client_ip,
                user_agent=user_agent,
            )
        )


async def logout_all(
    session_port: SessionPort,
    audit_port: AuditPort,
    user_id: uuid.UUID,
    *,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> int:
    try:
        revoked = await session_port.revoke_all_for_user(user_id)
        await session_port.commit()
    except AppError:
        await session_port.rollback()
        raise
    except Exception:
        await session_port.rollback()
        raise

    await audit_port.record(
        AuditEvent(
            action=AuditAction.LOGOUT.value,
            user_id=user_id,
            resource_type="user",
            resource_id=str(user_id),
            details={"revoked_sessions": revoked},
            ip_address=client_ip,
            user_agent=user_agent,
        )
    )
    return revoked
