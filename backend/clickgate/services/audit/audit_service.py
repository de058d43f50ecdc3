import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.audit_log import AuditLogRepository
from ...database import AsyncSessionLocal
from ...domain.access import Principal
from ...domain.audit import STATUS_FAILURE, STATUS_SUCCESS, AuditEvent, ClientInfo
from ...domain.ports.audit import AuditPort
from ...models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Stages audit rows in the caller's session.

    Mutations are audited inside the same transaction, so the audit row and
    the change commit or roll back together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit_repo = AuditLogRepository(session)

    async def record(self, event: AuditEvent) -> AuditLog:
        return await self.audit_repo.create(
            event.action,
            user_id=event.user_id,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            details=event.details or None,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            status=event.status,
            error_message=event.error_message,
            username_snapshot=event.username,
            email_snapshot=event.email,
        )

    async def log_mutation(
        self,
        action: str,
        *,
        actor: Principal | None,
        resource_type: str,
        resource_id: str | uuid.UUID | None,
        details: dict[str, Any] | None = None,
        client: ClientInfo | None = None,
    ) -> AuditLog:
        client = client or ClientInfo()
        return await self.record(
            AuditEvent(
                action=action,
                status=STATUS_SUCCESS,
                user_id=actor.id if actor else None,
                username=actor.username if actor else None,
                email=actor.email if actor else None,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                details=details or {},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
        )


class IsolatedAuditSink(AuditPort):
    """Best-effort sink writing each event in its own session.

    Used for failures (denied checks, failed logins) whose request
    transaction is rolled back or never opened. A write failure is logged and
    never propagated to the request.
    """

    def __init__(self, session_factory=AsyncSessionLocal) -> None:
        self._session_factory = session_factory

    async def record(self, event: AuditEvent) -> None:
        try:
            async with self._session_factory() as audit_session:
                await AuditService(audit_session).record(event)
                await audit_session.commit()
        except Exception:
            logger.error(
                "audit_write_failed action=%s status=%s", event.action, event.status,
                exc_info=True,
            )


def failure_event(
    action: str,
    *,
    error_message: str,
    principal: Principal | None = None,
    client: ClientInfo | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    client = client or ClientInfo()
    return AuditEvent(
        action=action,
        status=STATUS_FAILURE,
        user_id=principal.id if principal else None,
        username=principal.username if principal else None,
        email=principal.email if principal else None,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        error_message=error_message,
    )
