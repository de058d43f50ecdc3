"""Failure events go through an isolated session and never break the request."""
import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from clickgate.auth.rbac_contract import AuditAction
from clickgate.domain.access import Principal
from clickgate.domain.audit import STATUS_FAILURE, ClientInfo
from clickgate.models import AuditLog
from clickgate.services.audit.audit_service import IsolatedAuditSink, failure_event


@pytest.mark.anyio
async def test_event_survives_caller_rollback(session_factory) -> None:
    sink = IsolatedAuditSink(session_factory)

    async with session_factory() as request_session:
        await sink.record(
            failure_event(
                AuditAction.PERMISSION_DENIED.value,
                error_message="Permission denied",
                client=ClientInfo(ip_address="10.0.0.1", user_agent="pytest"),
                details={"required_permissions": ["users:view"]},
            )
        )
        await request_session.rollback()

    async with session_factory() as check:
        rows = (await check.execute(select(AuditLog))).scalars().all()

    assert len(rows) == 1
    assert rows[0].status == STATUS_FAILURE
    assert rows[0].ip_address == "10.0.0.1"
    assert rows[0].details == {"required_permissions": ["users:view"]}


@pytest.mark.anyio
async def test_write_failure_is_logged_not_raised(caplog) -> None:
    broken_factory = MagicMock(side_effect=OSError("store down"))
    sink = IsolatedAuditSink(broken_factory)

    await sink.record(
        failure_event(AuditAction.LOGIN_FAILED.value, error_message="Invalid credentials")
    )

    assert "audit_write_failed" in caplog.text


def test_failure_event_snapshots_principal() -> None:
    principal = Principal(id=uuid.uuid4(), username="ana", email="ana@example.com")

    event = failure_event(
        AuditAction.DATA_ACCESS_DENIED.value,
        error_message="Resource access denied",
        principal=principal,
        resource_type="resource",
        resource_id="sales.pii",
    )

    assert event.user_id == principal.id
    assert event.username == "ana"
    assert event.email == "ana@example.com"
    assert event.status == STATUS_FAILURE
