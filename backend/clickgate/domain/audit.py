from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


@dataclass(frozen=True)
class AuditEvent:
    action: str
    status: str = STATUS_SUCCESS
    user_id: uuid.UUID | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    error_message: str | None = None
    username: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str | None = None
    user_agent: str | None = None
