from __future__ import annotations

from typing import Protocol

from ..audit import AuditEvent


class AuditPort(Protocol):
    async def record(self, event: AuditEvent) -> None:
        ...
