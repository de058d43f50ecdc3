from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol


class SessionData(Protocol):
    id: uuid.UUID
    user_id: uuid.UUID
    refresh_token_hash: str
    expires_at: datetime
    revoked_at: datetime | None


class SessionPort(Protocol):
    async def create(
        self,
        user_id: uuid.UUID,
        refresh_token_hash: str,
        expires_at: datetime,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionData:
        ...

    async def get_by_hash(
        self, refresh_token_hash: str, *, for_update: bool = False
    ) -> SessionData | None:
        ...

    async def get_by_id(self, session_id: uuid.UUID) -> SessionData | None:
        ...

    async def revoke(self, session_id: uuid.UUID) -> SessionData | None:
        ...

    async def revoke_all_for_user(self, user_id: uuid.UUID) -> int:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...
