from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol


class UserData(Protocol):
    id: uuid.UUID
    email: str
    username: str
    password_hash: str
    display_name: str | None
    is_active: bool
    deleted_at: datetime | None


class UserPort(Protocol):
    async def get_by_id(self, user_id: uuid.UUID) -> UserData | None:
        ...

    async def get_by_identifier(self, identifier: str) -> UserData | None:
        """Look a user up by email or username."""
        ...

    async def get_role_names(self, user_id: uuid.UUID) -> list[str]:
        ...

    async def get_permission_names(self, user_id: uuid.UUID) -> set[str]:
        ...

    async def mark_login(self, user_id: uuid.UUID, when: datetime) -> None:
        ...
