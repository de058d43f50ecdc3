from __future__ import annotations

import uuid
from typing import Protocol

from ..access import AccessRuleData


class RuleStore(Protocol):
    """Read side of the rule store used during evaluation."""

    async def rules_for_roles(self, role_names: frozenset[str]) -> list[AccessRuleData]:
        ...

    async def rules_for_user(self, user_id: uuid.UUID) -> list[AccessRuleData]:
        ...


class PermissionStore(Protocol):
    """Authoritative principal -> role -> permission lookup."""

    async def user_has_permission(self, user_id: uuid.UUID, permission: str) -> bool:
        ...

    async def get_user_permissions(self, user_id: uuid.UUID) -> set[str]:
        ...
