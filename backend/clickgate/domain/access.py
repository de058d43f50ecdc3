"""Value types shared by the permission resolver and the resource evaluator."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union


class AccessType(str, Enum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def level(self) -> int:
        return _ACCESS_LEVELS[self]

    def satisfies(self, requested: "AccessType") -> bool:
        """True if a grant of this level covers a request for ``requested``.

        admin covers write and read; write covers read.
        """
        return self.level >= requested.level


_ACCESS_LEVELS = {AccessType.READ: 1, AccessType.WRITE: 2, AccessType.ADMIN: 3}


@dataclass(frozen=True)
class RoleSubject:
    role_id: uuid.UUID

    @property
    def kind(self) -> str:
        return "role"


@dataclass(frozen=True)
class UserSubject:
    user_id: uuid.UUID

    @property
    def kind(self) -> str:
        return "user"


RuleSubject = Union[RoleSubject, UserSubject]


@dataclass(frozen=True)
class AccessRuleSpec:
    """A rule as submitted for creation; no identity yet."""

    subject: RuleSubject
    access_type: AccessType
    database_pattern: str = "*"
    table_pattern: str = "*"
    connection_id: uuid.UUID | None = None
    is_allowed: bool = True
    priority: int = 0
    description: str | None = None


@dataclass(frozen=True)
class AccessRuleData:
    id: uuid.UUID
    subject: RuleSubject
    access_type: AccessType
    database_pattern: str
    table_pattern: str
    connection_id: uuid.UUID | None
    is_allowed: bool
    priority: int
    description: str | None = None
    created_by: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ResourceRef:
    database: str
    table: str | None = None
    connection_id: uuid.UUID | None = None

    def __post_init__(self) -> None:
        if not self.database:
            raise ValueError("database is required")
        if self.table == "":
            raise ValueError("table must be omitted or non-empty")

    def describe(self) -> str:
        return self.database if self.table is None else f"{self.database}.{self.table}"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str
    rule_id: uuid.UUID | None = None
    rule_priority: int | None = None

    REASON_BYPASS = "bypass_role"
    REASON_RULE = "matched_rule"
    REASON_NO_RULE = "no_matching_rule"
    REASON_INACTIVE = "inactive_principal"


@dataclass(frozen=True)
class Principal:
    """An authenticated actor as seen by the authorization core."""

    id: uuid.UUID
    roles: frozenset[str] = field(default_factory=frozenset)
    permission_snapshot: frozenset[str] = field(default_factory=frozenset)
    session_id: uuid.UUID | None = None
    is_active: bool = True
    email: str | None = None
    username: str | None = None
    display_name: str | None = None
