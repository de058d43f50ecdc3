import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..domain.access import (
    AccessRuleData,
    AccessRuleSpec,
    AccessType,
    RoleSubject,
    UserSubject,
)
from ..domain.invariants import build_subject


class RuleFields(BaseModel):
    connection_id: uuid.UUID | None = None
    database_pattern: str = "*"
    table_pattern: str = "*"
    access_type: AccessType
    is_allowed: bool = True
    priority: int = 0
    description: str | None = None


class DataAccessRuleCreate(RuleFields):
    role_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None

    def to_spec(self) -> AccessRuleSpec:
        return AccessRuleSpec(
            subject=build_subject(self.role_id, self.user_id),
            access_type=self.access_type,
            database_pattern=self.database_pattern,
            table_pattern=self.table_pattern,
            connection_id=self.connection_id,
            is_allowed=self.is_allowed,
            priority=self.priority,
            description=self.description,
        )


class DataAccessRuleUpdate(BaseModel):
    connection_id: uuid.UUID | None = None
    database_pattern: str | None = None
    table_pattern: str | None = None
    access_type: AccessType | None = None
    is_allowed: bool | None = None
    priority: int | None = None
    description: str | None = None

    def changes(self) -> dict:
        # Explicit nulls are kept only where the column is nullable.
        values = self.model_dump(exclude_unset=True)
        return {
            key: value
            for key, value in values.items()
            if value is not None or key in {"connection_id", "description"}
        }


class BulkRulesRequest(BaseModel):
    role_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    rules: list[RuleFields] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_subject(self) -> "BulkRulesRequest":
        if (self.role_id is None) == (self.user_id is None):
            raise ValueError("Exactly one of role_id or user_id is required")
        return self

    def to_specs(self) -> list[AccessRuleSpec]:
        subject = build_subject(self.role_id, self.user_id)
        return [
            AccessRuleSpec(subject=subject, **rule.model_dump()) for rule in self.rules
        ]


class DataAccessRuleResponse(BaseModel):
    id: uuid.UUID
    role_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    connection_id: uuid.UUID | None = None
    database_pattern: str
    table_pattern: str
    access_type: AccessType
    is_allowed: bool
    priority: int
    description: str | None = None
    created_by: uuid.UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_rule(cls, rule: AccessRuleData) -> "DataAccessRuleResponse":
        return cls(
            id=rule.id,
            role_id=rule.subject.role_id if isinstance(rule.subject, RoleSubject) else None,
            user_id=rule.subject.user_id if isinstance(rule.subject, UserSubject) else None,
            connection_id=rule.connection_id,
            database_pattern=rule.database_pattern,
            table_pattern=rule.table_pattern,
            access_type=rule.access_type,
            is_allowed=rule.is_allowed,
            priority=rule.priority,
            description=rule.description,
            created_by=rule.created_by,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class DataAccessRuleListResponse(BaseModel):
    items: list[DataAccessRuleResponse]
    total: int
    limit: int
    offset: int


class AccessCheckRequest(BaseModel):
    user_id: uuid.UUID | None = None
    connection_id: uuid.UUID | None = None
    database: str = Field(..., min_length=1)
    table: str | None = Field(None, min_length=1)
    access_type: AccessType = AccessType.READ


class AccessCheckResponse(BaseModel):
    allowed: bool
    reason: str
    rule_id: uuid.UUID | None = None
    rule_priority: int | None = None


class FilterDatabasesRequest(BaseModel):
    connection_id: uuid.UUID | None = None
    databases: list[str]
    access_type: AccessType = AccessType.READ


class FilterTablesRequest(BaseModel):
    connection_id: uuid.UUID | None = None
    database: str = Field(..., min_length=1)
    tables: list[str]
    access_type: AccessType = AccessType.READ


class FilterResponse(BaseModel):
    items: list[str]
