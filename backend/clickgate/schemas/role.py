import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .permission import PermissionResponse


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    permission_ids: list[uuid.UUID] = Field(default_factory=list)
    is_default: bool = False


class RoleUpdate(BaseModel):
    display_name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    is_default: bool | None = None
    permission_ids: list[uuid.UUID] | None = None


class RoleResponse(BaseModel):
    id: uuid.UUID
    name: str
    display_name: str
    description: str | None = None
    is_system: bool
    is_default: bool
    priority: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleDetailResponse(RoleResponse):
    permissions: list[PermissionResponse] = Field(default_factory=list)
