import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PermissionResponse(BaseModel):
    id: uuid.UUID
    name: str
    display_name: str
    description: str | None = None
    category: str
    is_system: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionCategory(BaseModel):
    category: str
    permissions: list[PermissionResponse]
