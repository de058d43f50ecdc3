import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, validates

from .base import Base

ACCESS_TYPES = ("read", "write", "admin")
PRIORITY_MIN = -1000
PRIORITY_MAX = 1000


class DataAccessRule(Base):
    __tablename__ = "data_access_rules"
    __table_args__ = (
        CheckConstraint(
            "(role_id IS NOT NULL AND user_id IS NULL) "
            "OR (role_id IS NULL AND user_id IS NOT NULL)",
            name="ck_data_access_rules_single_subject",
        ),
        CheckConstraint(
            "access_type IN ('read', 'write', 'admin')",
            name="ck_data_access_rules_access_type",
        ),
        CheckConstraint(
            f"priority >= {PRIORITY_MIN} AND priority <= {PRIORITY_MAX}",
            name="ck_data_access_rules_priority_bounds",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    role_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    connection_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("connections.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    database_pattern: Mapped[str] = mapped_column(
        String(255), nullable=False, server_default="*"
    )
    table_pattern: Mapped[str] = mapped_column(
        String(255), nullable=False, server_default="*"
    )
    access_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_allowed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=true()
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    description: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @validates("access_type")
    def validate_access_type(self, key: str, value: str) -> str:
        if value not in ACCESS_TYPES:
            raise ValueError(
                f"Invalid access_type '{value}'. Must be one of: {', '.join(ACCESS_TYPES)}"
            )
        return value
