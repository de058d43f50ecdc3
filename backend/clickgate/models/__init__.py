from .base import Base
from .user import User
from .role import Role
from .permission import Permission
from .role_permission import RolePermission
from .user_role import UserRole
from .session import Session
from .connection import Connection
from .data_access_rule import DataAccessRule
from .audit_log import AuditLog

__all__ = [
    "Base",
    "User",
    "Role",
    "Permission",
    "RolePermission",
    "UserRole",
    "Session",
    "Connection",
    "DataAccessRule",
    "AuditLog",
]
