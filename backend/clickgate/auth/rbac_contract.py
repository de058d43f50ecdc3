"""
RBAC contract: the permission catalogue, system roles and their defaults.

The catalogue is data. Adding a permission means adding an enum member, a
category entry and (optionally) default role grants; evaluation code never
branches on individual permission names.

Runtime checks go through the permission resolver, not through the default
mappings below. The mappings are used for seeding only.
"""
from __future__ import annotations

from enum import Enum
from typing import Final


# ============================================================================
# PERMISSIONS - EXPLICIT ONLY, NO WILDCARDS
# ============================================================================

class Permission(str, Enum):
    USERS_VIEW = "users:view"
    USERS_CREATE = "users:create"
    USERS_UPDATE = "users:update"
    USERS_DELETE = "users:delete"

    ROLES_VIEW = "roles:view"
    ROLES_CREATE = "roles:create"
    ROLES_UPDATE = "roles:update"
    ROLES_DELETE = "roles:delete"
    ROLES_ASSIGN = "roles:assign"

    CH_USERS_VIEW = "clickhouse:users:view"
    CH_USERS_CREATE = "clickhouse:users:create"
    CH_USERS_UPDATE = "clickhouse:users:update"
    CH_USERS_DELETE = "clickhouse:users:delete"

    DB_VIEW = "database:view"
    DB_CREATE = "database:create"
    DB_DROP = "database:drop"

    TABLE_VIEW = "table:view"
    TABLE_CREATE = "table:create"
    TABLE_ALTER = "table:alter"
    TABLE_DROP = "table:drop"
    TABLE_SELECT = "table:select"
    TABLE_INSERT = "table:insert"
    TABLE_UPDATE = "table:update"
    TABLE_DELETE = "table:delete"

    QUERY_EXECUTE = "query:execute"
    QUERY_EXECUTE_DDL = "query:execute:ddl"
    QUERY_EXECUTE_DML = "query:execute:dml"
    QUERY_EXECUTE_MISC = "query:execute:misc"
    QUERY_HISTORY_VIEW = "query:history:view"
    QUERY_HISTORY_VIEW_ALL = "query:history:view:all"

    SAVED_QUERIES_VIEW = "saved_queries:view"
    SAVED_QUERIES_CREATE = "saved_queries:create"
    SAVED_QUERIES_UPDATE = "saved_queries:update"
    SAVED_QUERIES_DELETE = "saved_queries:delete"
    SAVED_QUERIES_SHARE = "saved_queries:share"

    METRICS_VIEW = "metrics:view"
    METRICS_VIEW_ADVANCED = "metrics:view:advanced"

    SETTINGS_VIEW = "settings:view"
    SETTINGS_UPDATE = "settings:update"

    AUDIT_VIEW = "audit:view"
    AUDIT_EXPORT = "audit:export"
    AUDIT_DELETE = "audit:delete"

    LIVE_QUERIES_VIEW = "live_queries:view"
    LIVE_QUERIES_KILL = "live_queries:kill"
    LIVE_QUERIES_KILL_ALL = "live_queries:kill_all"

    CONNECTIONS_VIEW = "connections:view"
    CONNECTIONS_EDIT = "connections:edit"
    CONNECTIONS_DELETE = "connections:delete"

    AI_OPTIMIZE = "ai:optimize"
    AI_CHAT = "ai:chat"

    AI_MODELS_VIEW = "ai_models:view"
    AI_MODELS_CREATE = "ai_models:create"
    AI_MODELS_UPDATE = "ai_models:update"
    AI_MODELS_DELETE = "ai_models:delete"

    @property
    def display_name(self) -> str:
        return " ".join(part.replace("_", " ").title() for part in self.value.split(":"))


ALLOWED_PERMISSIONS: Final[frozenset[str]] = frozenset(p.value for p in Permission)

# Categories used for presentation only.
_CATEGORY_BY_PREFIX: Final[dict[str, str]] = {
    "users": "User Management",
    "roles": "Role Management",
    "clickhouse": "ClickHouse Users",
    "database": "Database",
    "table": "Table",
    "query": "Query",
    "saved_queries": "Saved Queries",
    "metrics": "Metrics",
    "settings": "Settings",
    "audit": "Audit",
    "live_queries": "Live Queries",
    "connections": "Connections",
    "ai": "AI",
    "ai_models": "AI Models",
}

PERMISSION_CATEGORIES: Final[dict[str, str]] = {
    p.value: _CATEGORY_BY_PREFIX[p.value.split(":", 1)[0]] for p in Permission
}


# ============================================================================
# ROLES
# ============================================================================

class SystemRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    DEVELOPER = "developer"
    ANALYST = "analyst"
    VIEWER = "viewer"
    GUEST = "guest"


SYSTEM_ROLES: Final[frozenset[str]] = frozenset(r.value for r in SystemRole)

ROLE_HIERARCHY: Final[dict[str, int]] = {
    SystemRole.SUPER_ADMIN.value: 100,
    SystemRole.ADMIN.value: 80,
    SystemRole.DEVELOPER.value: 60,
    SystemRole.ANALYST.value: 40,
    SystemRole.VIEWER.value: 20,
    SystemRole.GUEST.value: 10,
}

CUSTOM_ROLE_PRIORITY: Final[int] = 50


# ============================================================================
# AUDIT ACTIONS
# ============================================================================

class AuditAction(str, Enum):
    LOGIN = "auth.login"
    LOGOUT = "auth.logout"
    LOGIN_FAILED = "auth.login_failed"
    TOKEN_REFRESH = "auth.token_refresh"
    PERMISSION_DENIED = "auth.permission_denied"

    USER_CREATE = "user.create"
    USER_UPDATE = "user.update"
    USER_DELETE = "user.delete"
    USER_ROLE_ASSIGN = "user.role_assign"
    USER_ROLE_REVOKE = "user.role_revoke"

    ROLE_CREATE = "role.create"
    ROLE_UPDATE = "role.update"
    ROLE_DELETE = "role.delete"

    DATA_ACCESS_CREATE = "data_access.create"
    DATA_ACCESS_UPDATE = "data_access.update"
    DATA_ACCESS_DELETE = "data_access.delete"
    DATA_ACCESS_BULK_SET = "data_access.bulk_set"
    DATA_ACCESS_DENIED = "data_access.denied"


# ============================================================================
# VALIDATION
# ============================================================================

def validate_permission(permission: str) -> None:
    """
    Validate that a permission is in the catalogue.

    Wildcards are never accepted; every grant names one capability.

    Raises:
        ValueError: If permission contains wildcards or is unknown
    """
    if "*" in permission:
        raise ValueError(
            f"Wildcard permission '{permission}' is not allowed. "
            "All permissions must be explicit."
        )

    if permission not in ALLOWED_PERMISSIONS:
        raise ValueError(f"Invalid permission '{permission}'")


def catalogue_by_category() -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for permission in Permission:
        grouped.setdefault(PERMISSION_CATEGORIES[permission.value], []).append(
            permission.value
        )
    return grouped


# ============================================================================
# ROLE-PERMISSION MAPPINGS (for seeding only)
# ============================================================================

_ADMIN_EXCLUDED: Final[frozenset[Permission]] = frozenset({
    Permission.ROLES_CREATE,
    Permission.ROLES_UPDATE,
    Permission.ROLES_DELETE,
    Permission.AUDIT_EXPORT,
    Permission.AUDIT_DELETE,
    Permission.CONNECTIONS_VIEW,
    Permission.CONNECTIONS_EDIT,
    Permission.CONNECTIONS_DELETE,
})

DEFAULT_ROLE_PERMISSIONS: Final[dict[str, frozenset[str]]] = {
    SystemRole.SUPER_ADMIN.value: ALLOWED_PERMISSIONS,

    SystemRole.ADMIN.value: frozenset(
        p.value for p in Permission if p not in _ADMIN_EXCLUDED
    ),

    SystemRole.DEVELOPER.value: frozenset(p.value for p in (
        Permission.DB_VIEW,
        Permission.DB_CREATE,
        Permission.DB_DROP,
        Permission.TABLE_VIEW,
        Permission.TABLE_CREATE,
        Permission.TABLE_ALTER,
        Permission.TABLE_DROP,
        Permission.TABLE_SELECT,
        Permission.TABLE_INSERT,
        Permission.TABLE_UPDATE,
        Permission.TABLE_DELETE,
        Permission.QUERY_EXECUTE,
        Permission.QUERY_EXECUTE_DDL,
        Permission.QUERY_EXECUTE_DML,
        Permission.QUERY_EXECUTE_MISC,
        Permission.QUERY_HISTORY_VIEW,
        Permission.SAVED_QUERIES_VIEW,
        Permission.SAVED_QUERIES_CREATE,
        Permission.SAVED_QUERIES_UPDATE,
        Permission.SAVED_QUERIES_DELETE,
        Permission.METRICS_VIEW,
        Permission.AI_OPTIMIZE,
        Permission.AI_CHAT,
    )),

    SystemRole.ANALYST.value: frozenset(p.value for p in (
        Permission.DB_VIEW,
        Permission.TABLE_VIEW,
        Permission.TABLE_SELECT,
        Permission.TABLE_INSERT,
        Permission.TABLE_UPDATE,
        Permission.TABLE_DELETE,
        Permission.QUERY_EXECUTE,
        Permission.QUERY_EXECUTE_DML,
        Permission.QUERY_EXECUTE_MISC,
        Permission.QUERY_HISTORY_VIEW,
        Permission.SAVED_QUERIES_VIEW,
        Permission.SAVED_QUERIES_CREATE,
        Permission.SAVED_QUERIES_UPDATE,
        Permission.SAVED_QUERIES_DELETE,
        Permission.METRICS_VIEW,
        Permission.AI_OPTIMIZE,
        Permission.AI_CHAT,
    )),

    SystemRole.VIEWER.value: frozenset(p.value for p in (
        Permission.DB_VIEW,
        Permission.TABLE_VIEW,
        Permission.TABLE_SELECT,
        Permission.QUERY_EXECUTE,
        Permission.QUERY_HISTORY_VIEW,
        Permission.SAVED_QUERIES_VIEW,
        Permission.METRICS_VIEW,
    )),

    # Read-only across the admin surface; no DDL/DML.
    SystemRole.GUEST.value: frozenset(p.value for p in (
        Permission.USERS_VIEW,
        Permission.ROLES_VIEW,
        Permission.CH_USERS_VIEW,
        Permission.DB_VIEW,
        Permission.TABLE_VIEW,
        Permission.TABLE_SELECT,
        Permission.QUERY_EXECUTE,
        Permission.QUERY_HISTORY_VIEW,
        Permission.SAVED_QUERIES_VIEW,
        Permission.METRICS_VIEW,
        Permission.METRICS_VIEW_ADVANCED,
        Permission.SETTINGS_VIEW,
        Permission.AUDIT_VIEW,
    )),
}


def _validate_contract() -> None:
    """Validate the contract at import time (fail-fast)."""
    errors = []

    for role, permissions in DEFAULT_ROLE_PERMISSIONS.items():
        if role not in SYSTEM_ROLES:
            errors.append(f"Invalid role in mappings: {role}")
            continue
        for permission in permissions:
            try:
                validate_permission(permission)
            except ValueError as e:
                errors.append(f"Role '{role}' has invalid permission: {e}")

    if set(ROLE_HIERARCHY) != SYSTEM_ROLES:
        errors.append("ROLE_HIERARCHY must rank every system role")

    if errors:
        raise RuntimeError(
            "RBAC contract validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


_validate_contract()
