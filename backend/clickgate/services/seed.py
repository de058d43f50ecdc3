"""Idempotent seeding of the permission catalogue, system roles and their rules."""
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import rbac_contract
from ..auth.rbac_contract import SystemRole
from ..crud.data_access_rule import DataAccessRuleRepository
from ..crud.permission import PermissionRepository
from ..crud.role import RoleRepository
from ..crud.user import UserRepository
from ..domain.access import AccessRuleSpec, AccessType, RoleSubject
from ..models.user import User
from ..security.passwords import hash_password

logger = logging.getLogger(__name__)

ROLE_DEFINITIONS: dict[str, tuple[str, str]] = {
    SystemRole.SUPER_ADMIN.value: ("Super Administrator", "Full system access with all permissions"),
    SystemRole.ADMIN.value: ("Administrator", "User management and full database access"),
    SystemRole.DEVELOPER.value: ("Developer", "DDL and DML access for development"),
    SystemRole.ANALYST.value: ("Analyst", "Read/write access for data analysis"),
    SystemRole.VIEWER.value: ("Viewer", "Read-only access to data"),
    SystemRole.GUEST.value: ("Guest", "Read-only access to system tables"),
}

DEFAULT_ROLE = SystemRole.VIEWER.value


@dataclass(frozen=True)
class DefaultRule:
    access_type: AccessType
    database_pattern: str = "*"
    table_pattern: str = "*"
    is_allowed: bool = True
    priority: int = 0
    description: str | None = None


DEFAULT_RULES: dict[str, tuple[DefaultRule, ...]] = {
    SystemRole.SUPER_ADMIN.value: (DefaultRule(AccessType.ADMIN, description="Full access"),),
    SystemRole.ADMIN.value: (DefaultRule(AccessType.ADMIN, description="Full access"),),
    SystemRole.DEVELOPER.value: (
        DefaultRule(AccessType.ADMIN, description="Full access to user databases"),
        DefaultRule(
            AccessType.ADMIN,
            database_pattern="system",
            is_allowed=False,
            priority=10,
            description="No access to the system database",
        ),
        DefaultRule(
            AccessType.READ,
            database_pattern="system",
            priority=20,
            description="Read-only access to the system database",
        ),
    ),
    SystemRole.ANALYST.value: (DefaultRule(AccessType.WRITE, description="Read/write access"),),
    SystemRole.VIEWER.value: (DefaultRule(AccessType.READ, description="Read-only access"),),
    SystemRole.GUEST.value: (
        DefaultRule(AccessType.READ, database_pattern="system", description="System tables only"),
    ),
}


@dataclass
class SeedReport:
    permissions_created: list[str] = field(default_factory=list)
    roles_created: list[str] = field(default_factory=list)
    links_created: int = 0
    rules_created: int = 0


async def seed_rbac(session: AsyncSession) -> SeedReport:
    """Insert what is missing; existing rows and admin edits are left alone.

    Default data-access rules are only written for roles created by this run.
    The caller commits.
    """
    permission_repo = PermissionRepository(session)
    role_repo = RoleRepository(session)
    rule_repo = DataAccessRuleRepository(session)
    report = SeedReport()

    permission_ids = {}
    for permission in rbac_contract.Permission:
        existing = await permission_repo.get_by_name(permission.value)
        if existing is None:
            existing = await permission_repo.create(
                name=permission.value,
                display_name=permission.display_name,
                category=rbac_contract.PERMISSION_CATEGORIES[permission.value],
                description=f"Permission to {permission.display_name.lower()}",
            )
            report.permissions_created.append(permission.value)
        permission_ids[permission.value] = existing.id

    for role_name in rbac_contract.SystemRole:
        name = role_name.value
        role = await role_repo.get_by_name(name)
        if role is None:
            display_name, description = ROLE_DEFINITIONS[name]
            role = await role_repo.create(
                name,
                display_name,
                description,
                is_system=True,
                is_default=name == DEFAULT_ROLE,
                priority=rbac_contract.ROLE_HIERARCHY[name],
            )
            report.roles_created.append(name)
            for rule in DEFAULT_RULES[name]:
                await rule_repo.create(
                    AccessRuleSpec(
                        subject=RoleSubject(role_id=role.id),
                        access_type=rule.access_type,
                        database_pattern=rule.database_pattern,
                        table_pattern=rule.table_pattern,
                        is_allowed=rule.is_allowed,
                        priority=rule.priority,
                        description=rule.description,
                    )
                )
                report.rules_created += 1

        linked = set(await role_repo.get_permission_ids(role.id))
        for permission_name in sorted(rbac_contract.DEFAULT_ROLE_PERMISSIONS[name]):
            permission_id = permission_ids[permission_name]
            if permission_id not in linked:
                await role_repo.assign_permission(role.id, permission_id)
                report.links_created += 1

    logger.info(
        "rbac_seeded permissions=%s roles=%s links=%s rules=%s",
        len(report.permissions_created),
        len(report.roles_created),
        report.links_created,
        report.rules_created,
    )
    return report


async def ensure_super_admin(
    session: AsyncSession, *, email: str, username: str, password: str
) -> tuple[User, bool]:
    """Create the bootstrap super admin if no user with that email exists."""
    user_repo = UserRepository(session)
    role_repo = RoleRepository(session)

    existing = await user_repo.get_by_email(email.strip().lower())
    if existing is not None:
        return existing, False

    role = await role_repo.get_by_name(SystemRole.SUPER_ADMIN.value)
    if role is None:
        raise RuntimeError("RBAC data must be seeded before creating the super admin")

    user = await user_repo.create(
        email=email.strip().lower(),
        username=username.strip().lower(),
        password_hash=hash_password(password),
        display_name="System Administrator",
    )
    user.is_system_user = True
    await user_repo.update(user)
    await role_repo.assign_to_user(user.id, role.id)
    logger.info("super_admin_created user=%s", user.id)
    return user, True
