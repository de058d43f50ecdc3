import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.ports.rules import PermissionStore
from ..models.permission import Permission
from ..models.role_permission import RolePermission
from ..models.user import User
from ..models.user_role import UserRole


class PermissionRepository(PermissionStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        display_name: str,
        category: str,
        description: str | None = None,
        is_system: bool = True,
    ) -> Permission:
        permission = Permission(
            name=name,
            display_name=display_name,
            category=category,
            description=description,
            is_system=is_system,
        )
        self.session.add(permission)
        await self.session.flush()
        return permission

    async def get_by_id(self, permission_id: uuid.UUID) -> Permission | None:
        return await self.session.get(Permission, permission_id)

    async def get_by_name(self, name: str) -> Permission | None:
        result = await self.session.execute(
            select(Permission).where(Permission.name == name)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, permission_ids: list[uuid.UUID]) -> list[Permission]:
        if not permission_ids:
            return []
        result = await self.session.execute(
            select(Permission).where(Permission.id.in_(permission_ids))
        )
        return list(result.scalars().all())

    async def get_by_names(self, names: list[str]) -> list[Permission]:
        if not names:
            return []
        result = await self.session.execute(
            select(Permission).where(Permission.name.in_(names))
        )
        return list(result.scalars().all())

    async def list_all(self) -> list[Permission]:
        result = await self.session.execute(
            select(Permission).order_by(Permission.category, Permission.name)
        )
        return list(result.scalars().all())

    async def get_role_permissions(self, role_id: uuid.UUID) -> list[Permission]:
        result = await self.session.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    def _user_permission_query(self, user_id: uuid.UUID):
        # Inactive or soft-deleted users hold no permissions.
        return (
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(UserRole, UserRole.role_id == RolePermission.role_id)
            .join(User, User.id == UserRole.user_id)
            .where(UserRole.user_id == user_id)
            .where(User.is_active)
            .where(User.deleted_at.is_(None))
        )

    async def user_has_permission(self, user_id: uuid.UUID, permission: str) -> bool:
        result = await self.session.execute(
            self._user_permission_query(user_id)
            .where(Permission.name == permission)
            .limit(1)
        )
        return result.first() is not None

    async def get_user_permissions(self, user_id: uuid.UUID) -> set[str]:
        result = await self.session.execute(
            self._user_permission_query(user_id).distinct()
        )
        return set(result.scalars().all())
