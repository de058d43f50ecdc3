import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.role import Role
from ..models.role_permission import RolePermission
from ..models.user_role import UserRole


class RoleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        display_name: str,
        description: str | None = None,
        *,
        is_system: bool = False,
        is_default: bool = False,
        priority: int = 0,
    ) -> Role:
        role = Role(
            name=name,
            display_name=display_name,
            description=description,
            is_system=is_system,
            is_default=is_default,
            priority=priority,
        )
        self.session.add(role)
        await self.session.flush()
        await self.session.refresh(role)
        return role

    async def get_by_id(self, role_id: uuid.UUID) -> Role | None:
        return await self.session.get(Role, role_id)

    async def get_by_name(self, name: str) -> Role | None:
        result = await self.session.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def get_default(self) -> Role | None:
        result = await self.session.execute(select(Role).where(Role.is_default))
        return result.scalars().first()

    async def list_all(self) -> list[Role]:
        result = await self.session.execute(
            select(Role).order_by(Role.priority.desc(), Role.name)
        )
        return list(result.scalars().all())

    async def update(self, role: Role) -> Role:
        await self.session.flush()
        await self.session.refresh(role)
        return role

    async def delete(self, role: Role) -> None:
        await self.session.delete(role)
        await self.session.flush()

    async def clear_default(self, *, except_role_id: uuid.UUID | None = None) -> None:
        stmt = update(Role).where(Role.is_default).values(is_default=False)
        if except_role_id is not None:
            stmt = stmt.where(Role.id != except_role_id)
        await self.session.execute(stmt)

    async def get_permission_ids(self, role_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.session.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == role_id)
        )
        return list(result.scalars().all())

    async def assign_permission(self, role_id: uuid.UUID, permission_id: uuid.UUID) -> RolePermission:
        role_permission = RolePermission(role_id=role_id, permission_id=permission_id)
        self.session.add(role_permission)
        await self.session.flush()
        return role_permission

    async def replace_permissions(
        self, role_id: uuid.UUID, permission_ids: list[uuid.UUID]
    ) -> None:
        await self.session.execute(
            delete(RolePermission).where(RolePermission.role_id == role_id)
        )
        for permission_id in dict.fromkeys(permission_ids):
            self.session.add(RolePermission(role_id=role_id, permission_id=permission_id))
        await self.session.flush()

    async def assign_to_user(
        self, user_id: uuid.UUID, role_id: uuid.UUID, granted_by: uuid.UUID | None = None
    ) -> UserRole:
        user_role = UserRole(user_id=user_id, role_id=role_id, granted_by=granted_by)
        self.session.add(user_role)
        await self.session.flush()
        return user_role

    async def clear_user_roles(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(UserRole).where(UserRole.user_id == user_id)
        )
        return result.rowcount or 0

    async def get_user_roles(self, user_id: uuid.UUID) -> list[Role]:
        result = await self.session.execute(
            select(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
        )
        return list(result.scalars().all())

    async def count_users(self, role_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(UserRole.id).where(UserRole.role_id == role_id)
        )
        return len(result.scalars().all())
