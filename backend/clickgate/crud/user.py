import uuid
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.ports.user import UserPort
from ..models.permission import Permission
from ..models.role import Role
from ..models.role_permission import RolePermission
from ..models.user import User
from ..models.user_role import UserRole


class UserRepository(UserPort):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        email: str,
        username: str,
        password_hash: str,
        display_name: str | None = None,
        is_active: bool = True,
        created_by: uuid.UUID | None = None,
    ) -> User:
        user = User(
            email=email,
            username=username,
            password_hash=password_hash,
            display_name=display_name,
            is_active=is_active,
            created_by=created_by,
        )
        self.session.add(user)
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def get_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self.session.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def get_by_username(self, username: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.username == username)
        )
        return result.scalar_one_or_none()

    async def get_by_identifier(self, identifier: str) -> User | None:
        normalized = identifier.strip().lower()
        result = await self.session.execute(
            select(User).where(or_(User.email == normalized, User.username == normalized))
        )
        return result.scalars().first()

    async def get_role_names(self, user_id: uuid.UUID) -> list[str]:
        result = await self.session.execute(
            select(Role.name)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
            .order_by(Role.priority.desc(), Role.name)
        )
        return list(result.scalars().all())

    async def get_role_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.session.execute(
            select(UserRole.role_id).where(UserRole.user_id == user_id)
        )
        return list(result.scalars().all())

    async def get_permission_names(self, user_id: uuid.UUID) -> set[str]:
        result = await self.session.execute(
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(UserRole, UserRole.role_id == RolePermission.role_id)
            .where(UserRole.user_id == user_id)
            .distinct()
        )
        return set(result.scalars().all())

    async def mark_login(self, user_id: uuid.UUID, when: datetime) -> None:
        await self.session.execute(
            update(User).where(User.id == user_id).values(last_login_at=when)
        )

    async def update(self, user: User) -> User:
        await self.session.flush()
        await self.session.refresh(user)
        return user

    async def list_users(
        self,
        *,
        search: str | None = None,
        role_id: uuid.UUID | None = None,
        is_active: bool | None = None,
        include_deleted: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[User], int]:
        query = select(User)
        if not include_deleted:
            query = query.where(User.deleted_at.is_(None))
        if search:
            like = f"%{search}%"
            query = query.where(
                or_(
                    User.email.ilike(like),
                    User.username.ilike(like),
                    User.display_name.ilike(like),
                )
            )
        if role_id is not None:
            query = query.join(UserRole, UserRole.user_id == User.id).where(
                UserRole.role_id == role_id
            )
        if is_active is not None:
            query = query.where(User.is_active == is_active)

        total = await self.session.scalar(
            select(func.count()).select_from(query.subquery())
        )
        result = await self.session.execute(
            query.order_by(User.created_at.desc(), User.username)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)
