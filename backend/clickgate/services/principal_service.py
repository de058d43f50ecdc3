import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ..crud.user import UserRepository
from ..domain.access import Principal


class PrincipalService:
    """Builds a Principal from the store's current view of a user."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.user_repo = UserRepository(session)

    async def load(
        self,
        user_id: uuid.UUID,
        *,
        session_id: uuid.UUID | None = None,
        permission_snapshot: frozenset[str] = frozenset(),
    ) -> Principal | None:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            return None
        roles = await self.user_repo.get_role_names(user_id)
        return Principal(
            id=user.id,
            roles=frozenset(roles),
            permission_snapshot=permission_snapshot,
            session_id=session_id,
            is_active=user.is_active and user.deleted_at is None,
            email=user.email,
            username=user.username,
            display_name=user.display_name,
        )
