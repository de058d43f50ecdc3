import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.access import AccessRuleData, AccessRuleSpec, AccessType, RoleSubject
from ..domain.invariants import build_subject
from ..domain.ports.rules import RuleStore
from ..models.data_access_rule import DataAccessRule
from ..models.role import Role


def to_rule_data(row: DataAccessRule) -> AccessRuleData:
    return AccessRuleData(
        id=row.id,
        subject=build_subject(row.role_id, row.user_id),
        access_type=AccessType(row.access_type),
        database_pattern=row.database_pattern,
        table_pattern=row.table_pattern,
        connection_id=row.connection_id,
        is_allowed=row.is_allowed,
        priority=row.priority,
        description=row.description,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class DataAccessRuleRepository(RuleStore):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self, spec: AccessRuleSpec, *, created_by: uuid.UUID | None = None
    ) -> DataAccessRule:
        is_role = isinstance(spec.subject, RoleSubject)
        row = DataAccessRule(
            role_id=spec.subject.role_id if is_role else None,
            user_id=None if is_role else spec.subject.user_id,
            connection_id=spec.connection_id,
            database_pattern=spec.database_pattern,
            table_pattern=spec.table_pattern,
            access_type=spec.access_type.value,
            is_allowed=spec.is_allowed,
            priority=spec.priority,
            description=spec.description,
            created_by=created_by,
        )
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return row

    async def get_by_id(self, rule_id: uuid.UUID) -> DataAccessRule | None:
        return await self.session.get(DataAccessRule, rule_id)

    async def update(self, row: DataAccessRule) -> DataAccessRule:
        await self.session.flush()
        await self.session.refresh(row)
        return row

    async def delete(self, row: DataAccessRule) -> None:
        await self.session.delete(row)
        await self.session.flush()

    async def delete_for_role(self, role_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(DataAccessRule).where(DataAccessRule.role_id == role_id)
        )
        return result.rowcount or 0

    async def delete_for_user(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(DataAccessRule).where(DataAccessRule.user_id == user_id)
        )
        return result.rowcount or 0

    async def list_rules(
        self,
        *,
        role_id: uuid.UUID | None = None,
        user_id: uuid.UUID | None = None,
        connection_id: uuid.UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[DataAccessRule], int]:
        query = select(DataAccessRule)
        if role_id is not None:
            query = query.where(DataAccessRule.role_id == role_id)
        if user_id is not None:
            query = query.where(DataAccessRule.user_id == user_id)
        if connection_id is not None:
            query = query.where(DataAccessRule.connection_id == connection_id)

        total = await self.session.scalar(
            select(func.count()).select_from(query.subquery())
        )
        result = await self.session.execute(
            query.order_by(
                DataAccessRule.priority.desc(),
                DataAccessRule.created_at,
                DataAccessRule.id,
            )
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def list_for_role(self, role_id: uuid.UUID) -> list[DataAccessRule]:
        result = await self.session.execute(
            select(DataAccessRule)
            .where(DataAccessRule.role_id == role_id)
            .order_by(DataAccessRule.priority.desc(), DataAccessRule.id)
        )
        return list(result.scalars().all())

    async def list_for_user(self, user_id: uuid.UUID) -> list[DataAccessRule]:
        result = await self.session.execute(
            select(DataAccessRule)
            .where(DataAccessRule.user_id == user_id)
            .order_by(DataAccessRule.priority.desc(), DataAccessRule.id)
        )
        return list(result.scalars().all())

    async def rules_for_roles(self, role_names: frozenset[str]) -> list[AccessRuleData]:
        # Role names that no longer exist join to nothing.
        if not role_names:
            return []
        result = await self.session.execute(
            select(DataAccessRule)
            .join(Role, Role.id == DataAccessRule.role_id)
            .where(Role.name.in_(sorted(role_names)))
        )
        return [to_rule_data(row) for row in result.scalars().all()]

    async def rules_for_user(self, user_id: uuid.UUID) -> list[AccessRuleData]:
        return [to_rule_data(row) for row in await self.list_for_user(user_id)]
