"""Database-level guarantees for the RBAC and rule tables."""
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from clickgate.models import DataAccessRule, Role, RolePermission, User, UserRole, Permission


def make_user(email="user@example.com", username="user"):
    return User(id=uuid.uuid4(), email=email, username=username, password_hash="hash123")


def make_role(name="test_role"):
    return Role(id=uuid.uuid4(), name=name, display_name=name.title())


class TestJunctionUniqueness:
    @pytest.mark.anyio
    async def test_duplicate_role_assignment_prevented(self, session):
        user, role = make_user(), make_role()
        session.add_all([user, role])
        await session.commit()

        session.add(UserRole(user_id=user.id, role_id=role.id))
        await session.commit()

        session.add(UserRole(user_id=user.id, role_id=role.id))
        with pytest.raises(IntegrityError):
            await session.commit()

    @pytest.mark.anyio
    async def test_duplicate_role_permission_prevented(self, session):
        role = make_role()
        permission = Permission(
            id=uuid.uuid4(), name="users:view", display_name="Users View", category="Users"
        )
        session.add_all([role, permission])
        await session.commit()

        session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        await session.commit()

        session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        with pytest.raises(IntegrityError):
            await session.commit()


class TestDataAccessRuleChecks:
    @pytest.mark.anyio
    async def test_rule_needs_exactly_one_subject(self, session):
        user, role = make_user(), make_role()
        session.add_all([user, role])
        await session.commit()

        session.add(DataAccessRule(role_id=role.id, user_id=user.id, access_type="read"))
        with pytest.raises(IntegrityError):
            await session.commit()
        await session.rollback()

        session.add(DataAccessRule(access_type="read"))
        with pytest.raises(IntegrityError):
            await session.commit()

    @pytest.mark.anyio
    async def test_priority_bounds_enforced(self, session):
        role = make_role()
        session.add(role)
        await session.commit()

        session.add(DataAccessRule(role_id=role.id, access_type="read", priority=1001))
        with pytest.raises(IntegrityError):
            await session.commit()

    def test_access_type_validated_on_assignment(self):
        with pytest.raises(ValueError):
            DataAccessRule(access_type="execute")

    @pytest.mark.anyio
    async def test_pattern_defaults_to_wildcard(self, session):
        role = make_role()
        session.add(role)
        await session.commit()

        rule = DataAccessRule(role_id=role.id, access_type="read")
        session.add(rule)
        await session.commit()
        await session.refresh(rule)

        assert rule.database_pattern == "*"
        assert rule.table_pattern == "*"
        assert rule.priority == 0
        assert rule.is_allowed is True


class TestCascades:
    @pytest.mark.anyio
    async def test_deleting_user_removes_assignments_and_rules(self, session):
        user, role = make_user(), make_role()
        session.add_all([user, role])
        await session.commit()
        session.add_all([
            UserRole(user_id=user.id, role_id=role.id),
            DataAccessRule(user_id=user.id, access_type="read"),
        ])
        await session.commit()

        await session.delete(user)
        await session.commit()

        assert (await session.execute(select(UserRole))).scalars().all() == []
        assert (await session.execute(select(DataAccessRule))).scalars().all() == []

    @pytest.mark.anyio
    async def test_deleting_role_removes_links(self, session):
        user, role = make_user(), make_role()
        session.add_all([user, role])
        await session.commit()
        session.add(UserRole(user_id=user.id, role_id=role.id))
        await session.commit()

        await session.delete(role)
        await session.commit()

        assert (await session.execute(select(UserRole))).scalars().all() == []
        assert await session.get(User, user.id) is not None
