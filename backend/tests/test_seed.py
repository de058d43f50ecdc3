import uuid

import pytest
from sqlalchemy import func, select

from clickgate.auth import rbac_contract
from clickgate.crud.data_access_rule import DataAccessRuleRepository
from clickgate.crud.permission import PermissionRepository
from clickgate.crud.role import RoleRepository
from clickgate.crud.user import UserRepository
from clickgate.domain.access import AccessType, Principal, ResourceRef
from clickgate.models import DataAccessRule, Permission, Role, RolePermission
from clickgate.services.access.evaluator import ResourceAccessEvaluator
from clickgate.services.seed import DEFAULT_RULES, ensure_super_admin, seed_rbac


async def count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


@pytest.mark.anyio
async def test_seed_creates_catalogue_roles_and_rules(session) -> None:
    report = await seed_rbac(session)
    await session.commit()

    assert len(report.permissions_created) == len(rbac_contract.ALLOWED_PERMISSIONS)
    assert sorted(report.roles_created) == sorted(rbac_contract.SYSTEM_ROLES)
    assert report.rules_created == sum(len(rules) for rules in DEFAULT_RULES.values())
    assert await count(session, Permission) == len(rbac_contract.ALLOWED_PERMISSIONS)
    assert await count(session, Role) == len(rbac_contract.SYSTEM_ROLES)

    analyst = await RoleRepository(session).get_by_name("analyst")
    granted = {p.name for p in await PermissionRepository(session).get_role_permissions(analyst.id)}
    assert granted == set(rbac_contract.DEFAULT_ROLE_PERMISSIONS["analyst"])


@pytest.mark.anyio
async def test_seed_is_idempotent(session) -> None:
    await seed_rbac(session)
    await session.commit()
    before = (
        await count(session, Permission),
        await count(session, Role),
        await count(session, RolePermission),
        await count(session, DataAccessRule),
    )

    report = await seed_rbac(session)
    await session.commit()

    assert report.permissions_created == []
    assert report.roles_created == []
    assert report.links_created == 0
    assert report.rules_created == 0
    after = (
        await count(session, Permission),
        await count(session, Role),
        await count(session, RolePermission),
        await count(session, DataAccessRule),
    )
    assert after == before


@pytest.mark.anyio
async def test_reseeding_keeps_admin_rule_edits(session) -> None:
    await seed_rbac(session)
    await session.commit()
    viewer = await RoleRepository(session).get_by_name("viewer")
    rule_repo = DataAccessRuleRepository(session)
    assert await rule_repo.delete_for_role(viewer.id) == 1
    await session.commit()

    await seed_rbac(session)
    await session.commit()

    assert await rule_repo.list_for_role(viewer.id) == []


@pytest.mark.anyio
async def test_developer_defaults_block_system_writes(session) -> None:
    await seed_rbac(session)
    await session.commit()
    evaluator = ResourceAccessEvaluator(DataAccessRuleRepository(session), bypass_roles=[])
    developer = Principal(id=uuid.uuid4(), roles=frozenset({"developer"}))

    assert await evaluator.is_allowed(developer, ResourceRef(database="sales"), AccessType.ADMIN)
    assert await evaluator.is_allowed(developer, ResourceRef(database="system"), AccessType.READ)
    assert not await evaluator.is_allowed(
        developer, ResourceRef(database="system"), AccessType.WRITE
    )
    assert not await evaluator.is_allowed(
        developer, ResourceRef(database="system"), AccessType.ADMIN
    )


@pytest.mark.anyio
async def test_ensure_super_admin(session) -> None:
    with pytest.raises(RuntimeError):
        await ensure_super_admin(
            session, email="root@example.com", username="root", password="long-enough-pw"
        )

    await seed_rbac(session)
    user, created = await ensure_super_admin(
        session, email="Root@Example.com", username="root", password="long-enough-pw"
    )
    await session.commit()

    assert created is True
    assert user.is_system_user is True
    assert await UserRepository(session).get_role_names(user.id) == ["super_admin"]

    again, created = await ensure_super_admin(
        session, email="root@example.com", username="root", password="other-password"
    )
    assert created is False
    assert again.id == user.id
