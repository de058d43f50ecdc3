import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from clickgate.auth.rbac_contract import AuditAction
from clickgate.crud.data_access_rule import DataAccessRuleRepository
from clickgate.crud.role import RoleRepository
from clickgate.crud.user import UserRepository
from clickgate.domain.access import (
    AccessRuleSpec,
    AccessType,
    Principal,
    ResourceRef,
    RoleSubject,
    UserSubject,
)
from clickgate.errors import InvalidRuleDefinitionError, NotFoundError
from clickgate.models import AuditLog, DataAccessRule
from clickgate.services.access.evaluator import ResourceAccessEvaluator
from clickgate.services.admin.data_access_service import DataAccessService


async def make_role(session, name="analyst"):
    role = await RoleRepository(session).create(name, name.title())
    await session.commit()
    return role


async def make_user(session, username="ana", role=None):
    user = await UserRepository(session).create(
        email=f"{username}@example.com", username=username, password_hash="x"
    )
    if role is not None:
        await RoleRepository(session).assign_to_user(user.id, role.id)
    await session.commit()
    return user


def role_rule(role, **kwargs):
    kwargs.setdefault("access_type", AccessType.READ)
    return AccessRuleSpec(subject=RoleSubject(role_id=role.id), **kwargs)


async def rule_count(session) -> int:
    return await session.scalar(select(func.count()).select_from(DataAccessRule))


async def audit_actions(session) -> list[str]:
    result = await session.execute(select(AuditLog.action).order_by(AuditLog.created_at))
    return list(result.scalars().all())


@pytest.mark.anyio
async def test_create_rule_is_audited(session) -> None:
    role = await make_role(session)
    service = DataAccessService(session)

    rule = await service.create_rule(role_rule(role, database_pattern="sales_*", priority=5))

    assert rule.subject == RoleSubject(role_id=role.id)
    assert rule.database_pattern == "sales_*"
    assert rule.table_pattern == "*"
    assert rule.priority == 5
    assert await audit_actions(session) == [AuditAction.DATA_ACCESS_CREATE.value]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "overrides",
    [
        {"database_pattern": ""},
        {"database_pattern": " sales"},
        {"table_pattern": "/^ord.*/"},
        {"priority": 1001},
        {"description": "x" * 501},
    ],
)
async def test_invalid_rule_is_rejected_without_writes(session, overrides) -> None:
    role = await make_role(session)

    with pytest.raises(InvalidRuleDefinitionError):
        await DataAccessService(session).create_rule(role_rule(role, **overrides))

    assert await rule_count(session) == 0
    assert await audit_actions(session) == []


@pytest.mark.anyio
async def test_rule_for_missing_subject_or_connection(session) -> None:
    service = DataAccessService(session)
    with pytest.raises(NotFoundError):
        await service.create_rule(
            AccessRuleSpec(subject=RoleSubject(role_id=uuid.uuid4()), access_type=AccessType.READ)
        )
    with pytest.raises(NotFoundError):
        await service.create_rule(
            AccessRuleSpec(subject=UserSubject(user_id=uuid.uuid4()), access_type=AccessType.READ)
        )

    role = await make_role(session)
    with pytest.raises(NotFoundError):
        await service.create_rule(role_rule(role, connection_id=uuid.uuid4()))


@pytest.mark.anyio
async def test_update_and_delete_rule(session) -> None:
    role = await make_role(session)
    service = DataAccessService(session)
    rule = await service.create_rule(role_rule(role))

    updated = await service.update_rule(
        rule.id, {"access_type": "write", "is_allowed": False, "priority": 7}
    )
    assert updated.access_type is AccessType.WRITE
    assert updated.is_allowed is False
    assert updated.priority == 7

    with pytest.raises(InvalidRuleDefinitionError):
        await service.update_rule(rule.id, {"access_type": "execute"})
    with pytest.raises(InvalidRuleDefinitionError):
        await service.update_rule(rule.id, {"role_id": uuid.uuid4()})
    with pytest.raises(InvalidRuleDefinitionError):
        await service.update_rule(rule.id, {"table_pattern": ""})

    await service.delete_rule(rule.id)
    with pytest.raises(NotFoundError):
        await service.get_rule(rule.id)
    with pytest.raises(NotFoundError):
        await service.delete_rule(rule.id)

    assert sorted(await audit_actions(session)) == sorted([
        AuditAction.DATA_ACCESS_CREATE.value,
        AuditAction.DATA_ACCESS_UPDATE.value,
        AuditAction.DATA_ACCESS_DELETE.value,
    ])


@pytest.mark.anyio
async def test_bulk_replace_swaps_the_whole_set(session) -> None:
    role = await make_role(session)
    service = DataAccessService(session)
    await service.create_rule(role_rule(role, database_pattern="old"))

    created = await service.set_rules_for_role(
        role.id,
        [
            role_rule(role, database_pattern="sales"),
            role_rule(role, database_pattern="hr", is_allowed=False, priority=10),
        ],
    )

    assert len(created) == 2
    current = await service.get_rules_for_role(role.id)
    assert [r.database_pattern for r in current] == ["hr", "sales"]


@pytest.mark.anyio
async def test_failed_bulk_replace_leaves_existing_rules(session) -> None:
    role = await make_role(session)
    service = DataAccessService(session)
    original = await service.create_rule(role_rule(role, database_pattern="keep"))

    with pytest.raises(InvalidRuleDefinitionError):
        await service.set_rules_for_role(
            role.id,
            [role_rule(role, database_pattern="fine"), role_rule(role, priority=5000)],
        )

    remaining = await service.get_rules_for_role(role.id)
    assert [r.id for r in remaining] == [original.id]


@pytest.mark.anyio
async def test_bulk_replace_rolls_back_when_a_write_fails(session) -> None:
    role = await make_role(session)
    role_id = role.id
    service = DataAccessService(session)
    original = await service.create_rule(role_rule(role, database_pattern="keep"))
    replacement = [role_rule(role, database_pattern="a"), role_rule(role, database_pattern="b")]

    real_create = service.rule_repo.create
    written = []

    async def create_then_fail(spec, *, created_by=None):
        if written:
            raise SQLAlchemyError("connection lost")
        written.append(spec)
        return await real_create(spec, created_by=created_by)

    with patch.object(service.rule_repo, "create", side_effect=create_then_fail):
        with pytest.raises(SQLAlchemyError):
            await service.set_rules_for_role(role_id, replacement)

    assert len(written) == 1
    remaining = await service.get_rules_for_role(role_id)
    assert [(r.id, r.database_pattern) for r in remaining] == [(original.id, "keep")]
    assert await rule_count(session) == 1
    assert AuditAction.DATA_ACCESS_BULK_SET.value not in await audit_actions(session)


@pytest.mark.anyio
async def test_bulk_replace_rejects_foreign_subject(session) -> None:
    role = await make_role(session)
    other = await make_role(session, "viewer")
    service = DataAccessService(session)

    with pytest.raises(InvalidRuleDefinitionError):
        await service.set_rules_for_role(role.id, [role_rule(other)])


@pytest.mark.anyio
async def test_bulk_replace_with_empty_list_clears(session) -> None:
    role = await make_role(session)
    service = DataAccessService(session)
    await service.create_rule(role_rule(role))
    await service.create_rule(role_rule(role, database_pattern="x"))

    assert await service.set_rules_for_role(role.id, []) == []
    assert await service.get_rules_for_role(role.id) == []


@pytest.mark.anyio
async def test_user_rules_include_role_rules(session) -> None:
    role = await make_role(session)
    user = await make_user(session, role=role)
    service = DataAccessService(session)
    await service.create_rule(role_rule(role, database_pattern="sales"))
    await service.set_rules_for_user(
        user.id,
        [
            AccessRuleSpec(
                subject=UserSubject(user_id=user.id),
                access_type=AccessType.READ,
                database_pattern="sales",
                table_pattern="pii",
                is_allowed=False,
                priority=10,
            )
        ],
    )

    rules = await service.get_rules_for_user(user.id)

    assert [r.subject.kind for r in rules] == ["user", "role"]


@pytest.mark.anyio
async def test_rule_changes_apply_to_the_next_evaluation(session) -> None:
    role = await make_role(session)
    user = await make_user(session, role=role)
    service = DataAccessService(session)
    evaluator = ResourceAccessEvaluator(DataAccessRuleRepository(session), bypass_roles=[])
    principal = Principal(id=user.id, roles=frozenset({"analyst"}))
    orders = ResourceRef(database="sales", table="orders")

    assert not await evaluator.is_allowed(principal, orders, AccessType.READ)

    rule = await service.create_rule(role_rule(role, database_pattern="sales"))
    assert await evaluator.is_allowed(principal, orders, AccessType.READ)

    await service.delete_rule(rule.id)
    assert not await evaluator.is_allowed(principal, orders, AccessType.READ)


@pytest.mark.anyio
async def test_check_access_for_another_user(session) -> None:
    role = await make_role(session)
    user = await make_user(session, role=role)
    service = DataAccessService(session)
    rule = await service.create_rule(role_rule(role, database_pattern="sales"))

    decision = await service.check_access(
        user.id, ResourceRef(database="sales", table="orders"), AccessType.READ
    )
    assert decision.allowed is True
    assert decision.rule_id == rule.id

    with pytest.raises(NotFoundError):
        await service.check_access(uuid.uuid4(), ResourceRef(database="sales"), AccessType.READ)


@pytest.mark.anyio
async def test_deleting_a_role_removes_its_rules(session) -> None:
    role = await make_role(session)
    await DataAccessService(session).create_rule(role_rule(role))

    await RoleRepository(session).delete(role)
    await session.commit()

    assert await rule_count(session) == 0
