import uuid
from dataclasses import dataclass, field

import pytest
from sqlalchemy.exc import OperationalError

from clickgate.domain.access import (
    AccessDecision,
    AccessRuleData,
    AccessType,
    Principal,
    ResourceRef,
    RoleSubject,
    UserSubject,
)
from clickgate.errors import ResourceAccessDeniedError, StoreUnavailableError
from clickgate.services.access.evaluator import ResourceAccessEvaluator, decide, order_rules

ANALYST_ROLE_ID = uuid.uuid4()


def make_rule(
    *,
    database: str = "*",
    table: str = "*",
    access: AccessType = AccessType.READ,
    allowed: bool = True,
    priority: int = 0,
    connection_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    rule_id: uuid.UUID | None = None,
) -> AccessRuleData:
    subject = UserSubject(user_id) if user_id else RoleSubject(ANALYST_ROLE_ID)
    return AccessRuleData(
        id=rule_id or uuid.uuid4(),
        subject=subject,
        access_type=access,
        database_pattern=database,
        table_pattern=table,
        connection_id=connection_id,
        is_allowed=allowed,
        priority=priority,
    )


@dataclass
class FakeRuleStore:
    role_rules: dict[str, list[AccessRuleData]] = field(default_factory=dict)
    user_rules: dict[uuid.UUID, list[AccessRuleData]] = field(default_factory=dict)
    calls: int = 0
    error: Exception | None = None

    async def rules_for_roles(self, role_names: frozenset[str]) -> list[AccessRuleData]:
        self.calls += 1
        if self.error:
            raise self.error
        return [rule for name in role_names for rule in self.role_rules.get(name, [])]

    async def rules_for_user(self, user_id: uuid.UUID) -> list[AccessRuleData]:
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.user_rules.get(user_id, []))


def analyst(user_id: uuid.UUID | None = None, **kwargs) -> Principal:
    return Principal(id=user_id or uuid.uuid4(), roles=frozenset({"analyst"}), **kwargs)


def evaluator_for(store: FakeRuleStore) -> ResourceAccessEvaluator:
    return ResourceAccessEvaluator(store, bypass_roles={"super_admin", "admin"})


SALES_ORDERS = ResourceRef(database="sales", table="orders")


def test_no_matching_rule_denies() -> None:
    decision = decide([], SALES_ORDERS, AccessType.READ)
    assert decision.allowed is False
    assert decision.reason == AccessDecision.REASON_NO_RULE

    other_db = [make_rule(database="finance")]
    assert decide(other_db, SALES_ORDERS, AccessType.READ).allowed is False


def test_higher_priority_wins() -> None:
    allow = make_rule(database="sales", priority=10, allowed=True)
    deny = make_rule(database="sales", priority=5, allowed=False)
    assert decide([allow, deny], SALES_ORDERS, AccessType.READ).allowed is True

    allow_low = make_rule(database="sales", priority=5, allowed=True)
    deny_high = make_rule(database="sales", priority=10, allowed=False)
    assert decide([allow_low, deny_high], SALES_ORDERS, AccessType.READ).allowed is False


def test_more_specific_table_wins_at_equal_priority() -> None:
    allow_any = make_rule(database="sales", table="*", allowed=True)
    deny_orders = make_rule(database="sales", table="orders", allowed=False)
    decision = decide([allow_any, deny_orders], SALES_ORDERS, AccessType.READ)
    assert decision.allowed is False
    assert decision.rule_id == deny_orders.id


def test_literal_database_beats_wildcard_database() -> None:
    deny_all = make_rule(database="*", allowed=False)
    allow_sales = make_rule(database="sales", allowed=True)
    assert decide([deny_all, allow_sales], SALES_ORDERS, AccessType.READ).allowed is True


def test_partial_glob_is_between_wildcard_and_literal() -> None:
    deny_glob = make_rule(database="sal*", allowed=False)
    allow_any = make_rule(database="*", allowed=True)
    assert decide([allow_any, deny_glob], SALES_ORDERS, AccessType.READ).allowed is False

    allow_literal = make_rule(database="sales", allowed=True)
    assert decide([deny_glob, allow_literal], SALES_ORDERS, AccessType.READ).allowed is True


def test_deny_wins_full_tie() -> None:
    allow = make_rule(database="sales", table="orders", allowed=True)
    deny = make_rule(database="sales", table="orders", allowed=False)
    assert decide([allow, deny], SALES_ORDERS, AccessType.READ).allowed is False
    assert decide([deny, allow], SALES_ORDERS, AccessType.READ).allowed is False


def test_admin_grant_covers_read() -> None:
    rules = [make_rule(database="sales", access=AccessType.ADMIN)]
    resource = ResourceRef(database="sales", table="customers")
    assert decide(rules, resource, AccessType.READ).allowed is True
    assert decide(rules, resource, AccessType.WRITE).allowed is True


def test_read_grant_does_not_cover_write() -> None:
    rules = [make_rule(database="sales", access=AccessType.READ)]
    assert decide(rules, SALES_ORDERS, AccessType.WRITE).allowed is False


def test_admin_deny_blocks_read_on_tie() -> None:
    allow_read = make_rule(database="sales", access=AccessType.READ)
    deny_admin = make_rule(database="sales", access=AccessType.ADMIN, allowed=False)
    decision = decide([allow_read, deny_admin], SALES_ORDERS, AccessType.READ)
    assert decision.allowed is False
    assert decision.rule_id == deny_admin.id


def test_read_deny_does_not_apply_to_write() -> None:
    rules = [
        make_rule(database="sales", access=AccessType.WRITE),
        make_rule(database="sales", access=AccessType.READ, allowed=False, priority=10),
    ]
    assert decide(rules, SALES_ORDERS, AccessType.WRITE).allowed is True
    assert decide(rules, SALES_ORDERS, AccessType.READ).allowed is False


def test_write_deny_blocks_write_and_read_but_not_admin() -> None:
    rules = [
        make_rule(database="*", access=AccessType.ADMIN),
        make_rule(database="system", access=AccessType.WRITE, allowed=False, priority=10),
    ]
    system_tables = ResourceRef(database="system", table="tables")
    assert decide(rules, system_tables, AccessType.READ).allowed is False
    assert decide(rules, system_tables, AccessType.WRITE).allowed is False
    assert decide(rules, system_tables, AccessType.ADMIN).allowed is True


def test_higher_read_allow_reopens_reads_under_a_deny() -> None:
    rules = [
        make_rule(database="*", access=AccessType.ADMIN),
        make_rule(database="system", access=AccessType.ADMIN, allowed=False, priority=10),
        make_rule(database="system", access=AccessType.READ, priority=20),
    ]
    system_tables = ResourceRef(database="system", table="tables")
    assert decide(rules, system_tables, AccessType.READ).allowed is True
    assert decide(rules, system_tables, AccessType.WRITE).allowed is False
    assert decide(rules, system_tables, AccessType.ADMIN).allowed is False


def test_connection_scoped_rule_needs_exact_connection() -> None:
    conn_1, conn_2 = uuid.uuid4(), uuid.uuid4()
    rules = [make_rule(database="sales", connection_id=conn_1)]

    assert decide(rules, ResourceRef("sales", "orders", conn_1), AccessType.READ).allowed
    assert not decide(rules, ResourceRef("sales", "orders", conn_2), AccessType.READ).allowed
    assert not decide(rules, ResourceRef("sales", "orders"), AccessType.READ).allowed


def test_connection_agnostic_rule_applies_everywhere() -> None:
    rules = [make_rule(database="sales")]
    assert decide(rules, ResourceRef("sales", None, uuid.uuid4()), AccessType.READ).allowed
    assert decide(rules, ResourceRef("sales"), AccessType.READ).allowed


def test_table_scoped_rule_does_not_grant_database() -> None:
    rules = [make_rule(database="sales", table="orders")]
    assert decide(rules, ResourceRef("sales"), AccessType.READ).allowed is False
    assert decide(rules, SALES_ORDERS, AccessType.READ).allowed is True


def test_database_rule_applies_to_whole_database_and_tables() -> None:
    rules = [make_rule(database="sales", table="*")]
    assert decide(rules, ResourceRef("sales"), AccessType.READ).allowed is True
    assert decide(rules, ResourceRef("sales", "anything"), AccessType.READ).allowed is True


def test_matching_is_case_sensitive() -> None:
    rules = [make_rule(database="Sales")]
    assert decide(rules, SALES_ORDERS, AccessType.READ).allowed is False


def test_order_is_deterministic() -> None:
    rules = [make_rule(database="sales", priority=p % 3) for p in range(9)]
    assert order_rules(rules) == order_rules(list(reversed(rules)))
    assert [r.priority for r in order_rules(rules)][:3] == [2, 2, 2]


@pytest.mark.anyio
async def test_analyst_with_personal_deny_scenario() -> None:
    user_id = uuid.uuid4()
    store = FakeRuleStore(
        role_rules={"analyst": [make_rule(database="sales", table="*", priority=0)]},
        user_rules={
            user_id: [
                make_rule(
                    database="sales",
                    table="secret_salaries",
                    allowed=False,
                    priority=100,
                    user_id=user_id,
                )
            ]
        },
    )
    evaluator = evaluator_for(store)
    principal = analyst(user_id)

    secret = await evaluator.evaluate(
        principal, ResourceRef("sales", "secret_salaries"), AccessType.READ
    )
    orders = await evaluator.evaluate(principal, SALES_ORDERS, AccessType.READ)

    assert secret.allowed is False
    assert secret.rule_priority == 100
    assert orders.allowed is True
    assert orders.rule_priority == 0


@pytest.mark.anyio
async def test_bypass_role_skips_rule_lookups() -> None:
    store = FakeRuleStore()
    evaluator = evaluator_for(store)
    admin = Principal(id=uuid.uuid4(), roles=frozenset({"admin"}))

    decision = await evaluator.evaluate(admin, ResourceRef("anything"), AccessType.ADMIN)

    assert decision.allowed is True
    assert decision.reason == AccessDecision.REASON_BYPASS
    assert await evaluator.filter_databases(admin, ["a", "b"]) == ["a", "b"]
    assert store.calls == 0


@pytest.mark.anyio
async def test_bypass_roles_default_from_settings() -> None:
    evaluator = ResourceAccessEvaluator(FakeRuleStore())
    assert evaluator.bypass_roles == frozenset({"super_admin", "admin"})


@pytest.mark.anyio
async def test_inactive_principal_is_denied_even_with_bypass_role() -> None:
    store = FakeRuleStore()
    evaluator = evaluator_for(store)
    principal = Principal(id=uuid.uuid4(), roles=frozenset({"admin"}), is_active=False)

    decision = await evaluator.evaluate(principal, SALES_ORDERS, AccessType.READ)

    assert decision.allowed is False
    assert decision.reason == AccessDecision.REASON_INACTIVE
    assert await evaluator.filter_tables(principal, "sales", ["orders"]) == []


@pytest.mark.anyio
async def test_store_failure_fails_closed() -> None:
    store = FakeRuleStore(error=OperationalError("SELECT", {}, Exception("down")))
    evaluator = evaluator_for(store)

    with pytest.raises(StoreUnavailableError):
        await evaluator.evaluate(analyst(), SALES_ORDERS, AccessType.READ)
    with pytest.raises(StoreUnavailableError):
        await evaluator.filter_databases(analyst(), ["sales"])


@pytest.mark.anyio
async def test_dangling_role_has_no_rules() -> None:
    store = FakeRuleStore(role_rules={"analyst": [make_rule()]})
    principal = Principal(id=uuid.uuid4(), roles=frozenset({"deleted_role"}))

    assert await evaluator_for(store).is_allowed(principal, SALES_ORDERS, AccessType.READ) is False


@pytest.mark.anyio
async def test_check_raises_with_only_requested_resource() -> None:
    store = FakeRuleStore(role_rules={"analyst": [make_rule(database="finance")]})

    with pytest.raises(ResourceAccessDeniedError) as exc_info:
        await evaluator_for(store).check(analyst(), SALES_ORDERS, AccessType.WRITE)

    assert exc_info.value.details == {
        "database": "sales",
        "table": "orders",
        "access_type": "write",
    }


@pytest.mark.anyio
async def test_filter_databases_and_tables() -> None:
    conn = uuid.uuid4()
    store = FakeRuleStore(
        role_rules={
            "analyst": [
                make_rule(database="sales_*"),
                make_rule(database="sales_eu", table="pii", allowed=False, priority=5),
                make_rule(database="ops", connection_id=conn),
            ]
        }
    )
    evaluator = evaluator_for(store)
    principal = analyst()

    databases = await evaluator.filter_databases(
        principal, ["sales_us", "sales_eu", "ops", "system"]
    )
    assert databases == ["sales_us", "sales_eu"]
    assert await evaluator.filter_databases(principal, ["ops"], conn) == ["ops"]

    tables = await evaluator.filter_tables(principal, "sales_eu", ["orders", "pii"])
    assert tables == ["orders"]
    assert await evaluator.filter_tables(
        principal, "sales_eu", ["orders"], requested=AccessType.WRITE
    ) == []


@pytest.mark.anyio
async def test_rules_are_reloaded_on_every_call() -> None:
    store = FakeRuleStore()
    evaluator = evaluator_for(store)
    principal = analyst()

    assert await evaluator.is_allowed(principal, SALES_ORDERS, AccessType.READ) is False
    store.role_rules["analyst"] = [make_rule(database="sales")]
    assert await evaluator.is_allowed(principal, SALES_ORDERS, AccessType.READ) is True
