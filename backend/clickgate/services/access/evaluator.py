"""Resource Access Evaluator.

Decides whether a principal may touch ``(connection, database, table)`` at
a given access level. Rules are re-read from the store on every call; the
only state kept between calls is the configured set of bypass roles.

Selection among matching rules:
    1. highest priority
    2. more specific patterns (table first, then database)
    3. deny before allow
    4. rule id, so the order is total and repeatable
No matching rule means deny.
"""
import logging
import uuid
from typing import Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ...auth.patterns import WILDCARD, matches_pattern, pattern_specificity
from ...config import settings
from ...domain.access import (
    AccessDecision,
    AccessRuleData,
    AccessType,
    Principal,
    ResourceRef,
)
from ...domain.ports.rules import RuleStore
from ...errors import ResourceAccessDeniedError, StoreUnavailableError

logger = logging.getLogger(__name__)


def rule_applies(rule: AccessRuleData, resource: ResourceRef, requested: AccessType) -> bool:
    # Connection-scoped rules need an exact connection match; an unspecified
    # resource connection only sees connection-agnostic rules.
    if rule.connection_id is not None and rule.connection_id != resource.connection_id:
        return False
    if not matches_pattern(resource.database, rule.database_pattern):
        return False
    if resource.table is None:
        # Whole-database requests are governed by database-level rules only.
        if rule.table_pattern != WILDCARD:
            return False
    elif not matches_pattern(resource.table, rule.table_pattern):
        return False
    # Allow and deny rules alike only take part when their level covers the request.
    return rule.access_type.satisfies(requested)


def _precedence(rule: AccessRuleData) -> tuple:
    return (
        -rule.priority,
        -pattern_specificity(rule.table_pattern),
        -pattern_specificity(rule.database_pattern),
        rule.is_allowed,
        str(rule.id),
    )


def order_rules(rules: Iterable[AccessRuleData]) -> list[AccessRuleData]:
    return sorted(rules, key=_precedence)


def select_winning_rule(
    rules: Iterable[AccessRuleData], resource: ResourceRef, requested: AccessType
) -> AccessRuleData | None:
    candidates = [rule for rule in rules if rule_applies(rule, resource, requested)]
    if not candidates:
        return None
    return min(candidates, key=_precedence)


def decide(
    rules: Iterable[AccessRuleData], resource: ResourceRef, requested: AccessType
) -> AccessDecision:
    winner = select_winning_rule(rules, resource, requested)
    if winner is None:
        return AccessDecision(allowed=False, reason=AccessDecision.REASON_NO_RULE)
    return AccessDecision(
        allowed=winner.is_allowed,
        reason=AccessDecision.REASON_RULE,
        rule_id=winner.id,
        rule_priority=winner.priority,
    )


class ResourceAccessEvaluator:
    def __init__(self, store: RuleStore, bypass_roles: Iterable[str] | None = None):
        self.store = store
        self.bypass_roles = frozenset(
            settings.bypass_roles if bypass_roles is None else bypass_roles
        )

    def is_bypass(self, principal: Principal) -> bool:
        return principal.is_active and bool(principal.roles & self.bypass_roles)

    async def load_rules(self, principal: Principal) -> list[AccessRuleData]:
        """Role-level rules plus the principal's own rules."""
        try:
            role_rules = await self.store.rules_for_roles(principal.roles)
            user_rules = await self.store.rules_for_user(principal.id)
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "rule_store_unavailable principal=%s", principal.id, exc_info=True
            )
            raise StoreUnavailableError() from exc
        return [*role_rules, *user_rules]

    async def evaluate(
        self, principal: Principal, resource: ResourceRef, requested: AccessType
    ) -> AccessDecision:
        if not principal.is_active:
            decision = AccessDecision(allowed=False, reason=AccessDecision.REASON_INACTIVE)
        elif self.is_bypass(principal):
            decision = AccessDecision(allowed=True, reason=AccessDecision.REASON_BYPASS)
        else:
            decision = decide(await self.load_rules(principal), resource, requested)

        logger.debug(
            "resource_decision principal=%s resource=%s connection=%s access=%s "
            "allowed=%s reason=%s rule=%s",
            principal.id,
            resource.describe(),
            resource.connection_id,
            requested.value,
            decision.allowed,
            decision.reason,
            decision.rule_id,
        )
        return decision

    async def is_allowed(
        self, principal: Principal, resource: ResourceRef, requested: AccessType
    ) -> bool:
        return (await self.evaluate(principal, resource, requested)).allowed

    async def check(
        self, principal: Principal, resource: ResourceRef, requested: AccessType
    ) -> None:
        """
        Raises:
            ResourceAccessDeniedError: Naming only the requested resource and access
        """
        decision = await self.evaluate(principal, resource, requested)
        if not decision.allowed:
            logger.warning(
                "resource_access_denied principal=%s resource=%s access=%s",
                principal.id,
                resource.describe(),
                requested.value,
            )
            raise ResourceAccessDeniedError(
                details={
                    "database": resource.database,
                    "table": resource.table,
                    "access_type": requested.value,
                }
            )

    async def filter_databases(
        self,
        principal: Principal,
        databases: Sequence[str],
        connection_id: uuid.UUID | None = None,
        requested: AccessType = AccessType.READ,
    ) -> list[str]:
        if not principal.is_active:
            return []
        if self.is_bypass(principal):
            return list(databases)
        rules = await self.load_rules(principal)
        if not rules:
            return []
        return [
            name
            for name in databases
            if decide(rules, ResourceRef(database=name, connection_id=connection_id), requested).allowed
        ]

    async def filter_tables(
        self,
        principal: Principal,
        database: str,
        tables: Sequence[str],
        connection_id: uuid.UUID | None = None,
        requested: AccessType = AccessType.READ,
    ) -> list[str]:
        if not principal.is_active:
            return []
        if self.is_bypass(principal):
            return list(tables)
        rules = await self.load_rules(principal)
        if not rules:
            return []
        return [
            table
            for table in tables
            if decide(
                rules,
                ResourceRef(database=database, table=table, connection_id=connection_id),
                requested,
            ).allowed
        ]
