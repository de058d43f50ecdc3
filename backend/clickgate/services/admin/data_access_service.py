import logging
import uuid
from dataclasses import replace
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac_contract import AuditAction
from ...crud.connection import ConnectionRepository
from ...crud.data_access_rule import DataAccessRuleRepository, to_rule_data
from ...crud.role import RoleRepository
from ...crud.user import UserRepository
from ...domain.access import (
    AccessDecision,
    AccessRuleData,
    AccessRuleSpec,
    AccessType,
    Principal,
    ResourceRef,
    RoleSubject,
    RuleSubject,
    UserSubject,
)
from ...domain.audit import ClientInfo
from ...domain.invariants import InvariantViolation, validate_rule_set, validate_rule_spec
from ...errors import InvalidRuleDefinitionError, NotFoundError
from ..access.evaluator import ResourceAccessEvaluator, order_rules
from ..audit.audit_service import AuditService
from ..principal_service import PrincipalService

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "connection_id",
    "database_pattern",
    "table_pattern",
    "access_type",
    "is_allowed",
    "priority",
    "description",
})


def _invalid(exc: InvariantViolation) -> InvalidRuleDefinitionError:
    return InvalidRuleDefinitionError(
        str(exc), details={"invariant": exc.invariant, **exc.details}
    )


def rule_snapshot(rule: AccessRuleData) -> dict[str, Any]:
    return {
        "subject_type": rule.subject.kind,
        "subject_id": str(
            rule.subject.role_id if isinstance(rule.subject, RoleSubject) else rule.subject.user_id
        ),
        "connection_id": str(rule.connection_id) if rule.connection_id else None,
        "database_pattern": rule.database_pattern,
        "table_pattern": rule.table_pattern,
        "access_type": rule.access_type.value,
        "is_allowed": rule.is_allowed,
        "priority": rule.priority,
    }


class DataAccessService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.rule_repo = DataAccessRuleRepository(session)
        self.role_repo = RoleRepository(session)
        self.user_repo = UserRepository(session)
        self.connection_repo = ConnectionRepository(session)
        self.audit = AuditService(session)

    async def _ensure_subject_exists(self, subject: RuleSubject) -> None:
        if isinstance(subject, RoleSubject):
            if await self.role_repo.get_by_id(subject.role_id) is None:
                raise NotFoundError("Role not found")
            return
        user = await self.user_repo.get_by_id(subject.user_id)
        if user is None or user.deleted_at is not None:
            raise NotFoundError("User not found")

    async def _ensure_connections_exist(self, specs: Sequence[AccessRuleSpec]) -> None:
        for connection_id in {s.connection_id for s in specs if s.connection_id is not None}:
            if await self.connection_repo.get_by_id(connection_id) is None:
                raise NotFoundError("Connection not found")

    async def _get_row(self, rule_id: uuid.UUID):
        row = await self.rule_repo.get_by_id(rule_id)
        if row is None:
            raise NotFoundError("Data access rule not found")
        return row

    async def create_rule(
        self,
        spec: AccessRuleSpec,
        *,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> AccessRuleData:
        try:
            validate_rule_spec(spec)
        except InvariantViolation as exc:
            raise _invalid(exc) from exc
        await self._ensure_subject_exists(spec.subject)
        await self._ensure_connections_exist([spec])

        try:
            row = await self.rule_repo.create(spec, created_by=actor.id if actor else None)
            rule = to_rule_data(row)
            await self.audit.log_mutation(
                AuditAction.DATA_ACCESS_CREATE.value,
                actor=actor,
                resource_type="data_access_rule",
                resource_id=rule.id,
                details=rule_snapshot(rule),
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return rule

    async def get_rule(self, rule_id: uuid.UUID) -> AccessRuleData:
        return to_rule_data(await self._get_row(rule_id))

    async def list_rules(
        self,
        *,
        role_id: uuid.UUID | None = None,
        user_id: uuid.UUID | None = None,
        connection_id: uuid.UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AccessRuleData], int]:
        rows, total = await self.rule_repo.list_rules(
            role_id=role_id,
            user_id=user_id,
            connection_id=connection_id,
            limit=limit,
            offset=offset,
        )
        return [to_rule_data(row) for row in rows], total

    async def update_rule(
        self,
        rule_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> AccessRuleData:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidRuleDefinitionError(
                "Unsupported rule fields", details={"fields": sorted(unknown)}
            )

        row = await self._get_row(rule_id)
        before = to_rule_data(row)
        if "access_type" in changes:
            try:
                changes = {**changes, "access_type": AccessType(changes["access_type"])}
            except ValueError as exc:
                raise InvalidRuleDefinitionError(
                    f"Invalid access_type {changes['access_type']!r}"
                ) from exc

        current = AccessRuleSpec(
            subject=before.subject,
            access_type=before.access_type,
            database_pattern=before.database_pattern,
            table_pattern=before.table_pattern,
            connection_id=before.connection_id,
            is_allowed=before.is_allowed,
            priority=before.priority,
            description=before.description,
        )
        updated = replace(current, **changes)
        try:
            validate_rule_spec(updated)
        except InvariantViolation as exc:
            raise _invalid(exc) from exc
        await self._ensure_connections_exist([updated])

        try:
            row.connection_id = updated.connection_id
            row.database_pattern = updated.database_pattern
            row.table_pattern = updated.table_pattern
            row.access_type = updated.access_type.value
            row.is_allowed = updated.is_allowed
            row.priority = updated.priority
            row.description = updated.description
            rule = to_rule_data(await self.rule_repo.update(row))
            await self.audit.log_mutation(
                AuditAction.DATA_ACCESS_UPDATE.value,
                actor=actor,
                resource_type="data_access_rule",
                resource_id=rule.id,
                details={"before": rule_snapshot(before), "after": rule_snapshot(rule)},
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return rule

    async def delete_rule(
        self,
        rule_id: uuid.UUID,
        *,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> None:
        row = await self._get_row(rule_id)
        before = to_rule_data(row)
        try:
            await self.rule_repo.delete(row)
            await self.audit.log_mutation(
                AuditAction.DATA_ACCESS_DELETE.value,
                actor=actor,
                resource_type="data_access_rule",
                resource_id=rule_id,
                details=rule_snapshot(before),
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def get_rules_for_role(self, role_id: uuid.UUID) -> list[AccessRuleData]:
        return order_rules(
            to_rule_data(row) for row in await self.rule_repo.list_for_role(role_id)
        )

    async def get_rules_for_user(self, user_id: uuid.UUID) -> list[AccessRuleData]:
        """The user's own rules plus every rule of the user's role."""
        user_rules = [to_rule_data(row) for row in await self.rule_repo.list_for_user(user_id)]
        role_rules: list[AccessRuleData] = []
        for role_id in await self.user_repo.get_role_ids(user_id):
            role_rules.extend(
                to_rule_data(row) for row in await self.rule_repo.list_for_role(role_id)
            )
        return order_rules([*user_rules, *role_rules])

    async def _replace_rules(
        self,
        subject: RuleSubject,
        specs: Sequence[AccessRuleSpec],
        *,
        actor: Principal | None,
        client: ClientInfo | None,
    ) -> list[AccessRuleData]:
        # The whole list is validated before anything is written.
        try:
            validated = validate_rule_set(specs, subject=subject)
        except InvariantViolation as exc:
            raise _invalid(exc) from exc
        await self._ensure_subject_exists(subject)
        await self._ensure_connections_exist(validated)

        created_by = actor.id if actor else None
        try:
            if isinstance(subject, RoleSubject):
                removed = await self.rule_repo.delete_for_role(subject.role_id)
                subject_id = subject.role_id
            else:
                removed = await self.rule_repo.delete_for_user(subject.user_id)
                subject_id = subject.user_id
            created = [
                to_rule_data(await self.rule_repo.create(spec, created_by=created_by))
                for spec in validated
            ]
            await self.audit.log_mutation(
                AuditAction.DATA_ACCESS_BULK_SET.value,
                actor=actor,
                resource_type=subject.kind,
                resource_id=subject_id,
                details={"removed": removed, "created": len(created)},
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "rules_replaced subject=%s:%s removed=%s created=%s",
            subject.kind,
            subject_id,
            removed,
            len(created),
        )
        return created

    async def set_rules_for_role(
        self,
        role_id: uuid.UUID,
        specs: Sequence[AccessRuleSpec],
        *,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> list[AccessRuleData]:
        return await self._replace_rules(
            RoleSubject(role_id=role_id), specs, actor=actor, client=client
        )

    async def set_rules_for_user(
        self,
        user_id: uuid.UUID,
        specs: Sequence[AccessRuleSpec],
        *,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> list[AccessRuleData]:
        return await self._replace_rules(
            UserSubject(user_id=user_id), specs, actor=actor, client=client
        )

    async def check_access(
        self,
        user_id: uuid.UUID,
        resource: ResourceRef,
        requested: AccessType,
    ) -> AccessDecision:
        """Evaluate on behalf of any user, for the admin UI."""
        principal = await PrincipalService(self.session).load(user_id)
        if principal is None:
            raise NotFoundError("User not found")
        return await ResourceAccessEvaluator(self.rule_repo).evaluate(
            principal, resource, requested
        )
