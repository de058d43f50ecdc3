import re
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac_contract import AuditAction
from ...crud.data_access_rule import DataAccessRuleRepository
from ...crud.role import RoleRepository
from ...crud.session import SessionRepository
from ...crud.user import UserRepository
from ...domain.access import Principal
from ...domain.audit import ClientInfo
from ...domain.invariants import InvariantViolation, validate_single_role
from ...errors import ConflictError, NotFoundError, PermissionError, ValidationError
from ...models.user import User
from ...security.passwords import hash_password
from ..audit.audit_service import AuditService

USERNAME_RE = re.compile(r"^[a-z0-9_.-]{3,100}$")
MIN_PASSWORD_LENGTH = 8
UPDATABLE_FIELDS = frozenset({"email", "username", "display_name", "is_active", "password"})


def user_snapshot(user: User) -> dict[str, Any]:
    return {
        "email": user.email,
        "username": user.username,
        "display_name": user.display_name,
        "is_active": user.is_active,
    }


def _normalize_email(email: str) -> str:
    normalized = email.strip().lower()
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise ValidationError("Invalid email address")
    return normalized


def _normalize_username(username: str) -> str:
    normalized = username.strip().lower()
    if not USERNAME_RE.match(normalized):
        raise ValidationError(
            "Username must be 3-100 characters of letters, digits, '.', '_' or '-'"
        )
    return normalized


def _checked_password_hash(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    try:
        return hash_password(password)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


class UserService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.user_repo = UserRepository(session)
        self.role_repo = RoleRepository(session)
        self.session_repo = SessionRepository(session)
        self.rule_repo = DataAccessRuleRepository(session)
        self.audit = AuditService(session)

    async def get_user(self, user_id: uuid.UUID, *, include_deleted: bool = False) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None or (user.deleted_at is not None and not include_deleted):
            raise NotFoundError("User not found")
        return user

    async def get_user_roles(self, user_id: uuid.UUID) -> list[str]:
        return await self.user_repo.get_role_names(user_id)

    async def list_users(
        self,
        *,
        search: str | None = None,
        role_id: uuid.UUID | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[User], int]:
        return await self.user_repo.list_users(
            search=search, role_id=role_id, is_active=is_active, limit=limit, offset=offset
        )

    async def _resolve_role(self, role_ids: list[uuid.UUID], user_id: Any) -> uuid.UUID | None:
        try:
            role_id = validate_single_role(role_ids, user_id=user_id)
        except InvariantViolation as exc:
            raise ValidationError(str(exc), details={"invariant": exc.invariant}) from exc
        if role_id is not None and await self.role_repo.get_by_id(role_id) is None:
            raise NotFoundError("Role not found")
        return role_id

    async def create_user(
        self,
        *,
        email: str,
        username: str,
        password: str,
        display_name: str | None = None,
        role_ids: list[uuid.UUID] | None = None,
        is_active: bool = True,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> User:
        email = _normalize_email(email)
        username = _normalize_username(username)
        password_hash = _checked_password_hash(password)
        if await self.user_repo.get_by_email(email) is not None:
            raise ConflictError("Email already registered")
        if await self.user_repo.get_by_username(username) is not None:
            raise ConflictError("Username already taken")

        role_id = await self._resolve_role(role_ids or [], user_id=None)
        if role_id is None:
            default_role = await self.role_repo.get_default()
            role_id = default_role.id if default_role else None

        try:
            user = await self.user_repo.create(
                email=email,
                username=username,
                password_hash=password_hash,
                display_name=display_name,
                is_active=is_active,
                created_by=actor.id if actor else None,
            )
            if role_id is not None:
                await self.role_repo.assign_to_user(
                    user.id, role_id, granted_by=actor.id if actor else None
                )
            await self.audit.log_mutation(
                AuditAction.USER_CREATE.value,
                actor=actor,
                resource_type="user",
                resource_id=user.id,
                details={**user_snapshot(user), "role_id": str(role_id) if role_id else None},
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return user

    async def update_user(
        self,
        user_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        role_ids: list[uuid.UUID] | None = None,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> User:
        """Update profile fields; ``role_ids`` replaces the single role assignment."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError("Unsupported user fields", details={"fields": sorted(unknown)})

        user = await self.get_user(user_id)
        before = user_snapshot(user)
        values = dict(changes)
        if "email" in values:
            values["email"] = _normalize_email(values["email"])
            existing = await self.user_repo.get_by_email(values["email"])
            if existing is not None and existing.id != user.id:
                raise ConflictError("Email already registered")
        if "username" in values:
            values["username"] = _normalize_username(values["username"])
            existing = await self.user_repo.get_by_username(values["username"])
            if existing is not None and existing.id != user.id:
                raise ConflictError("Username already taken")
        if "password" in values:
            values["password_hash"] = _checked_password_hash(values.pop("password"))

        role_id = (
            await self._resolve_role(role_ids, user_id=user.id) if role_ids is not None else None
        )

        try:
            for field_name, value in values.items():
                setattr(user, field_name, value)
            user = await self.user_repo.update(user)
            if role_ids is not None:
                previous = await self.role_repo.get_user_roles(user.id)
                await self.role_repo.clear_user_roles(user.id)
                if role_id is not None:
                    await self.role_repo.assign_to_user(
                        user.id, role_id, granted_by=actor.id if actor else None
                    )
                await self.audit.log_mutation(
                    AuditAction.USER_ROLE_ASSIGN.value
                    if role_id is not None
                    else AuditAction.USER_ROLE_REVOKE.value,
                    actor=actor,
                    resource_type="user",
                    resource_id=user.id,
                    details={
                        "previous_roles": [r.name for r in previous],
                        "role_id": str(role_id) if role_id else None,
                    },
                    client=client,
                )
            if "password_hash" in values or values.get("is_active") is False:
                await self.session_repo.revoke_all_for_user(user.id)
            await self.audit.log_mutation(
                AuditAction.USER_UPDATE.value,
                actor=actor,
                resource_type="user",
                resource_id=user.id,
                details={
                    "before": before,
                    "after": user_snapshot(user),
                    "password_changed": "password_hash" in values,
                },
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return user

    async def delete_user(
        self,
        user_id: uuid.UUID,
        *,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> None:
        """Soft delete: deactivate, revoke sessions and drop the user's own rules."""
        user = await self.get_user(user_id)
        if user.is_system_user:
            raise PermissionError("System users cannot be deleted")
        if actor is not None and actor.id == user.id:
            raise ValidationError("Users cannot delete themselves")

        try:
            user.deleted_at = datetime.now(timezone.utc)
            user.is_active = False
            await self.user_repo.update(user)
            revoked = await self.session_repo.revoke_all_for_user(user.id)
            removed_rules = await self.rule_repo.delete_for_user(user.id)
            await self.audit.log_mutation(
                AuditAction.USER_DELETE.value,
                actor=actor,
                resource_type="user",
                resource_id=user.id,
                details={
                    **user_snapshot(user),
                    "revoked_sessions": revoked,
                    "removed_rules": removed_rules,
                },
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
