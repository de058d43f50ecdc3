import re
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.rbac_contract import CUSTOM_ROLE_PRIORITY, AuditAction
from ...crud.permission import PermissionRepository
from ...crud.role import RoleRepository
from ...domain.access import Principal
from ...domain.audit import ClientInfo
from ...errors import ConflictError, NotFoundError, PermissionError, ValidationError
from ...models.permission import Permission
from ...models.role import Role
from ..audit.audit_service import AuditService

ROLE_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{0,99}$")
UPDATABLE_FIELDS = frozenset({"display_name", "description", "is_default"})


def normalize_role_name(name: str) -> str:
    normalized = re.sub(r"\s+", "_", name.strip().lower())
    if not ROLE_NAME_RE.match(normalized):
        raise ValidationError(
            "Role name must start with a letter and contain only letters, digits and underscores"
        )
    return normalized


def role_snapshot(role: Role) -> dict[str, Any]:
    return {
        "name": role.name,
        "display_name": role.display_name,
        "description": role.description,
        "is_default": role.is_default,
        "priority": role.priority,
    }


class RoleService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.role_repo = RoleRepository(session)
        self.permission_repo = PermissionRepository(session)
        self.audit = AuditService(session)

    async def list_roles(self) -> list[Role]:
        return await self.role_repo.list_all()

    async def get_role(self, role_id: uuid.UUID) -> Role:
        role = await self.role_repo.get_by_id(role_id)
        if role is None:
            raise NotFoundError("Role not found")
        return role

    async def get_role_permissions(self, role_id: uuid.UUID) -> list[Permission]:
        await self.get_role(role_id)
        return await self.permission_repo.get_role_permissions(role_id)

    async def _resolve_permission_ids(self, permission_ids: list[uuid.UUID]) -> list[uuid.UUID]:
        unique = list(dict.fromkeys(permission_ids))
        found = await self.permission_repo.get_by_ids(unique)
        missing = set(unique) - {p.id for p in found}
        if missing:
            raise ValidationError(
                "Unknown permission ids", details={"permission_ids": sorted(str(m) for m in missing)}
            )
        return unique

    async def create_role(
        self,
        *,
        name: str,
        display_name: str,
        description: str | None = None,
        permission_ids: list[uuid.UUID] | None = None,
        is_default: bool = False,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> Role:
        normalized = normalize_role_name(name)
        if await self.role_repo.get_by_name(normalized) is not None:
            raise ConflictError("Role name already exists")
        resolved = await self._resolve_permission_ids(permission_ids or [])

        try:
            if is_default:
                await self.role_repo.clear_default()
            role = await self.role_repo.create(
                normalized,
                display_name,
                description,
                is_system=False,
                is_default=is_default,
                priority=CUSTOM_ROLE_PRIORITY,
            )
            await self.role_repo.replace_permissions(role.id, resolved)
            await self.audit.log_mutation(
                AuditAction.ROLE_CREATE.value,
                actor=actor,
                resource_type="role",
                resource_id=role.id,
                details={**role_snapshot(role), "permission_count": len(resolved)},
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return role

    async def update_role(
        self,
        role_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        permission_ids: list[uuid.UUID] | None = None,
        allow_system: bool = False,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> Role:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError("Unsupported role fields", details={"fields": sorted(unknown)})

        role = await self.get_role(role_id)
        if role.is_system and not allow_system:
            raise PermissionError(
                "System roles cannot be modified", details={"role": role.name}
            )
        resolved = (
            await self._resolve_permission_ids(permission_ids)
            if permission_ids is not None
            else None
        )
        before = role_snapshot(role)

        try:
            if changes.get("is_default") is True:
                await self.role_repo.clear_default(except_role_id=role.id)
            for field_name, value in changes.items():
                setattr(role, field_name, value)
            role = await self.role_repo.update(role)
            if resolved is not None:
                await self.role_repo.replace_permissions(role.id, resolved)
            await self.audit.log_mutation(
                AuditAction.ROLE_UPDATE.value,
                actor=actor,
                resource_type="role",
                resource_id=role.id,
                details={
                    "before": before,
                    "after": role_snapshot(role),
                    "permissions_replaced": resolved is not None,
                },
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return role

    async def delete_role(
        self,
        role_id: uuid.UUID,
        *,
        actor: Principal | None = None,
        client: ClientInfo | None = None,
    ) -> None:
        """Delete a custom role; links, assignments and its rules cascade."""
        role = await self.get_role(role_id)
        if role.is_system:
            raise PermissionError("System roles cannot be deleted", details={"role": role.name})
        before = role_snapshot(role)
        assigned_users = await self.role_repo.count_users(role.id)

        try:
            await self.role_repo.delete(role)
            await self.audit.log_mutation(
                AuditAction.ROLE_DELETE.value,
                actor=actor,
                resource_type="role",
                resource_id=role_id,
                details={**before, "assigned_users": assigned_users},
                client=client,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
