import logging
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError

from ...auth import rbac_contract
from ...domain.access import Principal
from ...domain.ports.rules import PermissionStore
from ...errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class PermissionResolver:
    """Answers functional permission checks for a principal.

    The token snapshot is only ever used to short-circuit an allow. When a
    permission is missing from the snapshot the store is asked, so a grant
    made after the token was issued takes effect immediately. A store
    failure raises StoreUnavailableError; it is never read as an allow.
    """

    def __init__(self, store: PermissionStore):
        self.store = store

    @staticmethod
    def _is_known(permission: str) -> bool:
        try:
            rbac_contract.validate_permission(permission)
        except ValueError:
            return False
        return True

    async def _store_has_permission(self, principal: Principal, permission: str) -> bool:
        try:
            granted = await self.store.user_has_permission(principal.id, permission)
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "permission_store_unavailable principal=%s permission=%s",
                principal.id,
                permission,
                exc_info=True,
            )
            raise StoreUnavailableError() from exc
        logger.debug(
            "permission_slow_path principal=%s permission=%s granted=%s",
            principal.id,
            permission,
            granted,
        )
        return granted

    async def _store_permissions(self, principal: Principal) -> set[str]:
        try:
            return await self.store.get_user_permissions(principal.id)
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "permission_store_unavailable principal=%s", principal.id, exc_info=True
            )
            raise StoreUnavailableError() from exc

    async def has_permission(self, principal: Principal | None, permission: str) -> bool:
        if principal is None or not principal.is_active:
            return False
        if not self._is_known(permission):
            return False
        if permission in principal.permission_snapshot:
            return True
        return await self._store_has_permission(principal, permission)

    async def has_any_permission(
        self, principal: Principal | None, permissions: Iterable[str]
    ) -> bool:
        if principal is None or not principal.is_active:
            return False
        known = [p for p in permissions if self._is_known(p)]
        if not known:
            return False
        if any(p in principal.permission_snapshot for p in known):
            return True
        granted = await self._store_permissions(principal)
        logger.debug(
            "permission_slow_path principal=%s permissions=%s", principal.id, known
        )
        return any(p in granted for p in known)

    async def has_all_permissions(
        self, principal: Principal | None, permissions: Iterable[str]
    ) -> bool:
        if principal is None or not principal.is_active:
            return False
        required = list(permissions)
        if not required or not all(self._is_known(p) for p in required):
            return False
        missing = [p for p in required if p not in principal.permission_snapshot]
        if not missing:
            return True
        granted = await self._store_permissions(principal)
        logger.debug(
            "permission_slow_path principal=%s permissions=%s", principal.id, missing
        )
        return all(p in granted for p in missing)
