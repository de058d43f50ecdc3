"""
FastAPI dependencies enforcing functional permissions and data access.

Every denial is written to the audit sink in its own session (best effort)
before the error is raised, so it survives the request's rollback.
"""
from typing import Awaitable, Callable, Iterable

from fastapi import Depends, Request

from ..dependencies import (
    client_info,
    get_access_evaluator,
    get_audit_port,
    get_current_principal,
    get_permission_resolver,
    parse_uuid_param,
)
from ..domain.access import AccessType, Principal, ResourceRef
from ..domain.ports.audit import AuditPort
from ..errors import PermissionError, ResourceAccessDeniedError, ValidationError
from ..services.access.evaluator import ResourceAccessEvaluator
from ..services.admin.permission_service import PermissionResolver
from ..services.audit.audit_service import failure_event
from . import rbac_contract
from .rbac_contract import AuditAction

PermissionCheck = Callable[[PermissionResolver, Principal], Awaitable[bool]]


def _check_catalogue(permissions: Iterable[str]) -> list[str]:
    names = [str(getattr(p, "value", p)) for p in permissions]
    if not names:
        raise ValueError("At least one permission is required")
    for name in names:
        rbac_contract.validate_permission(name)
    return names


def _permission_dependency(names: list[str], check: PermissionCheck, mode: str) -> Callable:
    async def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        resolver: PermissionResolver = Depends(get_permission_resolver),
        audit_port: AuditPort = Depends(get_audit_port),
    ) -> Principal:
        if await check(resolver, principal):
            return principal

        await audit_port.record(
            failure_event(
                AuditAction.PERMISSION_DENIED.value,
                error_message="Permission denied",
                principal=principal,
                client=client_info(request),
                resource_type="permission",
                resource_id=",".join(names),
                details={
                    "required_permissions": names,
                    "mode": mode,
                    "request_method": request.method,
                    "request_path": request.url.path,
                },
            )
        )
        if len(names) == 1:
            raise PermissionError(
                f"Permission denied: {names[0]} required",
                details={"permission": names[0]},
            )
        raise PermissionError(
            f"Permission denied: requires {mode} of {names}",
            details={"permissions": names},
        )

    return dependency


def require_permission(permission: str) -> Callable:
    """Dependency allowing the request only when the principal holds ``permission``.

    Unknown permission names fail at import time, not per request.
    """
    names = _check_catalogue([permission])

    async def check(resolver: PermissionResolver, principal: Principal) -> bool:
        return await resolver.has_permission(principal, names[0])

    return _permission_dependency(names, check, "all")


def require_any_permission(*permissions: str) -> Callable:
    names = _check_catalogue(permissions)

    async def check(resolver: PermissionResolver, principal: Principal) -> bool:
        return await resolver.has_any_permission(principal, names)

    return _permission_dependency(names, check, "any")


def require_all_permissions(*permissions: str) -> Callable:
    names = _check_catalogue(permissions)

    async def check(resolver: PermissionResolver, principal: Principal) -> bool:
        return await resolver.has_all_permissions(principal, names)

    return _permission_dependency(names, check, "all")


def _request_value(request: Request, name: str) -> str | None:
    value = request.path_params.get(name)
    if value is None:
        value = request.query_params.get(name)
    return value or None


def resource_from_request(request: Request) -> ResourceRef:
    database = _request_value(request, "database")
    if database is None:
        raise ValidationError("database is required")
    return ResourceRef(
        database=database,
        table=_request_value(request, "table"),
        connection_id=parse_uuid_param(_request_value(request, "connection_id"), "connection_id"),
    )


def require_resource_access(access_type: AccessType) -> Callable:
    """Dependency evaluating the ``(connection_id, database, table)`` named by the request."""

    async def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        evaluator: ResourceAccessEvaluator = Depends(get_access_evaluator),
        audit_port: AuditPort = Depends(get_audit_port),
    ) -> ResourceRef:
        resource = resource_from_request(request)
        try:
            await evaluator.check(principal, resource, access_type)
        except ResourceAccessDeniedError:
            await audit_port.record(
                failure_event(
                    AuditAction.DATA_ACCESS_DENIED.value,
                    error_message="Resource access denied",
                    principal=principal,
                    client=client_info(request),
                    resource_type="resource",
                    resource_id=resource.describe(),
                    details={
                        "connection_id": str(resource.connection_id)
                        if resource.connection_id
                        else None,
                        "access_type": access_type.value,
                        "request_path": request.url.path,
                    },
                )
            )
            raise
        return resource

    return dependency
