import uuid

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.enforcement import require_permission
from ..auth.rbac_contract import Permission, SystemRole
from ..crud.permission import PermissionRepository
from ..dependencies import client_info, get_db
from ..domain.access import Principal
from ..schemas.permission import PermissionCategory, PermissionResponse
from ..schemas.role import RoleCreate, RoleDetailResponse, RoleResponse, RoleUpdate
from ..services.admin.role_service import RoleService

router = APIRouter(prefix="/rbac", tags=["rbac-roles"])


@router.get("/roles", response_model=list[RoleResponse])
async def list_roles(
    _: Principal = Depends(require_permission(Permission.ROLES_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> list[RoleResponse]:
    roles = await RoleService(db).list_roles()
    return [RoleResponse.model_validate(role) for role in roles]


@router.get("/roles/{role_id}", response_model=RoleDetailResponse)
async def get_role(
    role_id: uuid.UUID,
    _: Principal = Depends(require_permission(Permission.ROLES_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> RoleDetailResponse:
    service = RoleService(db)
    role = await service.get_role(role_id)
    permissions = await service.get_role_permissions(role_id)
    return RoleDetailResponse(
        **RoleResponse.model_validate(role).model_dump(),
        permissions=[PermissionResponse.model_validate(p) for p in permissions],
    )


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreate,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.ROLES_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> RoleResponse:
    role = await RoleService(db).create_role(
        name=payload.name,
        display_name=payload.display_name,
        description=payload.description,
        permission_ids=payload.permission_ids,
        is_default=payload.is_default,
        actor=actor,
        client=client_info(request),
    )
    return RoleResponse.model_validate(role)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: uuid.UUID,
    payload: RoleUpdate,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.ROLES_UPDATE)),
    db: AsyncSession = Depends(get_db),
) -> RoleResponse:
    changes = payload.model_dump(exclude_unset=True, exclude={"permission_ids"})
    role = await RoleService(db).update_role(
        role_id,
        changes,
        permission_ids=payload.permission_ids,
        allow_system=SystemRole.SUPER_ADMIN.value in actor.roles,
        actor=actor,
        client=client_info(request),
    )
    return RoleResponse.model_validate(role)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: uuid.UUID,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.ROLES_DELETE)),
    db: AsyncSession = Depends(get_db),
) -> None:
    await RoleService(db).delete_role(role_id, actor=actor, client=client_info(request))


@router.get("/permissions", response_model=list[PermissionCategory])
async def list_permissions(
    _: Principal = Depends(require_permission(Permission.ROLES_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> list[PermissionCategory]:
    grouped: dict[str, list[PermissionResponse]] = {}
    for permission in await PermissionRepository(db).list_all():
        grouped.setdefault(permission.category, []).append(
            PermissionResponse.model_validate(permission)
        )
    return [
        PermissionCategory(category=category, permissions=permissions)
        for category, permissions in grouped.items()
    ]
