import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.enforcement import require_permission
from ..auth.rbac_contract import Permission
from ..dependencies import client_info, get_db
from ..domain.access import Principal
from ..models.user import User
from ..schemas.user import (
    UserCreate,
    UserListResponse,
    UserResponse,
    UserRoleAssignment,
    UserUpdate,
)
from ..services.admin.user_service import UserService

router = APIRouter(prefix="/rbac/users", tags=["rbac-users"])


async def _to_response(service: UserService, user: User) -> UserResponse:
    roles = await service.get_user_roles(user.id)
    return UserResponse.model_validate(user).model_copy(update={"roles": roles})


@router.get("", response_model=UserListResponse)
async def list_users(
    search: str | None = Query(None, max_length=255),
    role_id: uuid.UUID | None = None,
    is_active: bool | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _: Principal = Depends(require_permission(Permission.USERS_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    service = UserService(db)
    users, total = await service.list_users(
        search=search, role_id=role_id, is_active=is_active, limit=limit, offset=offset
    )
    return UserListResponse(
        items=[await _to_response(service, user) for user in users],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    _: Principal = Depends(require_permission(Permission.USERS_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    service = UserService(db)
    return await _to_response(service, await service.get_user(user_id))


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.USERS_CREATE)),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    service = UserService(db)
    user = await service.create_user(
        email=payload.email,
        username=payload.username,
        password=payload.password,
        display_name=payload.display_name,
        role_ids=payload.role_ids,
        is_active=payload.is_active,
        actor=actor,
        client=client_info(request),
    )
    return await _to_response(service, user)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.USERS_UPDATE)),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    service = UserService(db)
    user = await service.update_user(
        user_id,
        payload.model_dump(exclude_unset=True),
        actor=actor,
        client=client_info(request),
    )
    return await _to_response(service, user)


@router.post("/{user_id}/assign-roles", response_model=UserResponse)
async def assign_roles(
    user_id: uuid.UUID,
    payload: UserRoleAssignment,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.ROLES_ASSIGN)),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    service = UserService(db)
    user = await service.update_user(
        user_id,
        {},
        role_ids=payload.role_ids,
        actor=actor,
        client=client_info(request),
    )
    return await _to_response(service, user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: uuid.UUID,
    request: Request,
    actor: Principal = Depends(require_permission(Permission.USERS_DELETE)),
    db: AsyncSession = Depends(get_db),
) -> None:
    await UserService(db).delete_user(user_id, actor=actor, client=client_info(request))
