from fastapi import APIRouter, Depends, Request, status

from ..dependencies import (
    client_info,
    get_audit_port,
    get_current_principal,
    get_current_principal_optional,
    get_session_port,
    get_user_port,
)
from ..domain.access import Principal
from ..schemas.auth import (
    CurrentUserResponse,
    LogoutRequest,
    RefreshTokenRequest,
    TokenResponse,
    UserLogin,
)
from ..use_cases.auth.login_user import login_user
from ..use_cases.auth.logout_user import logout_all, logout_user
from ..use_cases.auth.refresh_session import refresh_session

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: UserLogin,
    request: Request,
    user_port=Depends(get_user_port),
    session_port=Depends(get_session_port),
    audit_port=Depends(get_audit_port),
) -> TokenResponse:
    client = client_info(request)
    tokens = await login_user(
        user_port,
        session_port,
        audit_port,
        payload.identifier,
        payload.password,
        client_ip=client.ip_address,
        user_agent=client.user_agent,
    )
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    payload: RefreshTokenRequest,
    request: Request,
    user_port=Depends(get_user_port),
    session_port=Depends(get_session_port),
    audit_port=Depends(get_audit_port),
) -> TokenResponse:
    client = client_info(request)
    tokens = await refresh_session(
        user_port,
        session_port,
        audit_port,
        payload.refresh_token,
        client_ip=client.ip_address,
        user_agent=client.user_agent,
    )
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    payload: LogoutRequest,
    request: Request,
    session_port=Depends(get_session_port),
    audit_port=Depends(get_audit_port),
    principal: Principal | None = Depends(get_current_principal_optional),
) -> None:
    client = client_info(request)
    if payload.all_sessions and principal is not None:
        await logout_all(
            session_port,
            audit_port,
            principal.id,
            client_ip=client.ip_address,
            user_agent=client.user_agent,
        )
        return
    await logout_user(
        session_port,
        audit_port,
        payload.refresh_token,
        user_id=principal.id if principal else None,
        session_id=principal.session_id if principal else None,
        client_ip=client.ip_address,
        user_agent=client.user_agent,
    )


@router.get("/me", response_model=CurrentUserResponse)
async def me(
    principal: Principal = Depends(get_current_principal),
    user_port=Depends(get_user_port),
) -> CurrentUserResponse:
    permissions = await user_port.get_permission_names(principal.id)
    return CurrentUserResponse(
        id=principal.id,
        email=principal.email,
        username=principal.username,
        display_name=principal.display_name,
        roles=sorted(principal.roles),
        permissions=sorted(permissions),
        session_id=principal.session_id,
    )
