import logging
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .auth.rbac_contract import AuditAction
from .crud.data_access_rule import DataAccessRuleRepository
from .crud.permission import PermissionRepository
from .crud.session import SessionRepository
from .crud.user import UserRepository
from .database import get_session
from .domain.access import Principal
from .domain.audit import ClientInfo
from .domain.ports.audit import AuditPort
from .domain.ports.session import SessionPort
from .domain.ports.user import UserPort
from .errors import AuthError, ValidationError
from .security.tokens import InvalidTokenError, TokenClaims, verify_access_token
from .services.access.evaluator import ResourceAccessEvaluator
from .services.admin.permission_service import PermissionResolver
from .services.audit.audit_service import IsolatedAuditSink, failure_event
from .services.principal_service import PrincipalService
from .use_cases.auth.session_tokens import is_session_usable

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_FORWARDED_IP_HEADERS = ("x-real-ip", "cf-connecting-ip")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_user_port(db: AsyncSession = Depends(get_db)) -> UserPort:
    return UserRepository(db)


def get_session_port(db: AsyncSession = Depends(get_db)) -> SessionPort:
    return SessionRepository(db)


def get_audit_port() -> AuditPort:
    return IsolatedAuditSink()


def get_permission_resolver(db: AsyncSession = Depends(get_db)) -> PermissionResolver:
    return PermissionResolver(PermissionRepository(db))


def get_access_evaluator(db: AsyncSession = Depends(get_db)) -> ResourceAccessEvaluator:
    return ResourceAccessEvaluator(DataAccessRuleRepository(db))


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    for header in _FORWARDED_IP_HEADERS:
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()
    return request.client.host if request.client else None


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


async def _record_rejection(
    request: Request,
    audit_port: AuditPort,
    reason: str,
    **details: str,
) -> None:
    await audit_port.record(
        failure_event(
            AuditAction.LOGIN_FAILED.value,
            error_message=f"Access token rejected: {reason}",
            client=client_info(request),
            details={"reason": reason, "path": request.url.path, **details},
        )
    )


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str | None:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return credentials.credentials or None


async def get_token_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    audit_port: AuditPort = Depends(get_audit_port),
) -> TokenClaims:
    token = _bearer_token(credentials)
    if token is None:
        await _record_rejection(request, audit_port, "missing")
        raise AuthError("Not authenticated", details={"reason": "missing"})

    try:
        return verify_access_token(token)
    except InvalidTokenError as exc:
        await _record_rejection(request, audit_port, exc.reason)
        raise AuthError("Invalid or expired token", details={"reason": exc.reason}) from None


async def get_token_claims_optional(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    audit_port: AuditPort = Depends(get_audit_port),
) -> TokenClaims | None:
    """Claims when a usable token is sent; a rejected token is audited and yields None."""
    token = _bearer_token(credentials)
    if token is None:
        return None
    try:
        return verify_access_token(token)
    except InvalidTokenError as exc:
        await _record_rejection(request, audit_port, exc.reason)
        return None


class UnusableSessionError(AuthError):
    def __init__(self, message: str, reason: str):
        super().__init__(message, details={"reason": reason})
        self.reason = reason


async def _principal_from_claims(db: AsyncSession, claims: TokenClaims) -> Principal:
    if claims.session_id is None:
        raise UnusableSessionError("Session not found", "session_missing")
    stored = await SessionRepository(db).get_by_id(claims.session_id)
    if stored is None or stored.user_id != claims.principal_id:
        raise UnusableSessionError("Session not found", "session_missing")
    if not is_session_usable(stored, datetime.now(timezone.utc)):
        raise UnusableSessionError("Session revoked or expired", "session_revoked")

    principal = await PrincipalService(db).load(
        claims.principal_id,
        session_id=claims.session_id,
        permission_snapshot=claims.permission_snapshot,
    )
    if principal is None or not principal.is_active:
        raise UnusableSessionError("User not found or inactive", "inactive")
    return principal


async def get_current_principal(
    request: Request,
    claims: TokenClaims = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
    audit_port: AuditPort = Depends(get_audit_port),
) -> Principal:
    try:
        return await _principal_from_claims(db, claims)
    except UnusableSessionError as exc:
        await _record_rejection(
            request, audit_port, exc.reason, principal_id=str(claims.principal_id)
        )
        raise


async def get_current_principal_optional(
    request: Request,
    claims: TokenClaims | None = Depends(get_token_claims_optional),
    db: AsyncSession = Depends(get_db),
    audit_port: AuditPort = Depends(get_audit_port),
) -> Principal | None:
    if claims is None:
        return None
    try:
        return await _principal_from_claims(db, claims)
    except UnusableSessionError as exc:
        await _record_rejection(
            request, audit_port, exc.reason, principal_id=str(claims.principal_id)
        )
        return None


def parse_uuid_param(value: str | None, name: str) -> uuid.UUID | None:
    if value is None or value == "":
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}") from None
