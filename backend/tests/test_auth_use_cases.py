import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from clickgate.application.auth_rate_limit import AUTH_RATE_LIMIT_MAX_ATTEMPTS
from clickgate.auth.rbac_contract import AuditAction
from clickgate.domain.audit import STATUS_FAILURE, AuditEvent
from clickgate.errors import AuthError, RateLimitError
from clickgate.security.passwords import hash_password, hash_refresh_token
from clickgate.security.tokens import verify_access_token
from clickgate.use_cases.auth.login_user import login_user
from clickgate.use_cases.auth.logout_user import logout_all, logout_user
from clickgate.use_cases.auth.refresh_session import refresh_session

PASSWORD = "correct-horse"
PASSWORD_HASH = hash_password(PASSWORD)


@dataclass
class FakeUser:
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    email: str = "ana@example.com"
    username: str = "ana"
    password_hash: str = PASSWORD_HASH
    display_name: str | None = None
    is_active: bool = True
    deleted_at: datetime | None = None


@dataclass
class FakeSession:
    user_id: uuid.UUID
    refresh_token_hash: str
    expires_at: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    revoked_at: datetime | None = None


class FakeUserPort:
    def __init__(self, user: FakeUser | None = None, roles=("analyst",), permissions=()):
        self.user = user
        self.roles = list(roles)
        self.permissions = set(permissions)
        self.logins: list[uuid.UUID] = []

    async def get_by_id(self, user_id):
        return self.user if self.user and self.user.id == user_id else None

    async def get_by_identifier(self, identifier):
        if self.user and identifier.strip().lower() in {self.user.email, self.user.username}:
            return self.user
        return None

    async def get_role_names(self, user_id):
        return self.roles

    async def get_permission_names(self, user_id):
        return self.permissions

    async def mark_login(self, user_id, when):
        self.logins.append(user_id)


class FakeSessionPort:
    def __init__(self, *sessions: FakeSession) -> None:
        self.sessions = {s.id: s for s in sessions}
        self.committed = False
        self.rolled_back = False

    async def create(self, user_id, refresh_token_hash, expires_at, *, ip_address=None, user_agent=None):
        stored = FakeSession(user_id=user_id, refresh_token_hash=refresh_token_hash, expires_at=expires_at)
        self.sessions[stored.id] = stored
        return stored

    async def get_by_hash(self, refresh_token_hash, *, for_update=False):
        for stored in self.sessions.values():
            if stored.refresh_token_hash == refresh_token_hash:
                return stored
        return None

    async def get_by_id(self, session_id):
        return self.sessions.get(session_id)

    async def revoke(self, session_id):
        stored = self.sessions.get(session_id)
        if stored is not None and stored.revoked_at is None:
            stored.revoked_at = datetime.now(timezone.utc)
        return stored

    async def revoke_all_for_user(self, user_id):
        count = 0
        for stored in self.sessions.values():
            if stored.user_id == user_id and stored.revoked_at is None:
                stored.revoked_at = datetime.now(timezone.utc)
                count += 1
        return count

    async def commit(self):
        self.committed = True

    async def rollback(self):
        self.rolled_back = True


class FakeAuditPort:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    @property
    def actions(self) -> list[str]:
        return [event.action for event in self.events]


def stored_session(user: FakeUser, token: str, **kwargs) -> FakeSession:
    return FakeSession(
        user_id=user.id,
        refresh_token_hash=hash_refresh_token(token),
        expires_at=kwargs.pop("expires_at", datetime.now(timezone.utc) + timedelta(days=1)),
        **kwargs,
    )


@pytest.mark.anyio
async def test_login_issues_tokens_with_snapshot() -> None:
    user = FakeUser()
    user_port = FakeUserPort(user, permissions={"table:select"})
    session_port = FakeSessionPort()
    audit = FakeAuditPort()

    tokens = await login_user(
        user_port, session_port, audit, "ANA@example.com ", PASSWORD, client_ip="10.0.0.1"
    )

    claims = verify_access_token(tokens.access_token)
    assert claims.principal_id == user.id
    assert claims.roles == ("analyst",)
    assert claims.permission_snapshot == frozenset({"table:select"})
    assert claims.session_id == tokens.session_id
    stored = session_port.sessions[tokens.session_id]
    assert stored.refresh_token_hash == hash_refresh_token(tokens.refresh_token)
    assert session_port.committed is True
    assert user_port.logins == [user.id]
    assert audit.actions == [AuditAction.LOGIN.value]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "user, password",
    [
        (None, PASSWORD),
        (FakeUser(), "wrong-password"),
        (FakeUser(is_active=False), PASSWORD),
        (FakeUser(deleted_at=datetime.now(timezone.utc)), PASSWORD),
    ],
)
async def test_login_failures_look_identical(user, password) -> None:
    session_port = FakeSessionPort()
    audit = FakeAuditPort()

    with pytest.raises(AuthError) as exc_info:
        await login_user(FakeUserPort(user), session_port, audit, "ana", password)

    assert exc_info.value.message == "Invalid credentials"
    assert session_port.sessions == {}
    assert audit.events[0].action == AuditAction.LOGIN_FAILED.value
    assert audit.events[0].status == STATUS_FAILURE
    assert audit.events[0].details == {"identifier": "ana"}


@pytest.mark.anyio
async def test_login_is_rate_limited_after_repeated_failures() -> None:
    user_port = FakeUserPort(FakeUser())
    audit = FakeAuditPort()
    for _ in range(AUTH_RATE_LIMIT_MAX_ATTEMPTS):
        with pytest.raises(AuthError):
            await login_user(user_port, FakeSessionPort(), audit, "ana", "nope", client_ip="1.2.3.4")

    with pytest.raises(RateLimitError):
        await login_user(user_port, FakeSessionPort(), audit, "ana", PASSWORD, client_ip="1.2.3.4")

    # Another address is not affected.
    await login_user(user_port, FakeSessionPort(), audit, "ana", PASSWORD, client_ip="5.6.7.8")


@pytest.mark.anyio
async def test_refresh_rotates_session() -> None:
    user = FakeUser()
    old = stored_session(user, "old-token")
    session_port = FakeSessionPort(old)
    audit = FakeAuditPort()

    tokens = await refresh_session(FakeUserPort(user), session_port, audit, "old-token")

    assert old.revoked_at is not None
    assert tokens.session_id != old.id
    assert session_port.sessions[tokens.session_id].revoked_at is None
    assert session_port.committed is True
    assert audit.events[-1].action == AuditAction.TOKEN_REFRESH.value
    assert audit.events[-1].details == {"previous_session_id": str(old.id)}


@pytest.mark.anyio
@pytest.mark.parametrize(
    "session_kwargs, user_kwargs",
    [
        ({"revoked_at": datetime.now(timezone.utc)}, {}),
        ({"expires_at": datetime.now(timezone.utc) - timedelta(seconds=1)}, {}),
        ({}, {"is_active": False}),
    ],
)
async def test_refresh_rejects_unusable_sessions(session_kwargs, user_kwargs) -> None:
    user = FakeUser(**user_kwargs)
    session_port = FakeSessionPort(stored_session(user, "token", **session_kwargs))
    audit = FakeAuditPort()

    with pytest.raises(AuthError):
        await refresh_session(FakeUserPort(user), session_port, audit, "token")

    assert session_port.rolled_back is True
    assert session_port.committed is False
    assert audit.events == []


@pytest.mark.anyio
async def test_refresh_with_unknown_token_is_rejected() -> None:
    session_port = FakeSessionPort()
    with pytest.raises(AuthError):
        await refresh_session(FakeUserPort(FakeUser()), session_port, FakeAuditPort(), "missing")
    assert session_port.rolled_back is True


@pytest.mark.anyio
async def test_refreshed_token_cannot_be_reused() -> None:
    user = FakeUser()
    session_port = FakeSessionPort(stored_session(user, "once"))
    user_port = FakeUserPort(user)

    await refresh_session(user_port, session_port, FakeAuditPort(), "once")
    with pytest.raises(AuthError):
        await refresh_session(user_port, session_port, FakeAuditPort(), "once")


@pytest.mark.anyio
async def test_logout_revokes_own_session() -> None:
    user = FakeUser()
    stored = stored_session(user, "token")
    session_port = FakeSessionPort(stored)
    audit = FakeAuditPort()

    await logout_user(session_port, audit, "token", user_id=user.id)

    assert stored.revoked_at is not None
    assert session_port.committed is True
    assert audit.actions == [AuditAction.LOGOUT.value]


@pytest.mark.anyio
async def test_logout_ignores_another_users_token() -> None:
    owner = FakeUser()
    caller = FakeUser(email="bo@example.com", username="bo")
    foreign = stored_session(owner, "foreign")
    own = FakeSession(
        user_id=caller.id,
        refresh_token_hash=hash_refresh_token("own"),
        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
    )
    session_port = FakeSessionPort(foreign, own)

    await logout_user(
        session_port, FakeAuditPort(), "foreign", user_id=caller.id, session_id=own.id
    )

    assert foreign.revoked_at is None
    assert own.revoked_at is not None


@pytest.mark.anyio
async def test_logout_without_anything_to_revoke_is_a_no_op() -> None:
    session_port = FakeSessionPort()
    audit = FakeAuditPort()

    await logout_user(session_port, audit, None)

    assert session_port.committed is False
    assert audit.events == []


@pytest.mark.anyio
async def test_logout_all_revokes_every_session() -> None:
    user = FakeUser()
    sessions = [stored_session(user, f"t{i}") for i in range(3)]
    session_port = FakeSessionPort(*sessions)
    audit = FakeAuditPort()

    revoked = await logout_all(session_port, audit, user.id)

    assert revoked == 3
    assert all(s.revoked_at is not None for s in sessions)
    assert audit.events[0].details == {"revoked_sessions": 3}
