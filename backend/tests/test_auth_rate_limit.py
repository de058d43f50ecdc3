import pytest

from clickgate.application.auth_rate_limit import (
    AUTH_RATE_LIMIT_MAX_ATTEMPTS,
    SoftRateLimiter,
    check_login_rate_limit,
    check_refresh_rate_limit,
    record_login_failure,
    record_refresh_failure,
    reset_login_limit,
    reset_refresh_limit,
)
from clickgate.errors import RateLimitError


def test_limiter_window_slides() -> None:
    limiter = SoftRateLimiter(max_attempts=2, window_seconds=10)

    limiter.record_failure("k", now=100.0)
    limiter.record_failure("k", now=101.0)
    assert limiter.is_limited("k", now=105.0)
    assert not limiter.is_limited("k", now=111.5)


def test_reset_clears_key() -> None:
    limiter = SoftRateLimiter(max_attempts=1, window_seconds=60)
    limiter.record_failure("k")
    assert limiter.is_limited("k")

    limiter.reset("k")

    assert not limiter.is_limited("k")


def test_login_limit_is_per_identifier_and_ip() -> None:
    key = check_login_rate_limit("Ana@Example.com", "1.2.3.4")
    for _ in range(AUTH_RATE_LIMIT_MAX_ATTEMPTS):
        record_login_failure(key)

    with pytest.raises(RateLimitError) as exc_info:
        check_login_rate_limit(" ana@example.com ", "1.2.3.4")
    assert exc_info.value.status_code == 429
    assert exc_info.value.details == {"retry_after_seconds": 60}

    check_login_rate_limit("ana@example.com", "5.6.7.8")
    check_login_rate_limit("bo@example.com", "1.2.3.4")

    reset_login_limit(key)
    check_login_rate_limit("ana@example.com", "1.2.3.4")


def test_refresh_limit_key_is_scoped() -> None:
    refresh_key = check_refresh_rate_limit("token-a", "1.2.3.4")
    login_key = check_login_rate_limit("token-a", "1.2.3.4")
    assert refresh_key != login_key


def test_refresh_limit_is_per_token_behind_a_shared_address() -> None:
    key = check_refresh_rate_limit("stolen-token", "10.0.0.1")
    for _ in range(AUTH_RATE_LIMIT_MAX_ATTEMPTS):
        record_refresh_failure(key)

    with pytest.raises(RateLimitError):
        check_refresh_rate_limit("stolen-token", "10.0.0.1")
    check_refresh_rate_limit("colleague-token", "10.0.0.1")

    reset_refresh_limit(key)
    check_refresh_rate_limit("stolen-token", "10.0.0.1")


def test_refresh_key_does_not_contain_the_token() -> None:
    assert "secret-refresh" not in check_refresh_rate_limit("secret-refresh", "1.2.3.4")


def test_identifier_is_required() -> None:
    with pytest.raises(ValueError):
        check_login_rate_limit("   ", "1.2.3.4")
