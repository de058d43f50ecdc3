import json
import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()

SUPPORTED_DATABASE_SCHEMES = frozenset({"postgresql+asyncpg", "sqlite+aiosqlite"})
SUPPORTED_JWT_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})
MIN_SECRET_KEY_LENGTH = 32


def _parse_list(name: str, raw: str) -> list[str]:
    """Parse a CSV or JSON-array environment value into a list of strings."""
    if raw.startswith("["):
        try:
            parsed_list = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{name} JSON is malformed: {exc}") from exc
        if not isinstance(parsed_list, list):
            raise ValueError(f"{name} JSON must be an array")
        return [
            item.strip() for item in parsed_list if isinstance(item, str) and item.strip()
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


class Settings(BaseModel):
    app_name: str = Field(default="ClickGate")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    database_url: str = Field(default="")
    auto_create_schema: bool = Field(default=False)
    allowed_origins: list[str] = Field(default_factory=list)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    secret_key: str | None = Field(default=None)
    algorithm: str = Field(default="HS256")
    jwt_issuer: str = Field(default="clickgate")
    jwt_audience: str = Field(default="clickgate-client")
    access_token_expire_minutes: int = Field(default=15)
    refresh_token_expire_days: int = Field(default=7)
    bypass_roles: list[str] = Field(default_factory=lambda: ["super_admin", "admin"])

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @classmethod
    def from_env(cls) -> "Settings":
        debug = _parse_bool("DEBUG", os.getenv("DEBUG", "false"))

        secret_key = os.getenv("SECRET_KEY", "").strip()
        if not secret_key:
            raise ValueError("SECRET_KEY environment variable must be set")
        if len(secret_key) < MIN_SECRET_KEY_LENGTH and not debug:
            raise ValueError(
                f"SECRET_KEY must be at least {MIN_SECRET_KEY_LENGTH} characters long"
            )

        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme not in SUPPORTED_DATABASE_SCHEMES:
            raise ValueError(
                "DATABASE_URL must start with 'postgresql+asyncpg://' or 'sqlite+aiosqlite://'"
            )
        if parsed_db.scheme == "postgresql+asyncpg" and not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        algorithm = os.getenv("JWT_ALGORITHM", cls.model_fields["algorithm"].default).strip()
        if algorithm not in SUPPORTED_JWT_ALGORITHMS:
            raise ValueError(
                f"JWT_ALGORITHM must be one of: {', '.join(sorted(SUPPORTED_JWT_ALGORITHMS))}"
            )

        jwt_issuer = os.getenv("JWT_ISSUER", cls.model_fields["jwt_issuer"].default).strip()
        if not jwt_issuer:
            raise ValueError("JWT_ISSUER must not be empty")
        jwt_audience = os.getenv(
            "JWT_AUDIENCE", cls.model_fields["jwt_audience"].default
        ).strip()
        if not jwt_audience:
            raise ValueError("JWT_AUDIENCE must not be empty")

        raw_bypass_roles = os.getenv("BYPASS_ROLES", "").strip()
        if raw_bypass_roles:
            bypass_roles = _parse_list("BYPASS_ROLES", raw_bypass_roles)
            if not bypass_roles:
                raise ValueError("BYPASS_ROLES must contain at least one role")
        else:
            bypass_roles = ["super_admin", "admin"]

        raw_allowed_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
        allowed_origins = _parse_list("ALLOWED_ORIGINS", raw_allowed_origins)
        if "*" in allowed_origins:
            raise ValueError(
                "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
            )
        for origin in allowed_origins:
            parsed = urlparse(origin)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    "ALLOWED_ORIGINS must contain valid http/https origins with host"
                )

        db_pool_size = _parse_positive_int(
            "DB_POOL_SIZE", os.getenv("DB_POOL_SIZE", str(cls.model_fields["db_pool_size"].default))
        )

        db_max_overflow = int(
            os.getenv("DB_MAX_OVERFLOW", cls.model_fields["db_max_overflow"].default)
        )
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        db_pool_recycle = _parse_positive_int(
            "DB_POOL_RECYCLE",
            os.getenv("DB_POOL_RECYCLE", str(cls.model_fields["db_pool_recycle"].default)),
        )

        db_pool_pre_ping = _parse_bool(
            "DB_POOL_PRE_PING",
            os.getenv("DB_POOL_PRE_PING", str(cls.model_fields["db_pool_pre_ping"].default)),
        )

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=debug,
            log_level=os.getenv("LOG_LEVEL", cls.model_fields["log_level"].default).upper(),
            database_url=database_url,
            auto_create_schema=_parse_bool(
                "AUTO_CREATE_SCHEMA", os.getenv("AUTO_CREATE_SCHEMA", "false")
            ),
            allowed_origins=allowed_origins,
            secret_key=secret_key,
            algorithm=algorithm,
            jwt_issuer=jwt_issuer,
            jwt_audience=jwt_audience,
            access_token_expire_minutes=_parse_positive_int(
                "ACCESS_TOKEN_EXPIRE_MINUTES",
                os.getenv(
                    "ACCESS_TOKEN_EXPIRE_MINUTES",
                    str(cls.model_fields["access_token_expire_minutes"].default),
                ),
            ),
            refresh_token_expire_days=_parse_positive_int(
                "REFRESH_TOKEN_EXPIRE_DAYS",
                os.getenv(
                    "REFRESH_TOKEN_EXPIRE_DAYS",
                    str(cls.model_fields["refresh_token_expire_days"].default),
                ),
            ),
            bypass_roles=bypass_roles,
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
        )


# Settings are validated on first access, not at import time.
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first accesses build a single
    instance.

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
