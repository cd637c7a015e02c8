"""Tutorial CMS configuration loaded from environment variables."""

from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Origins allowed when CORS_ALLOWED_ORIGINS is unset (local frontend dev servers)
DEFAULT_DEV_ORIGINS = ["http://localhost:5173", "http://localhost:3000"]

MAX_LOGIN_JITTER_MS = 300


class Settings(BaseSettings):
    """Application settings.

    Every field can be set through the environment variable of the same name
    (case-insensitive) or an optional ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Tutorial CMS"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = Field(default=8489, ge=1, le=65535)

    # Database
    database_url: str = "sqlite+aiosqlite:///./database.db"

    # Secrets (validated by SecretStore at startup)
    jwt_secret: SecretStr | None = None
    csrf_secret: SecretStr | None = None
    login_attempt_salt: SecretStr | None = None

    # Optional admin bootstrap
    admin_username: str | None = None
    admin_password: SecretStr | None = None

    # Cookies and proxies
    auth_cookie_secure: bool = True
    trust_proxy_ip_headers: bool = False
    cors_allowed_origins: str = ""

    # Login hardening
    login_jitter_min_ms: int = Field(default=100, ge=0)
    login_jitter_max_ms: int = Field(default=300, ge=0)
    blacklist_cleanup_probability: float = Field(default=0.01, ge=0.0, le=1.0)
    blacklist_cleanup_interval_seconds: int = Field(default=300, ge=0)

    # HTTP defenses and observability
    rate_limit_enabled: bool = True
    enable_metrics: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level

    @field_validator("admin_username")
    @classmethod
    def blank_admin_username_is_unset(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def validate_login_jitter(self) -> "Settings":
        if self.login_jitter_min_ms > self.login_jitter_max_ms:
            raise ValueError("LOGIN_JITTER_MIN_MS must not exceed LOGIN_JITTER_MAX_MS")
        if self.login_jitter_max_ms > MAX_LOGIN_JITTER_MS:
            raise ValueError(f"LOGIN_JITTER_MAX_MS must be at most {MAX_LOGIN_JITTER_MS}")
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        """Allowed CORS origins, keeping only well-formed http(s) URLs."""
        raw = [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]
        if not raw:
            return list(DEFAULT_DEV_ORIGINS)

        origins = []
        for origin in raw:
            parsed = urlparse(origin)
            if parsed.scheme in ("http", "https") and parsed.netloc:
                origins.append(origin.rstrip("/"))
        return origins


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
