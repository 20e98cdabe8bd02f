"""Waitlist Configuration - environment-driven settings."""

from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Minimum lengths enforced at request time on the admin surface
MIN_ADMIN_PASSWORD_LENGTH = 12
MIN_TOKEN_SECRET_LENGTH = 32

TOKEN_SECRET_PREFIX = "waitlist-admin-"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "Waitlist"
    app_version: str = "1.0.0"
    brand_name: str = "Waitlist"
    debug: bool = False
    log_level: str = "INFO"
    enable_metrics: bool = False

    # Admin authentication
    admin_password: str = ""
    admin_token_secret: str = ""
    session_ttl_seconds: int = Field(default=60 * 60 * 8, ge=60)
    # None means "infer from the request scheme"
    cookie_secure: bool | None = None

    # Subscriber store
    database_url: str = Field(
        default="",
        validation_alias=AliasChoices("database_url", "postgres_url"),
    )
    waitlist_file: str = "waitlist.json"
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800
    pg_sslmode: str = "require"

    # Outbound mail
    email_user: str = ""
    email_pass: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_timeout_seconds: float = 30.0
    admin_notify_email: str = ""

    # Public URLs and CORS
    base_url: str = ""
    public_url: str = ""
    site_url: str = ""
    allowed_origins: str = ""

    # Rate limiting
    api_rate_limit_requests: int = Field(default=60, ge=1)
    api_rate_limit_window_seconds: int = Field(default=60, ge=1)
    signup_rate_limit_requests: int = Field(default=5, ge=1)
    signup_rate_limit_window_seconds: int = Field(default=600, ge=1)
    login_max_attempts: int = Field(default=5, ge=1)
    login_window_seconds: int = Field(default=900, ge=1)
    login_lock_base_seconds: int = Field(default=30, ge=1)
    login_lock_max_seconds: int = Field(default=900, ge=1)
    rate_limit_max_entries: int = Field(default=10000, ge=100)
    rate_limit_sweep_interval_seconds: int = Field(default=300, ge=1)
    login_delay_min_ms: int = Field(default=400, ge=0)
    login_delay_jitter_ms: int = Field(default=400, ge=0)

    # Comma-separated IPs allowed to set X-Forwarded-For / X-Real-IP
    trusted_proxy_ips: str = ""

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("pg_sslmode")
    @classmethod
    def validate_pg_sslmode(cls, v: str) -> str:
        mode = v.lower()
        if mode not in {"disable", "require", "verify-full"}:
            raise ValueError("PG_SSLMODE must be one of: disable, require, verify-full")
        return mode

    @property
    def token_secret_seed(self) -> str:
        """Seed for the admin token secret (falls back to the SMTP password)."""
        return self.admin_token_secret or self.email_pass

    @property
    def token_secret(self) -> str:
        """Server secret used for admin tokens and unsubscribe links."""
        seed = self.token_secret_seed
        return f"{TOKEN_SECRET_PREFIX}{seed}" if seed else ""

    @property
    def uses_database(self) -> bool:
        return bool(self.database_url.strip())

    @property
    def mail_configured(self) -> bool:
        return bool(self.email_user and self.email_pass)

    @property
    def admin_notification_address(self) -> str:
        return self.admin_notify_email or self.email_user

    @property
    def public_base_url(self) -> str:
        """Base URL used when building links in outbound emails."""
        return (self.public_url or self.base_url or self.site_url).rstrip("/")

    @property
    def configured_base_urls(self) -> list[str]:
        return [u for u in (self.base_url, self.public_url, self.site_url) if u.strip()]

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def trusted_proxy_ip_set(self) -> set[str]:
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    def check_security_configuration(self) -> list[str]:
        """Return a list of security warnings for the current configuration.

        Weak admin secrets do not stop startup; the admin endpoint fails
        closed at request time instead.
        """
        warnings: list[str] = []

        if not self.admin_password:
            warnings.append("ADMIN_PASSWORD is not set - the admin endpoint is disabled")
        elif len(self.admin_password) < MIN_ADMIN_PASSWORD_LENGTH:
            warnings.append(
                f"ADMIN_PASSWORD is shorter than {MIN_ADMIN_PASSWORD_LENGTH} characters "
                "- the admin endpoint is disabled"
            )

        if not self.token_secret_seed:
            warnings.append("ADMIN_TOKEN_SECRET is not set - admin sessions are disabled")
        elif len(self.token_secret) < MIN_TOKEN_SECRET_LENGTH:
            warnings.append("ADMIN_TOKEN_SECRET is too short - admin sessions are disabled")
        elif not self.admin_token_secret:
            warnings.append(
                "ADMIN_TOKEN_SECRET is not set - deriving the token secret from the SMTP password"
            )

        if self.admin_password and self.admin_password == self.admin_token_secret:
            warnings.append("ADMIN_PASSWORD and ADMIN_TOKEN_SECRET should not be the same value")

        if not self.mail_configured:
            warnings.append("EMAIL_USER/EMAIL_PASS not set - outbound email is disabled")

        if not self.uses_database:
            warnings.append(
                f"DATABASE_URL not set - using file store at {self.waitlist_file} "
                "(not safe for multi-process deployments)"
            )

        return warnings


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
