from functools import lru_cache
from urllib.parse import urlparse

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "Portal Onboarding Sync"
    app_env: str = "development"  # development, testing, production
    debug: bool = False
    enable_openapi: bool = True
    app_url: str = "http://localhost:3000"  # Frontend URL for activation links

    # Security
    log_user_emails: bool = False  # Set to False in production for GDPR compliance
    trusted_proxy_ips: list[str] = []  # Peers allowed to set X-Forwarded-For
    csp_production: str = "default-src 'self'; frame-ancestors 'none'"

    # Database
    database_url: str
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_echo: bool = False

    # Shutdown
    shutdown_grace_period: int = 30

    # Admin Basic-Auth (POST /users and management endpoints)
    admin_username: str | None = None
    admin_password: str | None = None

    # Password hashing
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536
    argon2_parallelism: int = 1
    password_min_length: int = 8

    # Invitations
    invite_expire_hours: int = 24  # Admin-initiated invitations
    webhook_invite_expire_days: int = 7  # CRM-triggered invitations

    # Email (Resend)
    resend_api_key: str | None = None  # If not set, emails are logged but not sent
    resend_fallback_api_key: str | None = None
    email_from: str = "noreply@example.com"
    email_fallback_from: str | None = None
    email_send_timeout_seconds: int = 10
    email_max_attempts: int = 3  # Per provider configuration
    email_retry_delay_seconds: float = 1.0  # Multiplied by attempt number

    # CRM (GoHighLevel)
    crm_base_url: str = "https://services.leadconnectorhq.com"
    crm_api_version: str = "2021-07-28"
    crm_api_key: str | None = None
    crm_location_id: str | None = None
    crm_timeout_seconds: float = 10.0
    crm_retry_backoff_seconds: float = 0.5
    crm_webhook_public_key: str | None = None  # PEM, RSA
    crm_onboard_tags: list[str] = ["Active Downline", "active-downline"]
    crm_suspend_tags: list[str] = ["account-suspended"]
    crm_untagged_webhook_action: str | None = "onboard"  # "onboard" or None to ignore

    # Best-effort background work
    background_max_workers: int = 8
    background_task_timeout_seconds: float = 15.0

    # Profile image store (optional, used on user deletion)
    profile_image_store_url: str | None = None
    profile_image_store_token: str | None = None

    # Metrics
    metrics_api_key: str | None = None  # If set, /metrics requires this key

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Redis (optional - rate limiter falls back to in-process counters)
    redis_url: str | None = None  # e.g., "redis://localhost:6379/0"
    redis_pool_size: int = 10

    # Rate limiting (fixed window per client IP)
    rate_limit_requests: int = 5
    rate_limit_window_seconds: int = 60

    @field_validator("app_url", "crm_base_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"'{v}' is not an http(s) URL")
        return v.rstrip("/")

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: list[str]) -> list[str]:
        """Validate CORS origins - reject wildcards when credentials are used."""
        for origin in v:
            if origin == "*":
                raise ValueError(
                    "CORS wildcard '*' is not allowed when allow_credentials=True. "
                    "Specify explicit origins instead."
                )
        return v

    @field_validator("crm_untagged_webhook_action")
    @classmethod
    def validate_untagged_action(cls, v: str | None) -> str | None:
        if not v:
            return None
        if v != "onboard":
            raise ValueError("CRM_UNTAGGED_WEBHOOK_ACTION must be 'onboard' or unset")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def crm_enabled(self) -> bool:
        return bool(self.crm_api_key and self.crm_location_id)


@lru_cache
def get_settings() -> Settings:
    return Settings()
