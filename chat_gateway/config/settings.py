"""Application settings using Pydantic BaseSettings."""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chat_gateway.core.limits import QuotaTable, parse_quota, parse_quota_table

DEFAULT_RATE_LIMITS = (
    "chat=20/60,conversations=60/60,models=10/60,instance=30/60,costs=20/60,admin=30/60"
)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    cors_origins: str = Field(default="http://localhost:5173")

    # Counter/record store backend
    # "memory" = in-process (single worker only, tests)
    # "redis" = distributed via INCR + EXPIREAT (requires redis_url)
    # "dynamodb" = distributed via UpdateItem ADD (requires dynamodb_table_name)
    limits_backend: str = Field(default="memory")
    redis_url: str = Field(default="")
    dynamodb_table_name: str = Field(default="")
    aws_region: str = Field(default="eu-west-1")

    # Per-operation quotas: "<operation>=<max>/<window_seconds>", comma-separated.
    # Operations missing from the table use rate_limit_default.
    rate_limits: str = Field(default=DEFAULT_RATE_LIMITS)
    rate_limit_default: str = Field(default="30/60")
    # Counters outlive their window by at least one window length.
    rate_limit_grace_seconds: int = Field(default=60)

    # Authentication (JWT issued by an OIDC provider, verified against its JWKS)
    auth_domain: str = Field(default="")
    auth_audience: str = Field(default="ollama-chat-api")
    auth_algorithms: str = Field(default="RS256")
    jwks_cache_seconds: int = Field(default=3600)
    auth_timeout_seconds: int = Field(default=5)
    admin_emails: str = Field(default="")

    # Managed inference instance
    instance_id: str = Field(default="")
    ollama_port: int = Field(default=11434)
    ollama_url_cache_seconds: int = Field(default=300)
    ollama_ready_timeout_seconds: int = Field(default=5)
    ollama_request_timeout_seconds: int = Field(default=30)
    # Pulls stream progress for as long as the download takes.
    ollama_pull_timeout_seconds: int = Field(default=1800)

    # Cost report (Cost Explorer is served from us-east-1 only)
    cost_explorer_region: str = Field(default="us-east-1")
    cost_service_name: str = Field(default="Amazon Elastic Compute Cloud - Compute")

    # Autostop policy
    autostop_idle_timeout_minutes: int = Field(default=15)
    autostop_hard_limit_minutes: int = Field(default=60)
    autostop_scheduler_enabled: bool = Field(default=False)
    autostop_interval_minutes: int = Field(default=5)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def admin_emails_list(self) -> List[str]:
        """Parse admin allow-list, normalised to lowercase."""
        if not self.admin_emails:
            return []
        return [e.strip().lower() for e in self.admin_emails.split(",") if e.strip()]

    @property
    def auth_algorithms_list(self) -> List[str]:
        return [a.strip() for a in self.auth_algorithms.split(",") if a.strip()]

    @property
    def rate_limit_table(self) -> QuotaTable:
        """Immutable quota table built from rate_limits + rate_limit_default."""
        return parse_quota_table(self.rate_limits, self.rate_limit_default)

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() == "production"

    @property
    def is_test(self) -> bool:
        """Check if running in test mode."""
        return self.environment.lower() == "test"

    @property
    def docs_url(self) -> Optional[str]:
        """Return docs URL if not in production, else None."""
        return None if self.is_production else "/docs"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production", "test"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production, test")
        return vv

    @field_validator("limits_backend")
    @classmethod
    def validate_limits_backend(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"memory", "redis", "dynamodb"}:
            raise ValueError("LIMITS_BACKEND must be one of: memory, redis, dynamodb")
        return vv

    @field_validator("rate_limit_default")
    @classmethod
    def validate_rate_limit_default(cls, v: str) -> str:
        parse_quota(v)
        return v

    @model_validator(mode="after")
    def validate_cross_field_constraints(self) -> "Settings":
        # Fail at startup rather than on the first request.
        parse_quota_table(self.rate_limits, self.rate_limit_default)

        if self.rate_limit_grace_seconds < 0:
            raise ValueError("RATE_LIMIT_GRACE_SECONDS must be >= 0")

        if self.autostop_idle_timeout_minutes <= 0:
            raise ValueError("AUTOSTOP_IDLE_TIMEOUT_MINUTES must be positive")
        if self.autostop_hard_limit_minutes <= 0:
            raise ValueError("AUTOSTOP_HARD_LIMIT_MINUTES must be positive")
        if self.autostop_interval_minutes <= 0:
            raise ValueError("AUTOSTOP_INTERVAL_MINUTES must be positive")
        # A tick slower than the idle timeout would detect idleness late.
        if self.autostop_interval_minutes > self.autostop_idle_timeout_minutes:
            raise ValueError(
                "AUTOSTOP_INTERVAL_MINUTES must not exceed AUTOSTOP_IDLE_TIMEOUT_MINUTES"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
