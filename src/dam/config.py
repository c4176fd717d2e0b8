"""Configuration management for the DAM webhook service."""

import logging
import secrets
import warnings
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from dam.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "DigitalAssetManagement-Webhook/1.0"


def _generate_dev_webhook_secret() -> str:
    """Generate a random webhook signing secret for development use.

    Receivers that verify signatures must be given the same secret, so a
    generated secret is only useful for local round trips. Production
    always requires an explicit secret.

    Returns:
        A cryptographically secure random hex string (64 characters).
    """
    return secrets.token_hex(32)


class Settings(BaseSettings):
    """Service configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the DAM_ prefix. For example:
        DAM_WEBHOOK_SECRET=change-me
        DAM_WEBHOOK_RETRY_ATTEMPTS=5

    Security Notes:
        - In production (DAM_ENV=production), a webhook secret is required
        - In development/test a random secret is generated at startup
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    database_path: str = Field(
        default="dam_webhooks.db",
        description="SQLite database file for webhook events (':memory:' for in-memory)",
    )
    storage_backend: Literal["sqlite", "memory"] = Field(
        default="sqlite",
        description="Event store backend",
    )
    storage_busy_timeout_ms: int = Field(
        default=5000,
        ge=0,
        description="SQLite busy timeout in milliseconds",
    )

    # Signing
    webhook_secret: str | None = Field(
        default=None,
        description=(
            "Default HMAC-SHA256 secret used when a subscription has no secret of its own. "
            "REQUIRED in production. In dev/test, a random secret is generated if not set."
        ),
    )

    # Retry policy
    webhook_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Maximum delivery attempts before an event is marked failed",
    )
    webhook_retry_delay_ms: int = Field(
        default=1000,
        ge=1,
        description="Base retry delay in milliseconds (doubles each attempt)",
    )
    webhook_retry_jitter: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Proportional jitter added to each retry delay (0.0 disables jitter)",
    )

    # Delivery
    webhook_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="HTTP timeout for a single delivery attempt",
    )
    webhook_user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent header sent with every delivery",
    )
    webhook_response_body_limit: int = Field(
        default=1000,
        ge=0,
        description="Characters of the response body kept for diagnostics",
    )
    webhook_default_url: str | None = Field(
        default=None,
        description="Destination that receives every published event in addition to subscribers",
    )

    # Dispatcher
    dispatcher_enabled: bool = Field(
        default=True,
        description="Run the polling dispatcher inside the API process",
    )
    webhook_poll_interval_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds between scans for due events",
    )
    webhook_batch_size: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Maximum events picked up per scan",
    )
    webhook_max_concurrent: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum concurrent deliveries",
    )
    webhook_cleanup_interval_hours: float = Field(
        default=24.0,
        gt=0.0,
        description="Hours between purges of old terminal events",
    )
    webhook_retention_days: int = Field(
        default=30,
        ge=1,
        description="Days to keep delivered and failed events",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="List of allowed CORS origins",
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        description="Allowed HTTP methods for CORS requests",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed headers for CORS requests",
    )

    # Runtime-generated dev secret (not from env, generated at startup if needed)
    _runtime_dev_secret: str | None = None

    model_config = {
        "env_prefix": "DAM_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Require an explicit webhook secret in production.

        In dev/test a random secret is generated instead, which means
        signatures stop verifying across restarts.
        """
        if self.env == "production":
            if self.webhook_secret is None:
                raise ValueError(
                    "DAM_WEBHOOK_SECRET must be set in production. "
                    'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
                )
            if self.cors_allow_origins == ["*"]:
                warnings.warn(
                    "CORS allows every origin in production. "
                    "Set DAM_CORS_ALLOW_ORIGINS to the expected origins.",
                    UserWarning,
                    stacklevel=2,
                )
        elif self.webhook_secret is None:
            object.__setattr__(self, "_runtime_dev_secret", _generate_dev_webhook_secret())
            logger.debug("Generated random webhook secret for development")
        return self

    @property
    def effective_webhook_secret(self) -> str:
        """Get the secret used to sign deliveries without a subscription secret.

        Returns:
            The configured secret, or the runtime-generated one in dev/test.

        Raises:
            ConfigurationError: If no secret is available (should not
                happen after validation).
        """
        if self.webhook_secret is not None:
            return self.webhook_secret
        if self._runtime_dev_secret is not None:
            return self._runtime_dev_secret
        raise ConfigurationError("No webhook secret available")


# Global settings instance
settings = Settings()
