"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Image synthesis (Replicate)
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_model_version: str = Field(
        default="black-forest-labs/flux-schnell", alias="REPLICATE_MODEL_VERSION"
    )
    replicate_edit_model: str = Field(
        default="black-forest-labs/flux-kontext-pro", alias="REPLICATE_EDIT_MODEL"
    )
    provider_timeout_seconds: float = Field(default=120.0, alias="PROVIDER_TIMEOUT_SECONDS")
    provider_max_outputs: int = Field(default=4, alias="PROVIDER_MAX_OUTPUTS")

    # Object storage (Pinata)
    pinata_jwt: str = Field(default="", alias="PINATA_JWT")
    pinata_gateway: str = Field(default="gateway.pinata.cloud", alias="PINATA_GATEWAY")
    storage_timeout_seconds: float = Field(default=30.0, alias="STORAGE_TIMEOUT_SECONDS")

    # Chat front end callback
    frontend_callback_url: str = Field(default="", alias="FRONTEND_CALLBACK_URL")
    frontend_callback_token: str = Field(default="", alias="FRONTEND_CALLBACK_TOKEN")

    # Job queue worker
    poll_interval_seconds: float = Field(default=1.0, alias="POLL_INTERVAL_SECONDS")
    worker_concurrency: int = Field(default=5, alias="WORKER_CONCURRENCY")

    # Retry policy around provider calls
    retry_max_retries: int = Field(default=3, alias="RETRY_MAX_RETRIES")
    retry_base_delay_seconds: float = Field(default=2.0, alias="RETRY_BASE_DELAY_SECONDS")
    retry_max_delay_seconds: float = Field(default=15.0, alias="RETRY_MAX_DELAY_SECONDS")
    retry_multiplier: float = Field(default=2.0, alias="RETRY_MULTIPLIER")

    # Progress notifications
    progress_interval_seconds: float = Field(default=60.0, alias="PROGRESS_INTERVAL_SECONDS")
    progress_max_ticks: int = Field(default=3, alias="PROGRESS_MAX_TICKS")
    progress_sweep_interval_seconds: float = Field(
        default=600.0, alias="PROGRESS_SWEEP_INTERVAL_SECONDS"
    )
    max_timers_per_user: int = Field(default=10, alias="MAX_TIMERS_PER_USER")

    # Ledger
    referral_reward: int = Field(default=20, alias="REFERRAL_REWARD")
    package_cost: int = Field(default=0, alias="PACKAGE_COST")
    logo_concepts: int = Field(default=2, alias="LOGO_CONCEPTS")

    # Derived-asset packaging
    asset_fetch_timeout_seconds: float = Field(default=30.0, alias="ASSET_FETCH_TIMEOUT_SECONDS")
    asset_min_bytes: int = Field(default=1024, alias="ASSET_MIN_BYTES")
    asset_max_bytes: int = Field(default=50 * 1024 * 1024, alias="ASSET_MAX_BYTES")
    asset_resize_timeout_seconds: float = Field(
        default=15.0, alias="ASSET_RESIZE_TIMEOUT_SECONDS"
    )
    icon_timeout_seconds: float = Field(default=60.0, alias="ICON_TIMEOUT_SECONDS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Allowed CORS origins (comma-separated in CORS_ORIGINS)."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if the workers could not run.
        Validation is skipped in test/development environments to avoid breaking tests.
        """
        if self.worker_concurrency < 1:
            raise ValueError("WORKER_CONCURRENCY must be at least 1")

        if self.app_env in ("test", "testing", "development"):
            return self

        missing = []

        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        if not self.pinata_jwt:
            missing.append("PINATA_JWT: Get your JWT token from https://pinata.cloud")

        if not self.frontend_callback_url:
            missing.append("FRONTEND_CALLBACK_URL: Endpoint of the chat front end for notifications")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON lines for log aggregation
    - Anything else: coloured console output

    LOG_LEVEL filters events below the configured level in both modes.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.app_env == "production":
        renderers: list = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
