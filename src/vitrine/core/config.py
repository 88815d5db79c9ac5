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
    db_pool_size: int = Field(default=50, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Pipeline worker
    run_worker_in_api: bool = Field(default=True, alias="RUN_WORKER_IN_API")
    poll_interval_seconds: float = Field(default=1.0, alias="POLL_INTERVAL_SECONDS")
    worker_batch_size: int = Field(default=5, alias="WORKER_BATCH_SIZE")
    queue_max_attempts: int = Field(default=3, alias="QUEUE_MAX_ATTEMPTS")
    queue_backoff_seconds: list[float] = Field(default=[1.0, 2.0, 5.0], alias="QUEUE_BACKOFF_SECONDS")
    queue_backoff_jitter_seconds: float = Field(default=0.5, alias="QUEUE_BACKOFF_JITTER_SECONDS")
    queue_lock_timeout_seconds: int = Field(default=300, alias="QUEUE_LOCK_TIMEOUT_SECONDS")
    queue_dead_letter_retries: int = Field(default=5, alias="QUEUE_DEAD_LETTER_RETRIES")

    # Pricing
    credits_per_job: int = Field(default=1, alias="CREDITS_PER_JOB")
    credits_per_custom_mannequin_job: int = Field(
        default=2, alias="CREDITS_PER_CUSTOM_MANNEQUIN_JOB"
    )

    # Moderation
    cooldown_hours: int = Field(default=24, alias="COOLDOWN_HOURS")
    nsfw_threshold: float = Field(default=0.8, alias="NSFW_THRESHOLD")
    nsfw_model_version: str = Field(
        default="falcons-ai/nsfw_image_detection", alias="NSFW_MODEL_VERSION"
    )

    # AI providers
    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_BASE_URL"
    )
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    default_provider: str = Field(default="openrouter", alias="DEFAULT_PROVIDER")
    default_model: str = Field(default="google/gemini-2.5-flash-image", alias="DEFAULT_MODEL")
    default_fallback_provider: str = Field(default="replicate", alias="DEFAULT_FALLBACK_PROVIDER")
    default_fallback_model: str = Field(
        default="black-forest-labs/flux-kontext-pro", alias="DEFAULT_FALLBACK_MODEL"
    )
    model_timeout_ms: int = Field(default=30000, alias="MODEL_TIMEOUT_MS")
    placeholder_color: str = Field(default="#10b981", alias="PLACEHOLDER_COLOR")

    # Object storage (S3-compatible, Cloudflare R2 in production)
    r2_endpoint: str = Field(default="", alias="R2_ENDPOINT")
    r2_access_key_id: str = Field(default="", alias="R2_ACCESS_KEY_ID")
    r2_secret_access_key: str = Field(default="", alias="R2_SECRET_ACCESS_KEY")
    r2_raw_bucket: str = Field(default="vitrine-raw-upload", alias="R2_RAW_BUCKET")
    r2_gallery_bucket: str = Field(default="vitrine-public-gallery", alias="R2_GALLERY_BUCKET")
    r2_public_base_url: str = Field(default="", alias="R2_PUBLIC_BASE_URL")
    thumbnail_sizes: list[int] = Field(default=[256, 512], alias="THUMBNAIL_SIZES")

    # Notifications
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    default_language: str = Field(default="fr", alias="DEFAULT_LANGUAGE")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with every missing variable listed. Skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.openrouter_api_key and not self.replicate_api_token:
            missing.append(
                "OPENROUTER_API_KEY or REPLICATE_API_TOKEN: at least one image provider is required"
            )

        if not self.r2_endpoint:
            missing.append("R2_ENDPOINT: S3-compatible endpoint for uploads and exports")

        if not self.r2_access_key_id or not self.r2_secret_access_key:
            missing.append("R2_ACCESS_KEY_ID / R2_SECRET_ACCESS_KEY: storage credentials")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    if settings.app_env == "production":
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
