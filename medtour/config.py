"""
Application configuration management using Pydantic Settings.

This module provides a type-safe, centralized configuration system
that loads from environment variables with sensible defaults.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """
    Application configuration loaded from environment variables.

    All settings can be overridden via .env file or environment variables.
    Settings are validated at startup using Pydantic.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===== Redis (job queue store) =====
    REDIS_URL: str | None = Field(
        default=None,
        description="Redis URL for the job queue (redis:// locally, rediss:// for Upstash)"
    )

    QUEUE_KEY_PREFIX: str = Field(
        default="queue",
        min_length=1,
        description="Namespace prefix for every queue key in Redis"
    )

    # ===== Supabase (content store) =====
    SUPABASE_URL: str | None = Field(
        default=None,
        description="Supabase project URL"
    )

    SUPABASE_SERVICE_KEY: str | None = Field(
        default=None,
        description="Supabase service role key (server-side writes, bypasses RLS)"
    )

    # ===== LLM Configuration =====
    ANTHROPIC_API_KEY: str | None = Field(
        default=None,
        description="Anthropic API key for Claude (content, translation, SEO jobs)"
    )

    MODEL_NAME: str = Field(
        default="claude-sonnet-4-20250514",
        description="Claude model used for article generation and translation"
    )

    CONTENT_TEMPERATURE: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Temperature for article generation (lower keeps facts consistent)"
    )

    TRANSLATION_TEMPERATURE: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Temperature for translation and SEO rewrites"
    )

    CONTENT_MAX_TOKENS: int = Field(
        default=8192,
        ge=256,
        le=64000,
        description="Maximum output tokens per generation call (non-Latin locales need more)"
    )

    LLM_TIMEOUT_SECONDS: float = Field(
        default=180.0,
        ge=5.0,
        le=900.0,
        description="Timeout for a single LLM request"
    )

    # ===== Image Generation =====
    REPLICATE_API_TOKEN: str | None = Field(
        default=None,
        description="Replicate API token for cover image generation"
    )

    IMAGE_MODEL: str = Field(
        default="google/imagen-4-fast",
        description="Replicate model for image generation"
    )

    IMAGE_BUCKET: str = Field(
        default="blog-images",
        description="Supabase storage bucket for generated cover images"
    )

    # ===== Retry Policy =====
    JOB_MAX_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts before a job is moved to the dead-letter queue"
    )

    RETRY_INITIAL_DELAY_MS: int = Field(
        default=5000,
        ge=0,
        description="Delay before the first retry (milliseconds)"
    )

    RETRY_BACKOFF_MULTIPLIER: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff multiplier between retries"
    )

    RETRY_MAX_DELAY_MS: int = Field(
        default=300000,
        ge=0,
        description="Upper bound for a single retry delay (milliseconds)"
    )

    PROCESSING_TIMEOUT_MS: int = Field(
        default=30 * 60 * 1000,
        ge=1000,
        description="Deadline after which a processing job is considered stalled"
    )

    STRICT_SCHEDULING: bool = Field(
        default=True,
        description="Never dequeue a job before its scheduled_at (False = pop highest score)"
    )

    @field_validator("STRICT_SCHEDULING", mode="before")
    @classmethod
    def parse_bool_string(cls, v):
        """Parse boolean from string values (platform env vars are strings)."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes", "on")
        return False

    # ===== Retention =====
    COMPLETED_JOB_TTL_SECONDS: int = Field(
        default=24 * 60 * 60,
        ge=60,
        description="How long completed jobs stay in the job store"
    )

    DEAD_JOB_TTL_SECONDS: int = Field(
        default=30 * 24 * 60 * 60,
        ge=60,
        description="How long dead-letter jobs are kept for operator review"
    )

    BATCH_TTL_SECONDS: int = Field(
        default=7 * 24 * 60 * 60,
        ge=60,
        description="Expiry of batch progress records"
    )

    STATS_TTL_SECONDS: int = Field(
        default=90 * 24 * 60 * 60,
        ge=60,
        description="Expiry of daily statistics hashes"
    )

    COMPLETED_HISTORY_SIZE: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Number of recently completed job ids kept for the dashboard"
    )

    # ===== Worker =====
    WORKER_INTER_JOB_DELAY_SECONDS: float = Field(
        default=2.0,
        ge=0.0,
        le=300.0,
        description="Pause between jobs to respect LLM API rate limits"
    )

    WORKER_POLL_INTERVAL_SECONDS: float = Field(
        default=5.0,
        ge=0.1,
        le=600.0,
        description="Idle poll interval when the queue is empty"
    )

    MAINTENANCE_INTERVAL_SECONDS: int = Field(
        default=60,
        ge=5,
        le=86400,
        description="How often stale-job reclamation and purge run"
    )

    MAX_BATCH_SIZE: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum number of keywords per batch submission"
    )

    # ===== Application Settings =====
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment mode: development or production"
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    ALLOWED_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins"
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    # ===== Computed Properties =====

    @property
    def redis_configured(self) -> bool:
        return self.REDIS_URL is not None

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase is properly configured."""
        return (
            self.SUPABASE_URL is not None
            and self.SUPABASE_SERVICE_KEY is not None
        )

    @property
    def can_generate_text(self) -> bool:
        return self.ANTHROPIC_API_KEY is not None

    @property
    def can_generate_images(self) -> bool:
        """Check if image generation is available."""
        return self.REPLICATE_API_TOKEN is not None


# Global configuration instance
# Import this in other modules: from medtour.config import config
config = AppConfig()


if __name__ == "__main__":
    print("Configuration loaded successfully!")
    print(f"Model: {config.MODEL_NAME}")
    print(f"Redis: {'✓' if config.redis_configured else '✗'}")
    print(f"Supabase: {'✓' if config.supabase_configured else '✗'}")
    print(f"Text Generation: {'✓' if config.can_generate_text else '✗'}")
    print(f"Image Generation: {'✓' if config.can_generate_images else '✗'}")
    print(f"Strict scheduling: {config.STRICT_SCHEDULING}")
