"""Application configuration."""

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Scheduling API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")
    clinic_name: str = Field(default="Clinic", alias="CLINIC_NAME")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")

    # Scheduling
    app_timezone: str = Field(
        default="America/Argentina/Buenos_Aires",
        alias="APP_TIMEZONE",
        description="IANA timezone used for every 'now' comparison",
    )
    default_appointment_duration: int = Field(
        default=30, ge=1, alias="DEFAULT_APPOINTMENT_DURATION"
    )

    # Background jobs
    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    reminder_sweep_minutes: int = Field(default=5, ge=1, alias="REMINDER_SWEEP_MINUTES")
    absence_sweep_hour: int = Field(default=3, ge=0, le=23, alias="ABSENCE_SWEEP_HOUR")
    db_retry_attempts: int = Field(default=3, ge=1, alias="DB_RETRY_ATTEMPTS")
    db_retry_base_delay_ms: int = Field(default=250, ge=0, alias="DB_RETRY_BASE_DELAY_MS")
    cron_secret: str | None = Field(default=None, alias="CRON_SECRET")

    # Notification queues
    notification_attempts: int = Field(default=3, ge=1, alias="NOTIFICATION_ATTEMPTS")
    notification_backoff_ms: int = Field(default=3000, ge=0, alias="NOTIFICATION_BACKOFF_MS")
    # Idempotency keys outlive the 24h reminder window
    notification_idempotency_ttl_seconds: int = Field(
        default=172800, alias="NOTIFICATION_IDEMPOTENCY_TTL_SECONDS"
    )

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @field_validator("app_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject timezone identifiers unknown to the IANA database."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tz(self) -> ZoneInfo:
        """Get the configured timezone."""
        return ZoneInfo(self.app_timezone)

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
