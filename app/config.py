"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Clinic Scheduling API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")
    store_backend: str = Field(
        default="postgres",
        alias="STORE_BACKEND",
        description="Appointment store backend: 'postgres' or 'memory'",
    )
    store_timeout_seconds: float = Field(default=5.0, gt=0, alias="STORE_TIMEOUT_SECONDS")
    lock_timeout_ms: int = Field(default=3000, ge=0, alias="LOCK_TIMEOUT_MS")

    # JWT
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Scheduling
    clinic_timezone: str = Field(default="UTC", alias="CLINIC_TIMEZONE")
    default_appointment_minutes: int = Field(default=30, alias="DEFAULT_APPOINTMENT_MINUTES")
    min_appointment_minutes: int = Field(default=15, ge=1, alias="MIN_APPOINTMENT_MINUTES")
    max_appointment_minutes: int = Field(default=240, ge=1, alias="MAX_APPOINTMENT_MINUTES")
    reject_past_bookings: bool = Field(default=False, alias="REJECT_PAST_BOOKINGS")
    appointment_policy_overrides: dict[str, list[str]] = Field(
        default_factory=dict,
        alias="APPOINTMENT_POLICY_OVERRIDES",
        description='JSON object of role -> appointment actions, e.g. {"NURSE": ["read"]}',
    )

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def uses_memory_store(self) -> bool:
        """Check if appointments are kept in process memory."""
        return self.store_backend.lower() == "memory"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
