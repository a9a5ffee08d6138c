"""Application configuration."""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORAGE_BACKENDS = ("postgres", "memory")
LOG_FORMATS = ("json", "console")


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Storage
    storage_backend: str = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 2
    database_pool_max_size: int = 10
    database_command_timeout: float = 60
    store_timeout_seconds: float = 5.0

    # Workflow
    strict_status_transitions: bool = False

    # Identity (shared secret with the upstream identity layer)
    identity_signing_secret: str | None = None

    # Application
    log_level: str = "INFO"
    log_format: str = "json"
    expose_error_details: bool = False

    # Frontend (for CORS)
    frontend_url: str = "http://localhost:3000"

    # Public submission endpoint
    application_rate_limit: str = "10/minute"

    # Dashboards
    recent_applications_limit: int = 10
    leaderboard_size: int = 10

    @property
    def frontend_urls(self) -> list[str]:
        """Parse frontend URLs from comma-separated env var."""
        return [url.strip() for url in self.frontend_url.split(",") if url.strip()]

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        """Only known storage backends are accepted."""
        value = v.strip().lower()
        if value not in STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}, got {v!r}"
            )
        return value

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only json and console renderers exist."""
        value = v.strip().lower()
        if value not in LOG_FORMATS:
            raise ValueError(f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}, got {v!r}")
        return value

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_store_timeout(cls, v: float) -> float:
        """Store operations need a positive bound."""
        if v <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be greater than zero")
        return v

    @model_validator(mode="after")
    def validate_database_url(self) -> "Settings":
        """The postgres backend cannot start without a DSN."""
        if self.storage_backend == "postgres" and not (self.database_url or "").strip():
            raise ValueError(
                "DATABASE_URL is required when STORAGE_BACKEND=postgres. "
                "Set STORAGE_BACKEND=memory for a local, non-persistent store."
            )
        return self


settings = Settings()
