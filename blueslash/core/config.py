"""Configuration management for BlueSlash."""

from croniter import croniter
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Document store
    sqlite_db_path: str = Field(
        default="./blueslash_data/blueslash.db", description="SQLite file backing the document store"
    )
    blob_store_dir: str = Field(
        default="./blueslash_data/blobs", description="Root directory for kitchen board attachments"
    )

    # Links
    app_base_url: str = Field(
        default="http://localhost:5173", description="Base URL used for invite and notification deep links"
    )
    invite_expiry_days: int = Field(default=7, ge=1, description="Lifetime of a generated invite link in days")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # OpenRouter Configuration
    openrouter_api_key: str | None = Field(default=None, description="OpenRouter API key for gem estimation")
    model_id: str = Field(default="openai/gpt-4o-mini", description="Model ID for OpenRouter gem estimation")
    gem_estimate_temperature: float = Field(default=0.3, description="Sampling temperature for gem estimation")

    # Push gateway (optional)
    push_gateway_url: str | None = Field(
        default=None, description="HTTP push gateway endpoint; notifications are only logged when unset"
    )
    push_gateway_api_key: str | None = Field(default=None, description="Bearer token for the push gateway")

    # Scheduler
    reminder_sweep_cron: str = Field(default="0 * * * *", description="CRON schedule for the reminder sweep")

    # Verification policy
    reject_on_negative_quorum: bool = Field(
        default=False,
        description="Send a completed task back to published once negative votes reach the quorum",
    )

    @field_validator("reminder_sweep_cron")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        """Validate the sweep schedule is a standard 5-field CRON expression."""
        if not croniter.is_valid(v):
            msg = f"Invalid CRON expression for reminder sweep: {v}"
            raise ValueError(msg)
        return v

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # Gem economy
    CREATION_AWARD_MINIMUM: int = 5
    CREATION_AWARD_RATIO: float = 0.1
    PUBLISH_BONUS_RATIO: float = 0.1
    VERIFICATION_AWARD: int = 3
    VERIFICATION_QUORUM_RATIO: float = 0.5
    GEM_ESTIMATE_MIN: int = 5
    GEM_ESTIMATE_MAX: int = 25

    # Reminders
    REMINDER_DAYS_BEFORE_DUE: tuple[int, ...] = (7, 4, 2, 1)
    REMINDER_SWEEP_HORIZON_MINUTES: int = 60

    # Direct messages
    DIRECT_MESSAGE_MAX_LENGTH: int = 2000

    # Kitchen board
    KITCHEN_ATTACHMENT_MAX_BYTES: int = 10 * 1024 * 1024
    KITCHEN_TITLE_MAX_LENGTH: int = 60
    KITCHEN_PREVIEW_MAX_LENGTH: int = 140
    KITCHEN_POSITION_ATTEMPTS: int = 20
    KITCHEN_POSITION_MIN_DISTANCE: float = 18.0  # percent of board width


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
