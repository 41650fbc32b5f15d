"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables or a local .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "SmallStreet Bot"
    APP_ENV: str = "development"
    DEBUG: bool = False
    PORT: int = 3000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Discord
    DISCORD_TOKEN: str | None = None  # Bot is not started when unset
    ADMIN_USER_ID: str | None = None
    VERIFY_CHANNEL_ID: str | None = None
    WELCOME_CHANNEL_ID: str | None = None
    POLL_CHANNEL_ID: str | None = None
    OPERATOR_CHANNEL_ID: str | None = None

    # Roles granted by membership level (pioneer -> MEGAvoter, patron -> Patron)
    MEGAVOTER_ROLE_ID: str | None = None
    PATRON_ROLE_ID: str | None = None

    # SmallStreet membership API (WordPress)
    SMALLSTREET_API_BASE: str = "https://www.smallstreet.app"
    SMALLSTREET_API_KEY: str | None = None
    SMALLSTREET_MEMBERS_PATH: str = "/wp-json/myapi/v1/api"
    SMALLSTREET_DISCORD_USER_PATH: str = "/wp-json/myapi/v1/discord-user"
    SMALLSTREET_POLL_RECORDS_PATH: str = "/wp-json/myapi/v1/poll-records"
    SMALLSTREET_LOGIN_URL: str = "https://www.smallstreet.app/login/"
    DISCORD_INVITE_URL: str = "https://discord.gg/smallstreet"

    # HTTP client and retry policy
    HTTP_TIMEOUT_SECONDS: float = 15.0
    HTTP_MAX_ATTEMPTS: int = 5
    HTTP_BACKOFF_SECONDS: float = 1.0

    # Poll Configuration
    POLL_DURATION_DAYS: int = 7
    POLL_FUND_AMOUNT: int = 1_000_000
    POLL_SCHEDULE_DAY: int = 1  # Day of month for automatic poll creation (UTC)
    POLL_SCHEDULE_HOUR: int = 12
    POLL_AUTO_SCHEDULE: bool = True
    POLL_LOCK_TIMEOUT_SECONDS: int = 30

    # XP used for voters the membership API cannot resolve
    UNKNOWN_VOTER_POLICY: Literal["seeded", "base"] = "seeded"

    # XP reported to the membership store after a successful QR verification
    VERIFICATION_XP_AWARD: int = 5_000_000

    @field_validator("HTTP_MAX_ATTEMPTS", "POLL_DURATION_DAYS", "POLL_LOCK_TIMEOUT_SECONDS")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        """Reject zero or negative counts and durations."""
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("POLL_SCHEDULE_DAY")
    @classmethod
    def validate_schedule_day(cls, v: int) -> int:
        """Keep the monthly slot on a day every month has."""
        if not 1 <= v <= 28:
            raise ValueError("POLL_SCHEDULE_DAY must be between 1 and 28")
        return v

    @field_validator("POLL_SCHEDULE_HOUR")
    @classmethod
    def validate_schedule_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("POLL_SCHEDULE_HOUR must be between 0 and 23")
        return v

    @property
    def smallstreet_headers(self) -> dict[str, str]:
        """Default headers for the membership API."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        }
        if self.SMALLSTREET_API_KEY:
            headers["Authorization"] = f"Bearer {self.SMALLSTREET_API_KEY}"
        return headers


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
