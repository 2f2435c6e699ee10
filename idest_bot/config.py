"""Configuration settings using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telegram Bot
    BOT_TOKEN: str = Field(default="", description="Telegram Bot API token")

    # Database
    DATABASE_PATH: str = Field(
        default="data/idest_bot.db",
        description="Path to SQLite database file"
    )

    # Encryption
    ENCRYPTION_KEY: Optional[str] = Field(
        default=None,
        description="Fernet encryption key for stored access tokens"
    )

    # Idest API
    IDEST_API_BASE_URL: str = Field(
        default="https://ie-backend.fly.dev/hehe",
        description="Base URL of the Idest backend"
    )
    API_TIMEOUT: int = Field(default=30, description="API request timeout in seconds")

    # Attempt durations (seconds)
    READING_DURATION_SECONDS: int = Field(default=60 * 60, description="Reading attempt duration")
    LISTENING_DURATION_SECONDS: int = Field(default=30 * 60, description="Listening attempt duration")
    WRITING_DURATION_SECONDS: int = Field(default=60 * 60, description="Writing attempt duration")
    SPEAKING_DURATION_SECONDS: int = Field(default=15 * 60, description="Speaking attempt duration")

    # Listings
    PAGE_SIZE: int = Field(default=10, description="Items per page in assignment lists")

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    LOG_FILE: str = Field(
        default="data/logs/bot.log",
        description="Path to log file"
    )

    class Config:
        """Pydantic config."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def duration_for(self, skill: str) -> int:
        """Countdown length for an attempt of the given skill."""
        return {
            "reading": self.READING_DURATION_SECONDS,
            "listening": self.LISTENING_DURATION_SECONDS,
            "writing": self.WRITING_DURATION_SECONDS,
            "speaking": self.SPEAKING_DURATION_SECONDS,
        }[skill]


# Global settings instance
settings = Settings()
