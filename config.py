from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings, read from the environment and .env"""

    DB_URL: str = "sqlite+aiosqlite:///./pack_attack.db"
    REDIS_URL: Optional[str] = None

    DISCORD_WEBHOOK_URL: Optional[str] = None
    APP_URL: str = "http://localhost:8000"
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_MAX_RETRIES: int = Field(default=3, ge=0)

    CRON_SECRET: str = "change-me"
    AUTO_START_ENABLED: bool = True
    AUTO_START_GRACE_MINUTES: int = Field(default=30, ge=0)
    AUTO_START_INTERVAL_SECONDS: int = Field(default=60, ge=1)
    AUTO_RESUME_MINUTES: int = Field(default=5, ge=1)
    LOBBY_EXPIRY_HOURS: int = Field(default=24, ge=1)

    CACHE_TTL_SECONDS: int = Field(default=300, ge=1)
    CACHE_MAX_ENTRIES: int = Field(default=1000, ge=1)

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
