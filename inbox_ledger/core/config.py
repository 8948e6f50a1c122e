from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # -----------------------------
    # Database
    # -----------------------------
    DATABASE_URL: str = "sqlite:///./inbox_ledger.db"
    SQL_ECHO: bool = False

    # -----------------------------
    # Gmail API Config
    # -----------------------------
    GMAIL_TOKEN_DIR: str = "credentials"
    GMAIL_SENDER: str = "noreply@steampowered.com"
    GMAIL_SUBJECT: str = "Steam Wallet"
    GMAIL_INCLUDE_SPAM_TRASH: bool = False
    GMAIL_PAGE_SIZE: int = 100
    GMAIL_MAX_RESULTS: int = 50
    GMAIL_PRINCIPALS: List[str] = []
    GMAIL_SYNC_INTERVAL: int = 3600

    # -----------------------------
    # Source client retry policy
    # -----------------------------
    SOURCE_MAX_ATTEMPTS: int = 3
    SOURCE_INITIAL_RETRY_DELAY: float = 2.0

    # -----------------------------
    # Sync orchestrator
    # -----------------------------
    SYNC_MAX_WORKERS: int = 4

    # -----------------------------
    # Message broker
    # -----------------------------
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # -----------------------------
    # App Environment
    # -----------------------------
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "info"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def gmail_query(self) -> str:
        """Fixed search expression: sender plus subject substring."""
        return f'from:{self.GMAIL_SENDER} subject:"{self.GMAIL_SUBJECT}"'


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance to avoid reloading .env repeatedly"""
    return Settings()


settings = get_settings()
