from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # CRM settings
    CRM_ACCESS_TOKEN: str | None = None
    CRM_BASE_URL: str = "https://api.hubapi.com"
    CRM_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Durable cache backing; in-memory storage is used when unset
    DATABASE_URL: str | None = None

    # OpenAI settings
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    SUGGESTION_TIMEOUT_SECONDS: float = 30.0
    SUGGESTION_MAX_TOKENS: int = 100

    # =================================================================
    # CACHE & RATE LIMIT SETTINGS
    # =================================================================
    DEALS_SNAPSHOT_MAX_AGE_SECONDS: float = 1800.0  # 30 minutes
    CACHE_ITEM_MAX_AGE_SECONDS: float = 3600.0  # 1 hour for companies/contacts

    # CRM allows ~100 requests per 10 seconds on the free tier
    CRM_BATCH_SIZE: int = 10
    CRM_BATCH_DELAY_SECONDS: float = 1.0
    MEETING_BATCH_SIZE: int = 5
    MEETING_BATCH_DELAY_SECONDS: float = 0.5
    BULK_SUGGESTION_DELAY_SECONDS: float = 0.2

    # Background worker
    DEAL_REFRESH_INTERVAL_SECONDS: float = 300.0

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def use_database(self) -> bool:
        """Whether the durable Postgres backing is configured."""
        return bool(self.DATABASE_URL)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 5,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
