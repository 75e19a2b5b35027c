from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Storage backends: "memory" keeps everything in-process (local / tests)
    STORE_BACKEND: str = "memory"
    # "store" keeps ignored senders next to the other collections, "redis" uses a Redis set
    IGNORED_SENDER_BACKEND: str = "store"

    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None

    # Auth settings (bearer JWTs verified against a JWKS endpoint)
    JWT_JWKS_URL: str | None = None
    JWT_AUDIENCE: str = "authenticated"
    JWT_ALGORITHMS: list[str] = ["ES256", "RS256"]

    # Google OAuth settings (used for refreshing stored mailbox credentials)
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GMAIL_PUSH_TOPIC: str | None = None
    # Shared secret Pub/Sub appends to the push endpoint URL (?token=...)
    GMAIL_PUSH_TOKEN: str | None = None

    # Background mailbox sync
    MAILBOX_SYNC_INTERVAL_SECONDS: int = 300

    # Fernet key for stored mailbox credentials (Postgres backend only)
    ENCRYPTION_KEY: str | None = None

    # =================================================================
    # MAILBOX READER SETTINGS
    # =================================================================
    MAILBOX_PAGE_SIZE: int = 20
    MAILBOX_DETAIL_BATCH_SIZE: int = 5
    MAILBOX_BATCH_DELAY_SECONDS: float = 0.2
    MAILBOX_DETAIL_TIMEOUT_SECONDS: float = 10.0

    # Pipeline settings
    STUCK_THRESHOLD_DAYS: int = 7

    # Insight enrichment
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    INSIGHT_TIMEOUT_SECONDS: float = 20.0

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def uses_postgres(self) -> bool:
        return self.STORE_BACKEND.lower() == "postgres"

    def uses_redis_ignored_senders(self) -> bool:
        return self.IGNORED_SENDER_BACKEND.lower() == "redis"

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
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config


settings = Settings()
