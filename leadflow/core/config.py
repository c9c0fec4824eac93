"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.01.00"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./leadflow.db"

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # Scheduler / cron callers (X-Internal-Secret + X-Org-Id)
    INTERNAL_SECRET: str = ""

    # Field encryption (Fernet key)
    DATA_ENCRYPTION_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Sync scheduler
    SCHEDULER_ENABLED: bool = False
    EMAIL_SYNC_INTERVAL_MINUTES: int = 120
    CALENDAR_SYNC_INTERVAL_MINUTES: int = 240
    SYNC_MAX_CONCURRENT_TENANTS: int = 3
    SYNC_INITIAL_DELAY_SECONDS: int = 30
    SYNC_JITTER_SECONDS: int = 120
    SYNC_BUSY_RETRY_SECONDS: int = 30
    SYNC_BUSY_MAX_RETRIES: int = 5

    # Per-account freshness guard
    EMAIL_SYNC_COOLDOWN_MINUTES: int = 10
    CALENDAR_SYNC_COOLDOWN_MINUTES: int = 15

    # Account sync bounds
    SYNC_PAGE_SIZE: int = 50
    SYNC_MAX_PAGES: int = 10
    SYNC_MAX_ITEMS: int = 100  # Gmail threads per initial sync
    GRAPH_MAX_MESSAGES: int = 500
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Orchestration time boxes
    AUTO_SYNC_TIMEOUT_SECONDS: int = 60
    MANUAL_SYNC_TIMEOUT_SECONDS: int = 300

    # Calendar windows (days back / days forward)
    AUTO_CALENDAR_DAYS_BACK: int = 7
    AUTO_CALENDAR_DAYS_FORWARD: int = 30
    MANUAL_CALENDAR_DAYS_BACK: int = 30
    MANUAL_CALENDAR_DAYS_FORWARD: int = 90

    # Classification
    AI_PROVIDER: str = "openai"  # openai | gemini
    AI_API_KEY: str = ""
    AI_PRIMARY_MODEL: str = "gpt-4o-mini"
    AI_FALLBACK_MODEL: str = "gpt-3.5-turbo"
    AI_TEMPERATURE: float = 0.3
    AI_MAX_TOKENS: int = 1000
    AI_REQUEST_TIMEOUT_SECONDS: float = 30.0
    AI_BODY_CHAR_LIMIT: int = 6000
    AI_SUBJECT_CHAR_LIMIT: int = 200
    AUTO_SYNC_AI_THREAD_LIMIT: int = 100
    REPLY_QUEUE_PRIORITY_THRESHOLD: int = 80

    # Alerts
    ALERT_DEDUPE_WINDOW_HOURS: int = 6
    ALERT_BATCH_WINDOW_HOURS: int = 24

    @property
    def is_dev(self) -> bool:
        return self.ENV in ("dev", "test")

    @property
    def jwt_secrets(self) -> list[str]:
        """Current secret first, then the previous one during rotation."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets


settings = Settings()
