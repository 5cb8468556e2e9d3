from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_FILES = [PROJECT_ROOT / ".env", ".env"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=ENV_FILES, extra="ignore")

    # DB
    DATABASE_URL: str = "sqlite:///./data/remindpro.db"

    # App
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # API
    API_KEY: str | None = None

    # Scheduler
    POLL_INTERVAL_SEC: float = 60.0
    POLL_BATCH_SIZE: int = 50
    CLAIM_TIMEOUT_SEC: int = 900
    HEARTBEAT_EVERY_TICKS: int = 10
    # Run the poller inside the API process (single-process deployments)
    EMBEDDED_WORKER: bool = False

    # Retries
    DEFAULT_MAX_RETRIES: int = 3
    RETRY_BACKOFF_BASE_SEC: int = 0

    # Delivery
    SEND_DELAY_SEC: float = 1.0
    SEND_TIMEOUT_SEC: float = 30.0

    # Email (SMTP)
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_FROM: str | None = None
    SMTP_USE_TLS: bool = True
    EMAIL_SUBJECT: str = "New Reminder"

    # Chat (Telegram)
    TELEGRAM_BOT_TOKEN: str | None = None
    CHAT_RECONNECT_DELAY_SEC: float = 5.0
    CHAT_RECONNECT_MAX_DELAY_SEC: float = 60.0
    CHAT_RECONNECT_MAX_ATTEMPTS: int = 5


settings = Settings()
