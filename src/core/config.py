"""Configuration management for lifesync."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Field encryption
    app_secret: str = Field(
        default="life-sync-secure-salt-v1",
        description="Static application secret combined with the user ID to form field encryption keys",
    )

    # Trusted time
    origin_url: str = Field(
        default="http://127.0.0.1:8000",
        description="Application origin probed with HEAD for a server Date header",
    )
    time_api_url: str = Field(
        default="https://worldtimeapi.org/api/ip",
        description="External time authority used when the origin probe fails",
    )
    time_api_timeout_seconds: float = Field(default=2.0, description="Timeout for each trusted time probe")
    clock_resync_minutes: int = Field(
        default=15, description="Interval between resolution retries while the trusted clock is unresolved"
    )

    # Document store
    sqlite_db_path: str = Field(default="./lifesync_data/store.db", description="SQLite document store path")

    # Local backup store (optional Redis, in-memory otherwise)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")
    local_backup_prefix: str = Field(default="lifesync_data_", description="Key namespace for per-user local backups")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Remote writes
    write_max_retries: int = Field(default=3, description="Attempts per remote write before reporting failure")
    write_retry_base_delay: float = Field(default=0.5, description="Base delay in seconds for write backoff")
    write_timeout_seconds: float = Field(default=10.0, description="Upper bound for a single remote write attempt")

    # Challenge maintenance
    challenge_sweep_hour: int = Field(default=0, description="Hour of day the elapsed-challenge sweep runs")


# Application Constants
class Constants:
    """Application-wide constants."""

    # Dates
    DATE_FORMAT: str = "%Y-%m-%d"

    # Challenges
    ALLOWED_CHALLENGE_DURATIONS: frozenset[int] = frozenset({3, 7, 21, 30})

    # Tasks longer than this are tracked as ongoing habits (consistency rather than completion)
    ONGOING_TASK_DAYS: int = 365

    # Analytics windows
    WEEK_DAYS: int = 7

    # Local storage keys
    DEVICE_ID_KEY: str = "ls_device_id"

    # Synced collections
    DEFAULT_WAIT_TIMEOUT_SECONDS: float = 5.0

    # Notifier messages
    MSG_TASK_CREATED: str = "Task Created!"
    MSG_TASK_UPDATED: str = "Task updated."
    MSG_TASK_DELETED: str = "Task Deleted."
    MSG_PROGRESS_RECORDED: str = "Progress Recorded!"
    MSG_ALREADY_MARKED: str = "Already marked for today."
    MSG_CHALLENGE_CREATED: str = "New Quest Started!"
    MSG_CHALLENGE_DELETED: str = "Quest Removed."
    MSG_CHALLENGE_DUPLICATE: str = "This quest is already active! Complete it first."
    MSG_CHALLENGE_ENDED: str = "This quest has already ended."
    MSG_JOURNAL_SAVED: str = "Journal entry saved."
    MSG_JOURNAL_UPDATED: str = "Journal updated."
    MSG_JOURNAL_DELETED: str = "Entry deleted."
    MSG_TODO_ADDED: str = "Task added to list."
    MSG_TODO_DELETED: str = "Task removed."
    MSG_EXPENSE_ADDED: str = "Expense recorded."
    MSG_EXPENSE_DELETED: str = "Expense removed."
    MSG_LOGGED_OUT: str = "Logged out."
    MSG_PROFILE_UPDATED: str = "Profile updated."
    MSG_SECRET_KEY_MISSING: str = "Please set a Secret Key in your Profile first."
    MSG_SECRET_KEY_INCORRECT: str = "Incorrect Secret Key."
    MSG_REMARK_REQUIRED: str = "Please provide a remark."
    MSG_ACCOUNT_DATA_DELETED: str = "All account data deleted."


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
