"""Configuration and environment settings for Finance Intake."""

from pydantic_settings import BaseSettings, SettingsConfigDict

TEN_MEGABYTES = 10 * 1024 * 1024


class Settings(BaseSettings):
    """Application settings for Finance Intake."""

    database_url: str = "sqlite:///jobs/finance_intake.db"
    log_dir: str = "jobs"
    log_file: str = "finance_intake.log"
    max_upload_bytes: int = TEN_MEGABYTES
    max_merchant_batch: int = 1000
    fuzzy_threshold: float = 0.85
    job_list_limit: int = 50
    job_process_limit: int = 5
    job_progress_every: int = 25
    admin_user_ids: list[str] = []
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_settings() -> "Settings":
    """Return an instance of the application settings."""
    return Settings()
