"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "Dialogs"
    app_version: str = "1.0.0"
    debug: bool = True

    # Storage
    storage_type: str = "local"
    local_storage_path: str = "./data"
    stale_session_timeout_seconds: float = 60 * 60  # 1 hour

    # Telegram bot settings
    telegram_bot_token: Optional[str] = None
    telegram_disabled: bool = False
    telegram_webhook_secret: Optional[str] = None
    telegram_webhook_url: Optional[str] = None  # registered at startup when set
    admin_telegram_users: list[int] = []

    # Notion directory settings
    notion_token: Optional[str] = None
    notion_database_id: Optional[str] = None
    directory_cache_ttl_seconds: float = 15 * 60  # 15 minutes
    directory_fetch_timeout_seconds: float = 10.0

    # Admin API
    admin_api_key: Optional[str] = None

    # Realtime
    realtime_queue_size: int = 256

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/dialogs.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True  # Log all API requests/responses

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
