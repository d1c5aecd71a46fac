"""
This module contains the settings for the marketplace service.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings loaded from environment variables or a local .env file.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite+aiosqlite:///servicehub.db"

    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "db+sqlite:///servicehub-results.db"

    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"

    smtp_host: str = "smtp.example.com"
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_ssl: bool = False
    smtp_use_tls: bool = True
    email_from: str = '"ServiceHub" <notifications@servicehub.com>'

    # Confirm/cancel emails are optional; in-app notifications are always created
    send_emails: bool = True

    reminder_hour: int = 9
    reminder_timezone: str = "Europe/Paris"
    # Times shown to users in emails and notifications
    display_timezone: str = "Europe/Paris"

    log_level: str = "INFO"


settings = Settings()
