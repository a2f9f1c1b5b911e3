"""
Configuration settings for Polycle Member.
All sensitive values are loaded from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "Polycle Member"
    debug: bool = False
    environment: str = "production"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    base_url: str = ""
    session_secret: str = "dev-session-secret"
    encryption_key: str = ""
    default_timezone: str = "Asia/Taipei"

    # Google (service account for Sheets, OAuth client for sign-in)
    google_credentials_json: str = ""
    google_service_account_email: str = ""
    google_service_account_key: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # Google Sheets
    sheets_dr_spreadsheet_id: str = ""
    sheets_tasks_spreadsheet_id: str = ""

    # Sheets retry tuning
    sheets_retries: int = Field(default=3, ge=0)
    sheets_retry_base_delay: float = Field(default=0.4, ge=0)
    sheets_retry_max_delay: float = Field(default=4.0, ge=0)
    sheets_retry_factor: float = Field(default=2.0, ge=1)

    # Slack
    slack_client_id: str = ""
    slack_client_secret: str = ""
    slack_signing_secret: str = ""
    slack_bot_token: str = ""
    slack_daily_report_channel_id: str = ""


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the application settings."""
    return settings
