"""Configuration loading for the outreach forms backend.

This module provides centralized configuration management:
- Load settings from environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Entity store configuration
    store_backend: Literal["sqlite", "postgresql"] = Field(
        default="sqlite",
        description="Entity store backend type",
    )
    store_sqlite_path: str = Field(
        default="./data/outreach.db",
        description="SQLite database file path",
    )
    database_url: str = Field(
        default="",
        description="PostgreSQL connection URL",
    )
    store_pool_size: int = Field(
        default=5,
        description="Maximum number of store connections",
    )

    # Notification configuration
    notification_backend: Literal["stdout", "smtp", "http_api"] = Field(
        default="stdout",
        description="Notification backend type",
    )
    email_from: str = Field(
        default="noreply@techgridsummit.com",
        description="Sender address for all outgoing email",
    )
    email_from_name: str = Field(
        default="Tech Grid Summit",
        description="Sender display name for all outgoing email",
    )
    admin_emails: str = Field(
        default="",
        description="Comma-separated addresses that receive admin notifications",
    )
    email_template_dir: str = Field(
        default="",
        description="Directory with email templates overriding the built-in ones",
    )
    smtp_host: str = Field(
        default="localhost",
        description="SMTP server host",
    )
    smtp_port: int = Field(
        default=587,
        description="SMTP server port",
    )
    smtp_username: str = Field(
        default="",
        description="SMTP login user",
    )
    smtp_password: str = Field(
        default="",
        description="SMTP login password",
    )
    smtp_use_tls: bool = Field(
        default=False,
        description="Connect with implicit TLS (port 465 style)",
    )
    smtp_start_tls: bool = Field(
        default=True,
        description="Upgrade the connection with STARTTLS",
    )
    smtp_timeout_seconds: float = Field(
        default=30.0,
        description="SMTP connection and command timeout",
    )
    mail_api_url: str = Field(
        default="",
        description="Transactional mail HTTP API endpoint URL",
    )
    mail_api_key: str = Field(
        default="",
        description="Transactional mail HTTP API key",
    )
    mail_api_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP mail API request timeout",
    )

    # Event and site configuration
    site_url: str = Field(
        default="http://localhost:3000",
        description="Public base URL used in email links",
    )
    event_id: str = Field(
        default="tech_grid_ai_finance_2025",
        description="Identifier stored on new registrations",
    )
    event_name: str = Field(
        default="Tech Grid: AI in Finance 2025",
        description="Event name shown in emails",
    )
    event_date: str = Field(
        default="",
        description="Event date shown in emails",
    )
    registration_number_prefix: str = Field(
        default="TGS",
        description="Prefix of generated registration numbers",
    )
    registration_number_attempts: int = Field(
        default=5,
        description="Attempts to find an unused registration number",
    )
    bulk_send_pause_seconds: float = Field(
        default=0.1,
        description="Pause between emails of a bulk campaign",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Run mode
    run_mode: Literal["cli"] = Field(
        default="cli",
        description="Run mode",
    )
    admin_name: str = Field(
        default="admin",
        description="Actor name recorded for CLI admin operations",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging",
    )

    @property
    def admin_recipients(self) -> tuple[str, ...]:
        """Admin notification addresses, lower-cased and de-duplicated."""
        seen: dict[str, None] = {}
        for address in self.admin_emails.split(","):
            address = address.strip().lower()
            if address:
                seen[address] = None
        return tuple(seen)

    @field_validator("store_pool_size")
    @classmethod
    def validate_pool_size(cls, v: int) -> int:
        """Ensure pool size is positive."""
        if v <= 0:
            raise ValueError("store_pool_size must be positive")
        return v

    @field_validator("smtp_port")
    @classmethod
    def validate_smtp_port(cls, v: int) -> int:
        """Ensure SMTP port is in valid range."""
        if v <= 0 or v > 65535:
            raise ValueError("smtp_port must be between 1 and 65535")
        return v

    @field_validator("registration_number_attempts")
    @classmethod
    def validate_number_attempts(cls, v: int) -> int:
        """Ensure at least one registration number is tried."""
        if v < 1:
            raise ValueError("registration_number_attempts must be at least 1")
        return v

    @field_validator("registration_number_prefix")
    @classmethod
    def validate_number_prefix(cls, v: str) -> str:
        """Registration numbers are matched upper-cased, so the prefix must be."""
        v = v.strip()
        if not v or not v.isalnum():
            raise ValueError("registration_number_prefix must be alphanumeric")
        return v.upper()

    @field_validator("bulk_send_pause_seconds", "smtp_timeout_seconds", "mail_api_timeout_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Ensure durations are non-negative."""
        if v < 0:
            raise ValueError("durations must be non-negative")
        return v

    @field_validator("site_url")
    @classmethod
    def validate_site_url(cls, v: str) -> str:
        """Ensure the site URL is absolute."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("site_url must start with http:// or https://")
        return v.rstrip("/")


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
