"""Configuration management for Mailbox Automation.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAILBOX_AUTOMATION_ prefix (e.g., MAILBOX_AUTOMATION_SCAN_BATCH_SIZE).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAILBOX_AUTOMATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API OAuth client secrets file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to Gmail API token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.modify",
        description=(
            "OAuth scope used for Gmail access. Label jobs modify messages, so "
            "gmail.modify is required; scans alone work with gmail.readonly."
        ),
    )
    gmail_user_id: str = Field(default="me", description="Gmail API userId")
    gmail_allow_interactive: bool = Field(
        default=True,
        description="Allow the interactive OAuth flow when the token is missing or invalid",
    )

    # Scan / label batching
    scan_engine: Literal["gmail", "imap"] = Field(
        default="gmail",
        description="Transport used by scan jobs",
    )
    scan_batch_size: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Messages fetched per scan batch",
    )
    label_batch_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Messages labelled per label-application batch",
    )
    scan_query: str = Field(
        default="",
        description="Optional Gmail search query restricting scans (e.g. newer_than:365d)",
    )

    # Continuation scheduling
    continuation_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay before an enqueued continuation runs, to respect API rate limits",
    )
    inline_batch_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Pause between batches run inline within one invocation",
    )
    invocation_budget_seconds: float = Field(
        default=240.0,
        gt=0,
        description="Wall-clock budget for inline batches in a single invocation",
    )

    # Progress estimation
    scan_target_messages: int = Field(
        default=1000,
        description="Assumed minimum mailbox size when estimating scan time remaining",
    )
    eta_min_elapsed_seconds: float = Field(
        default=10.0,
        description="Do not estimate time remaining before this much time has elapsed",
    )

    # Persistence
    store_path: Path = Field(
        default=Path("mailbox_automation.sqlite3"),
        description="Path to the SQLite document store",
    )
    job_ttl_hours: int = Field(
        default=24,
        description="Terminal jobs older than this are eligible for purging",
    )

    # HTTP API
    owner_header: str = Field(
        default="X-Mailbox-Owner",
        description="Request header carrying the authenticated mailbox identity",
    )
    worker_token: str | None = Field(
        default=None,
        description="Shared secret required on continuation worker requests, if set",
    )

    # IMAP scanning
    imap_host: str = Field(default="imap.gmail.com", description="IMAP server host")
    imap_port: int = Field(default=993, description="IMAP server port (SSL)")
    imap_mailbox: str = Field(default="[Gmail]/All Mail", description="Mailbox scanned over IMAP")
    imap_app_password: str | None = Field(
        default=None,
        description="Gmail app password used for IMAP login",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    max_retries: int = Field(
        default=3,
        description="Maximum number of retries for failed operations",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
