"""
Configuration Management for Budget Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engine itself only needs LedgerSettings, which has a default for
every field, so the ledger runs without any environment set up.
Backend settings (Google Sheets, Cloudinary) are only loaded when the
corresponding backend is constructed.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from budget_ledger.models.ledger import DESCRIPTION_MAX_LENGTH


class CloudinarySettings(BaseSettings):
    """Cloudinary receipt storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    receipts_folder: str = Field(
        default="receipts",
        description="Folder receipts are uploaded into"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets persistence configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    ledger_sheet_name: str = Field(
        default="Ledgers",
        description="Name of the sheet holding one ledger snapshot per user"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class LedgerSettings(BaseSettings):
    """
    Ledger engine settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_user_key: str = Field(
        default="default",
        description="User key used when none is supplied"
    )

    # Persistence timing
    save_debounce_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=60.0,
        description="Quiet period that coalesces successive edits into one write"
    )
    remote_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="How often polling backends check for remote changes"
    )

    # Sanity limits
    max_amount: float = Field(
        default=10_000_000.0,
        gt=0.0,
        description="Largest single amount accepted (for sanity checking)"
    )
    max_description_length: int = Field(
        default=DESCRIPTION_MAX_LENGTH,
        ge=1,
        le=DESCRIPTION_MAX_LENGTH,
        description="Longest description accepted"
    )

    # Receipts
    max_receipt_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum receipt upload size in MB"
    )
    receipt_max_dimension_px: int = Field(
        default=1600,
        ge=200,
        description="Receipts are downscaled so their long side fits this"
    )
    receipt_jpeg_quality: int = Field(
        default=85,
        ge=10,
        le=95,
        description="JPEG quality used when normalising receipts"
    )

    @property
    def max_receipt_size_bytes(self) -> int:
        """Get max receipt size in bytes."""
        return self.max_receipt_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    "<name>_error" entries describing what failed.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("cloudinary", "google_sheets", "ledger"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
