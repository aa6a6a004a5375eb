"""Application configuration using pydantic-settings."""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite:///./ledger.db"

    # Pending -> posted reconciliation
    PENDING_MATCH_WINDOW_DAYS: int = 8
    FUZZY_MATCH_WINDOW_DAYS: int = 3
    MEDIUM_CONFIDENCE_TOLERANCE: float = 0.30
    LOW_CONFIDENCE_TOLERANCE: float = 1.00
    STALE_PENDING_DAYS: int = 8
    PENDING_CLEANUP_AMOUNT_TOLERANCE: float = 0.25

    # Transfer auto-matching
    TRANSFER_MATCH_DATE_WINDOW_DAYS: int = 4
    TRANSFER_MATCH_FX_TOLERANCE: float = 0.10

    @field_validator(
        "PENDING_MATCH_WINDOW_DAYS",
        "FUZZY_MATCH_WINDOW_DAYS",
        "STALE_PENDING_DAYS",
        "TRANSFER_MATCH_DATE_WINDOW_DAYS",
        "MEDIUM_CONFIDENCE_TOLERANCE",
        "LOW_CONFIDENCE_TOLERANCE",
        "TRANSFER_MATCH_FX_TOLERANCE",
        "PENDING_CLEANUP_AMOUNT_TOLERANCE",
    )
    @classmethod
    def validate_non_negative(cls, v):
        """Windows and tolerances must not be negative."""
        if v < 0:
            raise ValueError(f"must be >= 0, got {v!r}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
