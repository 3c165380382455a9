from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    imprest_env: Literal["dev", "staging", "prod"] = Field(default="dev", alias="IMPREST_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    imprest_db_dsn: str = Field(alias="IMPREST_DB_DSN")

    auth_mode: Literal["none", "api_key"] = Field(default="none", alias="IMPREST_AUTH_MODE")
    api_key: str = Field(default="", alias="IMPREST_API_KEY")

    # --- workflow policy ---
    accounting_window_days: int = Field(default=7, alias="IMPREST_ACCOUNTING_WINDOW_DAYS")
    due_soon_days: int = Field(default=2, alias="IMPREST_DUE_SOON_DAYS")
    recent_activity_limit: int = Field(default=5, alias="IMPREST_RECENT_ACTIVITY_LIMIT")
    allowed_currencies: Annotated[list[str], NoDecode] = Field(
        default=["USD", "EUR", "GBP", "KES"], alias="IMPREST_ALLOWED_CURRENCIES"
    )
    allow_over_disbursement: bool = Field(default=False, alias="IMPREST_ALLOW_OVER_DISBURSEMENT")

    # --- receipt storage (S3 / MinIO) ---
    s3_endpoint: str = Field(default="localhost:9000", alias="IMPREST_S3_ENDPOINT")
    s3_region: str = Field(default="us-east-1", alias="IMPREST_S3_REGION")
    s3_access_key: str = Field(default="", alias="IMPREST_S3_ACCESS_KEY")
    s3_secret_key: str = Field(default="", alias="IMPREST_S3_SECRET_KEY")
    s3_secure: bool = Field(default=False, alias="IMPREST_S3_SECURE")
    s3_bucket_receipts: str = Field(default="imprest-receipts", alias="IMPREST_S3_BUCKET_RECEIPTS")

    @field_validator("allowed_currencies", mode="before")
    @classmethod
    def _split_currencies(cls, value: object) -> object:
        if isinstance(value, str):
            return [c.strip().upper() for c in value.split(",") if c.strip()]
        return value

    @field_validator("accounting_window_days", mode="before")
    @classmethod
    def _clamp_window(cls, value: object) -> int:
        """An accounting window shorter than a day is never meaningful."""
        try:
            days = int(value)
        except (TypeError, ValueError):
            return 7
        return max(days, 1)

    @field_validator("due_soon_days", mode="before")
    @classmethod
    def _clamp_due_soon(cls, value: object) -> int:
        try:
            days = int(value)
        except (TypeError, ValueError):
            return 2
        return max(days, 0)

    @field_validator("recent_activity_limit", mode="before")
    @classmethod
    def _clamp_activity_limit(cls, value: object) -> int:
        try:
            limit = int(value)
        except (TypeError, ValueError):
            return 5
        return min(max(limit, 1), 50)


@lru_cache
def get_settings() -> Settings:
    return Settings()
