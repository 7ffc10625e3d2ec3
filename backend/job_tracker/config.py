"""Application configuration with Pydantic Settings validation."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from job_tracker.enrichment.settings import EnrichmentSettings


class AppConfig(BaseSettings):
    """All application settings, loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite:///job_tracker.db"

    # ── Credentials ───────────────────────────────────────
    credential_secret_key: SecretStr = SecretStr("change-me")

    # ── Mailbox ingestion ─────────────────────────────────
    imap_timeout_sec: int = 30
    dedup_window_days: int = 3

    # ── Background jobs ───────────────────────────────────
    job_active_window_sec: int = 300
    job_retention_sec: int = 3600

    # ── Enrichment ────────────────────────────────────────
    enrichment_requests_per_minute: int = 5
    enrichment_max_consecutive_failures: int = 3
    enrichment_standard_delay_sec: float = 12.0
    enrichment_backoff_delay_sec: float = 60.0
    enrichment_request_timeout_sec: float = 15.0
    enrichment_max_redirects: int = 5
    enrichment_max_item_attempts: int = 3
    enrichment_enabled: bool = True

    # ── Server ────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # ── Logging ───────────────────────────────────────────
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # ── Validators ────────────────────────────────────────
    @field_validator("enrichment_enabled", mode="before")
    @classmethod
    def parse_bool(cls, v: object) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in {"1", "true", "yes", "on"}
        return bool(v)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def ensure_string(cls, v: object) -> str:
        return str(v).strip()

    @field_validator(
        "dedup_window_days",
        "job_active_window_sec",
        "job_retention_sec",
        "enrichment_requests_per_minute",
        "enrichment_max_consecutive_failures",
        "enrichment_max_item_attempts",
    )
    @classmethod
    def ensure_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator(
        "enrichment_standard_delay_sec",
        "enrichment_backoff_delay_sec",
        "enrichment_request_timeout_sec",
    )
    @classmethod
    def ensure_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def database_path(self) -> Optional[Path]:
        """Return the SQLite file path, or None for non-file databases."""
        if self.database_url.startswith("sqlite:///"):
            return Path(self.database_url.replace("sqlite:///", ""))
        return None

    def enrichment_settings(self) -> EnrichmentSettings:
        """Build the worker's tuning parameters from the loaded settings."""
        return EnrichmentSettings(
            requests_per_minute=self.enrichment_requests_per_minute,
            max_consecutive_failures=self.enrichment_max_consecutive_failures,
            standard_delay=self.enrichment_standard_delay_sec,
            backoff_delay=self.enrichment_backoff_delay_sec,
            request_timeout=self.enrichment_request_timeout_sec,
            max_redirects=self.enrichment_max_redirects,
            max_item_attempts=self.enrichment_max_item_attempts,
        )


def get_config() -> AppConfig:
    """Load and return validated application config."""
    return AppConfig()
