"""
consent-ledger Configuration

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConsentLedgerSettings(BaseSettings):
    """Main settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONSENT_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    json_logs: bool = False

    # Consent
    # "mark" keeps revoked consents for history, "delete" removes them
    revoke_mode: Literal["mark", "delete"] = "mark"

    # Audit
    phi_policy: Literal["redact", "off"] = "redact"
    audit_backend: Literal["memory", "jsonl"] = "memory"
    audit_path: Path = Path("audit-ledger.jsonl")
    details_max_length: int = Field(default=1000, ge=32)

    @property
    def is_production(self) -> bool:
        return self.env == "production"


@lru_cache()
def get_settings() -> ConsentLedgerSettings:
    """
    Get cached settings instance.

    Returns:
        ConsentLedgerSettings: The application settings
    """
    return ConsentLedgerSettings()
