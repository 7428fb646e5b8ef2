"""
Configuration Management for beanledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engine itself never reaches for get_settings() once constructed:
a LedgerSettings instance is handed to every component through its
constructor, so several engines (e.g. one per test) can coexist.
"""

import re
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Where the ledger lives and how strictly it is guarded."""

    model_config = SettingsConfigDict(
        env_prefix="BEANLEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding main.bean, accounts.bean and monthly files"
    )
    main_file: str = Field(
        default="main.bean",
        description="Root file; includes every other ledger file"
    )
    accounts_file: str = Field(
        default="accounts.bean",
        description="File holding open/close directives"
    )
    id_metadata_key: str = Field(
        default="id",
        description="Metadata key used to persist stable directive identifiers"
    )
    account_roots: str = Field(
        default="Assets,Liabilities,Equity,Income,Expenses",
        description="Comma-separated list of permitted top-level account names"
    )
    check_balance_on_write: bool = Field(
        default=True,
        description="Reject unbalanced transactions before writing them"
    )
    balance_tolerance: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Largest per-currency residual still considered balanced (0: exact)"
    )
    conflict_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a read-modify-write cycle that hits a write conflict"
    )
    encoding: str = Field(
        default="utf-8",
        description="Text encoding of ledger files"
    )

    @field_validator("main_file", "accounts_file")
    @classmethod
    def validate_file_name(cls, v: str) -> str:
        """Ledger files live directly in data_dir."""
        if "/" in v or "\\" in v or not v.endswith(".bean"):
            raise ValueError(f"Ledger file must be a bare *.bean name, got {v!r}")
        return v

    @field_validator("id_metadata_key")
    @classmethod
    def validate_id_key(cls, v: str) -> str:
        """Metadata keys start with a lowercase letter."""
        if not re.fullmatch(r"[a-z][A-Za-z0-9_-]*", v):
            raise ValueError(f"Invalid metadata key: {v!r}")
        return v

    @property
    def account_roots_list(self) -> list[str]:
        """Get account roots as a list."""
        return [root.strip() for root in self.account_roots.split(",") if root.strip()]


class LoggingSettings(BaseSettings):
    """structlog output configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BEANLEDGER_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    json_output: bool = Field(
        default=True,
        description="Render log lines as JSON (otherwise key=value console output)"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()


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
    {setting_name}_error entries for the failing groups.
    Useful for startup checks.
    """
    results: dict = {}

    settings = get_settings()

    for name in ("ledger", "logging"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
