"""Ledger engine configuration from environment variables."""

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

KNOWN_MODULES = ("dues", "water")


class Settings(BaseSettings):
    """Engine settings loaded from environment variables and .env."""

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(
        default="sqlite:///./condo_ledger.db",
        description="SQLAlchemy connection string for the unit ledger store",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Accounting
    fiscal_year_start_month: int = Field(
        default=1,
        ge=1,
        le=12,
        description="Calendar month (1-12) in which the fiscal year starts",
    )
    module_priority: list[str] = Field(
        default_factory=lambda: ["dues", "water"],
        description="Order used to break same-date ties between charge modules",
    )
    accrual_modules: list[str] = Field(
        default_factory=lambda: ["dues"],
        description="Charge modules reported on accrual basis; everything else is cash basis",
    )

    # Credit ledger
    credit_history_limit: int = Field(
        default=50, gt=0, description="Default number of credit history entries returned"
    )

    # Statements
    statement_cache_size: int = Field(
        default=256, ge=0, description="Maximum number of cached statements (0 disables)"
    )

    # Recording
    lock_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Seconds to wait for a unit commit lock"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/ledger.log", description="Log file path")

    @field_validator("module_priority", "accrual_modules")
    @classmethod
    def _check_modules(cls, value: list[str]) -> list[str]:
        unknown = [m for m in value if m not in KNOWN_MODULES]
        if unknown:
            raise ValueError(f"Unknown charge modules: {', '.join(unknown)}")
        return value


# Global settings instance
settings = Settings()
