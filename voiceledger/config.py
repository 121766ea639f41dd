"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Ledger settings loaded from environment variables."""

    # Storage backend: "postgres" for production, "memory" for local runs
    ledger_backend: str = "postgres"

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 20
    database_max_overflow: int = 0
    database_pool_timeout: int = 10
    database_pool_recycle: int = 3600
    database_statement_timeout_ms: int = 5000
    database_command_timeout: float = 5.0

    # In-memory store
    memory_lock_timeout: float = 5.0

    # Service identity
    service_name: str = "voiceledger"
    service_version: str = "0.1.0"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Metrics
    metrics_enabled: bool = True

    # Ledger policy
    free_trial_credits: int = 50
    referral_credit_amount: int = 5
    referral_code_max_uses: int = 5
    referral_lifetime_limit: int = 25
    referral_code_issue_threshold: int = 4
    referral_code_max_attempts: int = 10
    low_balance_notice_credits: int = 1
    default_usage_estimate_months: int = 3
    post_commit_timeout: float = 2.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The ledger MUST NOT start against a half-configured database.
        """
        errors: list[str] = []

        if self.ledger_backend not in ("postgres", "memory"):
            errors.append(f"LEDGER_BACKEND must be 'postgres' or 'memory', got: {self.ledger_backend}")
        elif self.ledger_backend == "postgres":
            if not self.database_url:
                errors.append("DATABASE_URL is required but empty or missing")
            elif not self.database_url.startswith(("postgresql", "postgres")):
                errors.append(
                    f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
                )

        if self.referral_code_max_attempts < 1:
            errors.append("REFERRAL_CODE_MAX_ATTEMPTS must be at least 1")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - LEDGER CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
