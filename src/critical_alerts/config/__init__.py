"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="critical-alerts", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="sqlite+aiosqlite:///./alerts.db",
        description="Escalation ledger connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Alert Engine ==========
    alert_rules_path: Path = Field(
        default=Path("alert_rules.yaml"),
        description="Path to alert rules YAML file"
    )
    evaluation_interval_seconds: int = Field(
        default=60,
        description="Seconds between time-driven evaluations (0 disables the ticker)",
        ge=0
    )
    persist_critical_alerts: bool = Field(
        default=True,
        description="Log critical alerts to the escalation ledger after each evaluation"
    )

    # ========== Escalation Ledger ==========
    ledger_write_retries: int = Field(
        default=3,
        description="Attempts per ledger write before giving up for this cycle",
        ge=1,
        le=10
    )
    ledger_retry_base_delay: float = Field(
        default=0.5,
        description="Base delay in seconds for exponential backoff between ledger writes",
        ge=0.0,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("evaluation_interval_seconds")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        """Ticker runs no more often than every 10 seconds, or is off."""
        if 0 < v < 10:
            raise ValueError("evaluation_interval_seconds must be 0 or >= 10")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class TaskStatus(str, Enum):
    """Task lifecycle statuses as written by the task store."""
    PENDING = "pending"
    STARTED = "started"
    ACKNOWLEDGED = "acknowledged"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PerformanceFlag(str, Enum):
    """Performance-cycle flag attached to a user."""
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class AlertKind(str, Enum):
    """Alert categories."""
    OVERDUE = "overdue"
    APPROACHING_DEADLINE = "approaching_deadline"
    RED_FLAG = "red_flag"
    YELLOW_FLAG = "yellow_flag"


class Severity(str, Enum):
    """Alert severities, most urgent first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


class DismissOutcome(str, Enum):
    """Result of a dismiss request against the ledger."""
    RESOLVED = "resolved"                    # open row(s) flipped to resolved
    ALREADY_DISMISSED = "already_dismissed"  # nothing open, resolved row exists
    SUPPRESSED = "suppressed"                # never logged, pre-resolved row created


SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
}
