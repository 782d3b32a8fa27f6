"""
Alert Value Objects
====================

Immutable value objects for the alert domain.

AlertRules carries the thresholds the evaluator applies. It is loaded from
YAML by the rules manager and hot-reloaded on change.
"""

from datetime import tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AlertRules(BaseModel):
    """
    Alert thresholds.

    Deadline rules:
        overdue by more than `critical_overdue_hours`  -> critical
        overdue by (0, critical_overdue_hours]          -> high
        due within `approaching_window_hours`           -> medium

    End-of-day rules, for tasks dated today:
        local hour >= `red_flag_hour`    -> critical red flag
        local hour >= `yellow_flag_hour` -> medium yellow flag
    """

    model_config = ConfigDict(frozen=True)

    timezone: str = Field(default="UTC", description="IANA zone defining local day and hour")
    critical_overdue_hours: float = Field(default=2.0, gt=0)
    approaching_window_hours: float = Field(default=1.0, gt=0)
    red_flag_hour: int = Field(default=18, ge=0, le=23)
    yellow_flag_hour: int = Field(default=16, ge=0, le=23)
    team_view: bool = Field(
        default=False,
        description="Ignore tasks the assignee created for themselves"
    )
    default_flag_reason: str = Field(default="Multiple operational failures detected.")
    unknown_user_name: str = Field(default="Unknown User")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA zone names."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {v}")
        return v

    @model_validator(mode="after")
    def validate_flag_hours(self) -> "AlertRules":
        if self.yellow_flag_hour >= self.red_flag_hour:
            raise ValueError("yellow_flag_hour must be earlier than red_flag_hour")
        return self

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.timezone)
