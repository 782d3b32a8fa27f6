"""
Alert Application DTOs
=======================

Data Transfer Objects for the alert API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import date as calendar_date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from critical_alerts.alerts.domain import Alert, AlertCounts, StoredEscalation, Task, User
from critical_alerts.config import PerformanceFlag, TaskStatus


# ========== Type Aliases for Literals ==========
TaskStatusStr = Literal["pending", "started", "acknowledged", "assigned", "in_progress", "completed"]
PerformanceFlagStr = Literal["green", "yellow", "red"]
AlertKindStr = Literal["overdue", "approaching_deadline", "red_flag", "yellow_flag"]
SeverityStr = Literal["critical", "high", "medium"]
DismissOutcomeStr = Literal["resolved", "already_dismissed", "suppressed"]


# ========== Request DTOs ==========

class TaskSnapshotDTO(BaseModel):
    """One task as published by the fact source."""
    id: str = Field(..., min_length=1, description="Task ID")
    title: str = Field(..., min_length=1, description="Task title")
    status: TaskStatusStr = Field(default="pending", description="Task status")
    user_id: str = Field(..., min_length=1, description="Assignee user ID")
    deadline: Optional[datetime] = Field(None, description="Task deadline")
    date: Optional[str] = Field(None, description="Calendar day the task belongs to (YYYY-MM-DD)")
    created_by: Optional[str] = Field(None, description="User who created the task")

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: Optional[str]) -> Optional[str]:
        """Ensure date is an ISO calendar day."""
        if v is not None:
            calendar_date.fromisoformat(v)
        return v

    def to_domain(self) -> Task:
        return Task(
            id=self.id,
            title=self.title,
            status=TaskStatus(self.status),
            user_id=self.user_id,
            deadline=self.deadline,
            date=self.date,
            created_by=self.created_by,
        )


class UserSnapshotDTO(BaseModel):
    """One user as published by the fact source."""
    id: str = Field(..., min_length=1, description="User ID")
    name: str = Field(..., min_length=1, description="Display name")
    performance_flag: Optional[PerformanceFlagStr] = Field(None, description="Performance flag")
    flag_updated_at: Optional[datetime] = Field(None, description="When the flag last changed")
    flag_reason: Optional[str] = Field(None, description="Why the flag was raised")

    def to_domain(self) -> User:
        return User(
            id=self.id,
            name=self.name,
            performance_flag=PerformanceFlag(self.performance_flag) if self.performance_flag else None,
            flag_updated_at=self.flag_updated_at,
            flag_reason=self.flag_reason,
        )


class TaskSnapshotRequest(BaseModel):
    """Full task snapshot."""
    tasks: List[TaskSnapshotDTO] = Field(default_factory=list)


class UserSnapshotRequest(BaseModel):
    """Full user snapshot."""
    users: List[UserSnapshotDTO] = Field(default_factory=list)


class DismissRequest(BaseModel):
    """Request body for dismissing an alert."""
    actor_id: str = Field(..., min_length=1, description="User dismissing the alert")


# ========== Response DTOs ==========

class AlertResponse(BaseModel):
    """Response model for an alert."""
    id: str
    kind: AlertKindStr
    severity: SeverityStr
    title: str
    description: str
    timestamp: datetime
    task_id: Optional[str] = None
    task_title: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    deadline: Optional[datetime] = None
    hours_overdue: Optional[int] = None
    minutes_remaining: Optional[int] = None
    dismissal_key: str

    @classmethod
    def from_domain(cls, alert: Alert) -> "AlertResponse":
        return cls(
            id=alert.id,
            kind=alert.kind.value,
            severity=alert.severity.value,
            title=alert.title,
            description=alert.description,
            timestamp=alert.timestamp,
            task_id=alert.task_id,
            task_title=alert.task_title,
            user_id=alert.user_id,
            user_name=alert.user_name,
            deadline=alert.deadline,
            hours_overdue=alert.hours_overdue,
            minutes_remaining=alert.minutes_remaining,
            dismissal_key=alert.dismissal_key,
        )


class AlertCountsResponse(BaseModel):
    """Counts by severity and kind."""
    critical: int
    high: int
    medium: int
    total: int
    overdue: int
    approaching: int
    red_flags: int
    yellow_flags: int
    has_critical_alerts: bool
    has_alerts: bool

    @classmethod
    def from_domain(cls, counts: AlertCounts) -> "AlertCountsResponse":
        return cls(
            critical=counts.critical,
            high=counts.high,
            medium=counts.medium,
            total=counts.total,
            overdue=counts.overdue,
            approaching=counts.approaching,
            red_flags=counts.red_flags,
            yellow_flags=counts.yellow_flags,
            has_critical_alerts=counts.has_critical_alerts,
            has_alerts=counts.has_alerts,
        )


class AlertListResponse(BaseModel):
    """Response model for the alert list."""
    evaluated_at: datetime = Field(..., description="Instant of the evaluation")
    alerts: List[AlertResponse] = Field(default_factory=list)
    counts: AlertCountsResponse = Field(..., description="Counts over the returned alerts")


class DismissResponse(BaseModel):
    """Response model for a dismissal."""
    alert_id: str
    dismissal_key: str
    outcome: DismissOutcomeStr


class DismissedKeysResponse(BaseModel):
    """Keys of dismissed alert conditions."""
    keys: List[str] = Field(default_factory=list)


class EscalationResponse(BaseModel):
    """Response model for an escalation ledger row."""
    id: str
    task_id: str
    kind: AlertKindStr
    user_id: str
    user_name: str
    task_title: str
    deadline: Optional[datetime] = None
    triggered_at: datetime
    hours_overdue: int
    severity: SeverityStr
    resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @classmethod
    def from_domain(cls, escalation: StoredEscalation) -> "EscalationResponse":
        return cls(
            id=escalation.id or "",
            task_id=escalation.task_id,
            kind=escalation.kind.value,
            user_id=escalation.user_id,
            user_name=escalation.user_name,
            task_title=escalation.task_title,
            deadline=escalation.deadline,
            triggered_at=escalation.triggered_at,
            hours_overdue=escalation.hours_overdue,
            severity=escalation.severity.value,
            resolved=escalation.resolved,
            resolved_at=escalation.resolved_at,
            resolved_by=escalation.resolved_by,
        )


class EscalationListResponse(BaseModel):
    """Response model for ledger listings."""
    escalations: List[EscalationResponse] = Field(default_factory=list)
    count: int


class SnapshotAcceptedResponse(BaseModel):
    """Response model for snapshot publication."""
    accepted: int = Field(..., description="Number of records in the published snapshot")
