"""
Alert Domain Entities
======================

Pure Python domain entities for critical alert monitoring.

Task and User are read-only snapshots owned by the fact source. Alert is a
transient view recomputed on every evaluation. StoredEscalation is the durable
ledger row written by the reconciler.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from critical_alerts.config import (
    AlertKind, PerformanceFlag, Severity, TaskStatus
)


def dismissal_key(ledger_key: str, kind: AlertKind | str) -> str:
    """Key under which a dismissal suppresses an alert condition."""
    kind_value = kind.value if isinstance(kind, AlertKind) else kind
    return f"{ledger_key}-{kind_value}"


def user_ledger_key(user_id: str) -> str:
    """Ledger key for alerts raised against a user rather than a task."""
    return f"user-{user_id}"


@dataclass(frozen=True)
class Task:
    """
    Task snapshot as supplied by the fact source.

    `date` is the calendar day the task belongs to, formatted YYYY-MM-DD.
    """

    id: str
    title: str
    status: TaskStatus
    user_id: str
    deadline: Optional[datetime] = None
    date: Optional[str] = None
    created_by: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        """Completed tasks never raise alerts."""
        return self.status == TaskStatus.COMPLETED

    @property
    def is_self_assigned(self) -> bool:
        """Check if the assignee created the task for themselves."""
        return self.created_by is not None and self.created_by == self.user_id


@dataclass(frozen=True)
class User:
    """User snapshot as supplied by the fact source."""

    id: str
    name: str
    performance_flag: Optional[PerformanceFlag] = None
    flag_updated_at: Optional[datetime] = None
    flag_reason: Optional[str] = None

    @property
    def is_red_flagged(self) -> bool:
        return self.performance_flag == PerformanceFlag.RED


@dataclass(frozen=True)
class Alert:
    """
    A currently-true alert condition.

    Identity across evaluations is only the deterministic `id`.
    """

    id: str
    kind: AlertKind
    severity: Severity
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

    @property
    def ledger_key(self) -> str:
        """Task id, or the user-scoped key for standing user flags."""
        if self.task_id:
            return self.task_id
        return user_ledger_key(self.user_id or "unknown")

    @property
    def dismissal_key(self) -> str:
        return dismissal_key(self.ledger_key, self.kind)

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL


@dataclass
class AlertCounts:
    """Aggregate counts over one alert list."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    total: int = 0
    overdue: int = 0
    approaching: int = 0
    red_flags: int = 0
    yellow_flags: int = 0

    @property
    def has_critical_alerts(self) -> bool:
        return self.critical > 0

    @property
    def has_alerts(self) -> bool:
        return self.total > 0


@dataclass
class StoredEscalation:
    """
    Escalation ledger row.

    At most one unresolved row exists per (task_id, kind). A row is resolved
    at most once; resolved rows are kept as history.
    """

    id: Optional[str]
    task_id: str
    kind: AlertKind
    user_id: str
    user_name: str
    task_title: str
    triggered_at: datetime
    severity: Severity
    deadline: Optional[datetime] = None
    hours_overdue: int = 0
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def dismissal_key(self) -> str:
        return dismissal_key(self.task_id, self.kind)

    @classmethod
    def from_alert(
        cls,
        alert: Alert,
        triggered_at: datetime,
        resolved_by: Optional[str] = None
    ) -> "StoredEscalation":
        """
        Seed a ledger row from an alert.

        Passing `resolved_by` creates the row already resolved, which is how
        a dismissal of a never-logged alert is recorded.
        """
        return cls(
            id=None,
            task_id=alert.ledger_key,
            kind=alert.kind,
            user_id=alert.user_id or "unknown",
            user_name=alert.user_name or "Unknown User",
            task_title=alert.task_title or alert.title,
            triggered_at=triggered_at,
            severity=alert.severity,
            deadline=alert.deadline,
            hours_overdue=alert.hours_overdue or 0,
            resolved=resolved_by is not None,
            resolved_at=triggered_at if resolved_by is not None else None,
            resolved_by=resolved_by,
        )


@dataclass
class EvaluationSnapshot:
    """Result of one evaluation cycle held by the monitor."""

    evaluated_at: datetime
    alerts: list[Alert] = field(default_factory=list)
    counts: AlertCounts = field(default_factory=AlertCounts)
    task_count: int = 0
    user_count: int = 0
