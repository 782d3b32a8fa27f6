"""
Shared fixtures for the alert engine tests.

Every test evaluates against a fixed instant; no test reads the wall clock.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from critical_alerts.alerts.application import IEscalationRepository
from critical_alerts.alerts.domain import Alert, AlertRules, StoredEscalation, Task, User
from critical_alerts.alerts.infrastructure import FixedClock
from critical_alerts.config import AlertKind, PerformanceFlag, Severity, TaskStatus
from critical_alerts.core import RepositoryException
from critical_alerts.infrastructure.database import create_tables

NOON = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TODAY = NOON.date().isoformat()


def at_hour(hour: int, minute: int = 0) -> datetime:
    """The fixed test day at the given UTC hour."""
    return NOON.replace(hour=hour, minute=minute)


def make_task(
    task_id: str = "t1",
    title: str = "Ship report",
    status: TaskStatus = TaskStatus.PENDING,
    user_id: str = "u1",
    deadline: Optional[datetime] = None,
    date: Optional[str] = None,
    created_by: Optional[str] = None,
) -> Task:
    return Task(
        id=task_id,
        title=title,
        status=status,
        user_id=user_id,
        deadline=deadline,
        date=date,
        created_by=created_by,
    )


def make_user(
    user_id: str = "u1",
    name: str = "Alice",
    performance_flag: Optional[PerformanceFlag] = None,
    flag_updated_at: Optional[datetime] = None,
    flag_reason: Optional[str] = None,
) -> User:
    return User(
        id=user_id,
        name=name,
        performance_flag=performance_flag,
        flag_updated_at=flag_updated_at,
        flag_reason=flag_reason,
    )


def make_alert(
    task_id: str = "t1",
    kind: AlertKind = AlertKind.OVERDUE,
    severity: Severity = Severity.CRITICAL,
    timestamp: datetime = NOON,
    user_id: str = "u1",
) -> Alert:
    return Alert(
        id=f"{kind.value}-{severity.value}-{task_id}",
        kind=kind,
        severity=severity,
        title=f"Alert for {task_id}",
        description="test alert",
        timestamp=timestamp,
        task_id=task_id,
        task_title=f"Task {task_id}",
        user_id=user_id,
        user_name="Alice",
        deadline=timestamp - timedelta(hours=3),
        hours_overdue=3,
    )


class FailingEscalationRepository(IEscalationRepository):
    """Repository whose every call raises, counting attempts."""

    def __init__(self):
        self.calls = 0

    def _fail(self):
        self.calls += 1
        raise RepositoryException("ledger unavailable")

    async def find_unresolved(self, task_id: str, kind: AlertKind) -> List[StoredEscalation]:
        self._fail()

    async def has_resolved(self, task_id: str, kind: AlertKind) -> bool:
        self._fail()

    async def add(self, escalation: StoredEscalation) -> Optional[StoredEscalation]:
        self._fail()

    async def resolve_open(self, task_id, kind, resolved_at, resolved_by) -> int:
        self._fail()

    async def resolved_keys(self) -> Set[str]:
        self._fail()

    async def list(self, resolved=None, limit=100, offset=0) -> List[StoredEscalation]:
        self._fail()


@pytest.fixture
def noon() -> datetime:
    return NOON


@pytest.fixture
def rules() -> AlertRules:
    return AlertRules()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOON)


@pytest.fixture
async def session_factory(tmp_path):
    """File-backed SQLite ledger with tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_tables(engine)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def failing_repository() -> FailingEscalationRepository:
    return FailingEscalationRepository()
