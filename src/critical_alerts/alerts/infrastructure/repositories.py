"""
Alert Infrastructure Repositories
==================================

Concrete implementations of repository interfaces using SQLAlchemy.

Each ledger operation runs in its own short session so the evaluation loop
and request handlers never share transactional state.
"""

from datetime import datetime, timezone
from typing import List, Optional, Set
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from critical_alerts.alerts.application import IEscalationRepository
from critical_alerts.alerts.domain import StoredEscalation, dismissal_key
from critical_alerts.alerts.infrastructure.models import EscalationModel
from critical_alerts.config import AlertKind, Severity
from critical_alerts.core import RepositoryException
from critical_alerts.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_domain(model: EscalationModel) -> StoredEscalation:
    return StoredEscalation(
        id=str(model.id),
        task_id=model.task_id,
        kind=AlertKind(model.kind),
        user_id=model.user_id,
        user_name=model.user_name,
        task_title=model.task_title,
        triggered_at=_to_utc(model.triggered_at),
        severity=Severity(model.severity),
        deadline=_to_utc(model.deadline),
        hours_overdue=model.hours_overdue,
        resolved=model.resolved,
        resolved_at=_to_utc(model.resolved_at),
        resolved_by=model.resolved_by,
    )


class SQLAlchemyEscalationRepository(IEscalationRepository):
    """
    SQLAlchemy implementation of the escalation ledger.

    Relies on the partial unique index on (task_id, kind) for open rows; an
    insert rejected by it means another writer already opened the key.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_unresolved(self, task_id: str, kind: AlertKind) -> List[StoredEscalation]:
        """Unresolved rows for a ledger key."""
        stmt = select(EscalationModel).where(
            EscalationModel.task_id == task_id,
            EscalationModel.kind == kind.value,
            EscalationModel.resolved.is_(False),
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to read open escalations: {e}")

    async def has_resolved(self, task_id: str, kind: AlertKind) -> bool:
        """Check whether any resolved row exists for a ledger key."""
        stmt = select(EscalationModel.id).where(
            EscalationModel.task_id == task_id,
            EscalationModel.kind == kind.value,
            EscalationModel.resolved.is_(True),
        ).limit(1)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to read resolved escalations: {e}")

    async def add(self, escalation: StoredEscalation) -> Optional[StoredEscalation]:
        """Insert a row; None when an open row for the key already exists."""
        model = EscalationModel(
            id=uuid4() if not escalation.id else UUID(escalation.id),
            task_id=escalation.task_id,
            kind=escalation.kind.value,
            user_id=escalation.user_id,
            user_name=escalation.user_name,
            task_title=escalation.task_title,
            deadline=_to_utc(escalation.deadline),
            triggered_at=_to_utc(escalation.triggered_at),
            hours_overdue=escalation.hours_overdue,
            severity=escalation.severity.value,
            resolved=escalation.resolved,
            resolved_at=_to_utc(escalation.resolved_at),
            resolved_by=escalation.resolved_by,
        )

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(model)
        except IntegrityError:
            logger.info(
                "Open escalation already exists",
                extra={"task_id": escalation.task_id, "kind": escalation.kind.value}
            )
            return None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to insert escalation: {e}")

        escalation.id = str(model.id)
        return escalation

    async def resolve_open(
        self,
        task_id: str,
        kind: AlertKind,
        resolved_at: datetime,
        resolved_by: str
    ) -> int:
        """
        Resolve every open row for a key.

        The `resolved = false` predicate makes this a compare-and-set: rows
        already flipped by a concurrent writer are left untouched.
        """
        stmt = (
            update(EscalationModel)
            .where(
                EscalationModel.task_id == task_id,
                EscalationModel.kind == kind.value,
                EscalationModel.resolved.is_(False),
            )
            .values(
                resolved=True,
                resolved_at=_to_utc(resolved_at),
                resolved_by=resolved_by,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    return result.rowcount or 0
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to resolve escalation: {e}")

    async def resolved_keys(self) -> Set[str]:
        """Dismissal keys of all resolved rows."""
        stmt = select(EscalationModel.task_id, EscalationModel.kind).where(
            EscalationModel.resolved.is_(True)
        ).distinct()
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return {dismissal_key(task_id, kind) for task_id, kind in result.all()}
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to read dismissed keys: {e}")

    async def list(
        self,
        resolved: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[StoredEscalation]:
        """List rows, newest first."""
        stmt = select(EscalationModel)
        if resolved is not None:
            stmt = stmt.where(EscalationModel.resolved.is_(resolved))
        stmt = stmt.order_by(EscalationModel.triggered_at.desc()).limit(limit).offset(offset)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_to_domain(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to list escalations: {e}")
