"""
Alert Infrastructure Models
============================

SQLAlchemy ORM models for the alert module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column

from critical_alerts.config import AlertKind, Severity
from critical_alerts.infrastructure.database import Base


class EscalationModel(Base):
    """
    Database model for the StoredEscalation entity.

    Maps to the 'escalations' table.
    """
    __tablename__ = "escalations"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Ledger key: task id, or user-scoped key for standing user flags
    task_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    kind: Mapped[AlertKind] = mapped_column(String(50), nullable=False)

    # Snapshot of the alert when it was first seen
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    task_title: Mapped[str] = mapped_column(String(500), nullable=False)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    hours_overdue: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    severity: Mapped[Severity] = mapped_column(String(50), nullable=False)

    # Resolution (flipped once)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


# One open row per (task_id, kind); resolved rows are unconstrained history
Index(
    "uq_escalations_open_key",
    EscalationModel.task_id,
    EscalationModel.kind,
    unique=True,
    sqlite_where=EscalationModel.resolved == false(),
    postgresql_where=EscalationModel.resolved == false(),
)
