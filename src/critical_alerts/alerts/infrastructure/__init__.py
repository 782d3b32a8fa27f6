"""
Alert Infrastructure Layer
==========================

Infrastructure implementations for the alert module:
- Models: SQLAlchemy ORM models
- Repositories: Escalation ledger data access
- External: Clocks, fact source, rules file watcher, scheduler
"""

from critical_alerts.alerts.infrastructure.models import EscalationModel
from critical_alerts.alerts.infrastructure.repositories import SQLAlchemyEscalationRepository
from critical_alerts.alerts.infrastructure.external import (
    AlertRulesManager,
    AlertScheduler,
    FixedClock,
    InMemoryFactSource,
    SystemClock,
)

__all__ = [
    "EscalationModel",
    "SQLAlchemyEscalationRepository",
    "AlertRulesManager",
    "AlertScheduler",
    "FixedClock",
    "InMemoryFactSource",
    "SystemClock",
]
