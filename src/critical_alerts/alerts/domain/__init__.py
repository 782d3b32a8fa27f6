"""
Alert Domain Layer
==================

Domain layer for the critical alert module.

Contains:
- Entities: Task, User, Alert, StoredEscalation and aggregates
- Value Objects: AlertRules
- Domain Services: AlertEvaluator (pure rule evaluation and ranking)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from critical_alerts.alerts.domain.entities import (
    Alert,
    AlertCounts,
    EvaluationSnapshot,
    StoredEscalation,
    Task,
    User,
    dismissal_key,
    user_ledger_key,
)
from critical_alerts.alerts.domain.evaluator import AlertEvaluator
from critical_alerts.alerts.domain.value_objects import AlertRules

__all__ = [
    # Entities
    "Task",
    "User",
    "Alert",
    "AlertCounts",
    "StoredEscalation",
    "EvaluationSnapshot",
    "dismissal_key",
    "user_ledger_key",
    # Value Objects & Services
    "AlertRules",
    "AlertEvaluator",
]
