"""
Alert Application Layer
=======================

Application layer for the critical alert module.

Contains:
- Services: Orchestrate the evaluation loop and the escalation ledger
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from critical_alerts.alerts.application.dto import (
    AlertCountsResponse,
    AlertListResponse,
    AlertResponse,
    DismissedKeysResponse,
    DismissRequest,
    DismissResponse,
    EscalationListResponse,
    EscalationResponse,
    SnapshotAcceptedResponse,
    TaskSnapshotDTO,
    TaskSnapshotRequest,
    UserSnapshotDTO,
    UserSnapshotRequest,
)
from critical_alerts.alerts.application.services import (
    AlertMonitorService,
    EscalationLedgerService,
    IAlertRulesProvider,
    IClock,
    IEscalationRepository,
    IFactSource,
    Subscription,
)

__all__ = [
    # DTOs
    "TaskSnapshotDTO",
    "UserSnapshotDTO",
    "TaskSnapshotRequest",
    "UserSnapshotRequest",
    "DismissRequest",
    "AlertResponse",
    "AlertCountsResponse",
    "AlertListResponse",
    "DismissResponse",
    "DismissedKeysResponse",
    "EscalationResponse",
    "EscalationListResponse",
    "SnapshotAcceptedResponse",
    # Services
    "AlertMonitorService",
    "EscalationLedgerService",
    # Interfaces
    "IClock",
    "IFactSource",
    "Subscription",
    "IAlertRulesProvider",
    "IEscalationRepository",
]
