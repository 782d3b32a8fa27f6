"""
Alert Controllers (API Routes)
===============================

FastAPI routes for the critical alert engine.

Controllers are thin - they delegate to application services held on
`app.state` (monitor, ledger, fact source).
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from critical_alerts.alerts.application import (
    AlertCountsResponse,
    AlertListResponse,
    AlertMonitorService,
    AlertResponse,
    DismissedKeysResponse,
    DismissRequest,
    DismissResponse,
    EscalationLedgerService,
    EscalationListResponse,
    EscalationResponse,
    SnapshotAcceptedResponse,
    TaskSnapshotRequest,
    UserSnapshotRequest,
)
from critical_alerts.alerts.domain import AlertEvaluator
from critical_alerts.alerts.infrastructure import InMemoryFactSource
from critical_alerts.core import RepositoryException, ResourceNotFoundException
from critical_alerts.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/alerts", tags=["Critical Alerts"])


# ========== Dependencies ==========

def get_monitor(request: Request) -> AlertMonitorService:
    """Get the alert monitor instance."""
    monitor = getattr(request.app.state, "alert_monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Alert monitor not running"
        )
    return monitor


def get_ledger(request: Request) -> EscalationLedgerService:
    """Get the escalation ledger service instance."""
    ledger = getattr(request.app.state, "escalation_ledger", None)
    if ledger is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Escalation ledger not configured"
        )
    return ledger


def get_fact_source(request: Request) -> InMemoryFactSource:
    """Get the in-memory fact source, if that is the one wired in."""
    fact_source = getattr(request.app.state, "fact_source", None)
    if not isinstance(fact_source, InMemoryFactSource):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Snapshots are supplied by an external fact source"
        )
    return fact_source


def _alert_list(snapshot, alerts) -> AlertListResponse:
    return AlertListResponse(
        evaluated_at=snapshot.evaluated_at,
        alerts=[AlertResponse.from_domain(a) for a in alerts],
        counts=AlertCountsResponse.from_domain(AlertEvaluator.count(alerts)),
    )


# ========== Route Handlers ==========

@router.get(
    "",
    response_model=AlertListResponse,
    summary="List active alerts",
    description="""
    Alerts from the latest evaluation, ranked critical first then most recent.

    Dismissed conditions are removed unless `include_dismissed` is set.
    Counts cover the returned alerts.
    """
)
async def list_alerts(
    user_id: Optional[str] = Query(None, description="Only alerts for this assignee"),
    include_dismissed: bool = Query(False, description="Keep dismissed conditions"),
    monitor: AlertMonitorService = Depends(get_monitor)
):
    snapshot, alerts = await monitor.visible_alerts(
        user_id=user_id, include_dismissed=include_dismissed
    )
    return _alert_list(snapshot, alerts)


@router.post(
    "/evaluate",
    response_model=AlertListResponse,
    summary="Evaluate now",
    description="Force a recomputation and return the unfiltered result."
)
async def evaluate_alerts(monitor: AlertMonitorService = Depends(get_monitor)):
    snapshot = await monitor.evaluate_now()
    return _alert_list(snapshot, snapshot.alerts)


@router.post(
    "/{alert_id}/dismiss",
    response_model=DismissResponse,
    summary="Dismiss an alert",
    description="""
    Durably suppress an active alert.

    **Outcomes**:
    - `resolved`: an open ledger row was resolved
    - `already_dismissed`: the condition was dismissed before; nothing changed
    - `suppressed`: the alert was never logged; a pre-resolved row was recorded
    """,
    responses={
        404: {"description": "Alert is not active"},
        503: {"description": "Escalation ledger unavailable"},
    }
)
async def dismiss_alert(
    alert_id: str,
    body: DismissRequest,
    request: Request,
    monitor: AlertMonitorService = Depends(get_monitor)
):
    request_logger = get_context_logger(__name__, getattr(request.state, "correlation_id", None))

    try:
        alert, outcome = await monitor.dismiss(alert_id, body.actor_id)
    except ResourceNotFoundException as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except RepositoryException as e:
        request_logger.warning("Dismiss rejected, ledger unavailable", extra={"alert_id": alert_id})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return DismissResponse(
        alert_id=alert.id,
        dismissal_key=alert.dismissal_key,
        outcome=outcome.value,
    )


@router.get(
    "/dismissed-keys",
    response_model=DismissedKeysResponse,
    summary="Dismissed condition keys",
    description="`{task_id}-{kind}` for every resolved ledger row."
)
async def dismissed_keys(ledger: EscalationLedgerService = Depends(get_ledger)):
    keys = await ledger.dismissed_keys()
    return DismissedKeysResponse(keys=sorted(keys))


@router.get(
    "/escalations",
    response_model=EscalationListResponse,
    summary="List escalation ledger rows"
)
async def list_escalations(
    resolved: Optional[bool] = Query(None, description="Filter by resolution state"),
    limit: int = Query(100, ge=1, le=1000, description="Results per page"),
    offset: int = Query(0, ge=0, description="Page offset"),
    ledger: EscalationLedgerService = Depends(get_ledger)
):
    try:
        rows = await ledger.list_escalations(resolved=resolved, limit=limit, offset=offset)
    except RepositoryException as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    return EscalationListResponse(
        escalations=[EscalationResponse.from_domain(r) for r in rows],
        count=len(rows),
    )


@router.put(
    "/facts/tasks",
    response_model=SnapshotAcceptedResponse,
    summary="Publish task snapshot"
)
async def publish_tasks(
    request: TaskSnapshotRequest,
    fact_source: InMemoryFactSource = Depends(get_fact_source)
):
    fact_source.publish_tasks([t.to_domain() for t in request.tasks])
    logger.info("Task snapshot published", extra={"tasks": len(request.tasks)})
    return SnapshotAcceptedResponse(accepted=len(request.tasks))


@router.put(
    "/facts/users",
    response_model=SnapshotAcceptedResponse,
    summary="Publish user snapshot"
)
async def publish_users(
    request: UserSnapshotRequest,
    fact_source: InMemoryFactSource = Depends(get_fact_source)
):
    fact_source.publish_users([u.to_domain() for u in request.users])
    logger.info("User snapshot published", extra={"users": len(request.users)})
    return SnapshotAcceptedResponse(accepted=len(request.users))


# Export router for inclusion in main app
alerts_router = router
