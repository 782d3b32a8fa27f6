"""
Alert Application Services
===========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: the ledger service owns dedup/dismiss, the monitor
  owns the evaluation loop
- Dependency Inversion: depend on abstractions (repositories, fact source,
  clock), not concrete implementations
"""

import asyncio
import contextlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence, Set, Tuple, TypeVar

from critical_alerts.alerts.domain import (
    Alert,
    AlertEvaluator,
    AlertRules,
    EvaluationSnapshot,
    StoredEscalation,
    Task,
    User,
)
from critical_alerts.config import AlertKind, DismissOutcome
from critical_alerts.core import RepositoryException, ResourceNotFoundException
from critical_alerts.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

T = TypeVar("T")


# ========== Interfaces (Dependency Inversion) ==========

class IClock(ABC):
    """Supplies the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware instant."""


@dataclass
class Subscription:
    """Handle returned by a fact source subscription."""

    _cancel: Callable[[], None]
    active: bool = True

    def unsubscribe(self) -> None:
        """End the subscription (safe to call twice)."""
        if self.active:
            self.active = False
            self._cancel()


class IFactSource(ABC):
    """
    Read-only source of task and user snapshots.

    Callbacks receive the complete current snapshot on every change.
    """

    @abstractmethod
    def subscribe_tasks(self, callback: Callable[[List[Task]], None]) -> Subscription:
        """Subscribe to task snapshots."""

    @abstractmethod
    def subscribe_users(self, callback: Callable[[List[User]], None]) -> Subscription:
        """Subscribe to user snapshots."""


class IAlertRulesProvider(ABC):
    """Interface for alert rules access."""

    @abstractmethod
    def get_rules(self) -> AlertRules:
        """Get current alert rules."""


class IEscalationRepository(ABC):
    """Interface for escalation ledger access."""

    @abstractmethod
    async def find_unresolved(self, task_id: str, kind: AlertKind) -> List[StoredEscalation]:
        """Unresolved rows for a ledger key."""

    @abstractmethod
    async def has_resolved(self, task_id: str, kind: AlertKind) -> bool:
        """Check whether any resolved row exists for a ledger key."""

    @abstractmethod
    async def add(self, escalation: StoredEscalation) -> Optional[StoredEscalation]:
        """
        Insert a row.

        Returns None when the store rejects a second unresolved row for the
        same key.
        """

    @abstractmethod
    async def resolve_open(
        self,
        task_id: str,
        kind: AlertKind,
        resolved_at: datetime,
        resolved_by: str
    ) -> int:
        """Resolve every unresolved row for a key; return how many flipped."""

    @abstractmethod
    async def resolved_keys(self) -> Set[str]:
        """Dismissal keys of all resolved rows."""

    @abstractmethod
    async def list(
        self,
        resolved: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[StoredEscalation]:
        """List rows, newest first."""


# ========== Application Services ==========

class EscalationLedgerService:
    """
    Reconciles computed alerts against the escalation ledger.

    Writes from the evaluation loop are best-effort: failures are retried,
    then logged, and the next cycle repeats the dedup check.
    """

    def __init__(
        self,
        repository: IEscalationRepository,
        clock: IClock,
        write_retries: int = 3,
        retry_base_delay: float = 0.5
    ):
        self._repo = repository
        self._clock = clock
        self._write_retries = max(1, write_retries)
        self._retry_base_delay = retry_base_delay

    async def log_escalations(self, alerts: Sequence[Alert]) -> dict:
        """
        Record critical alerts not already open in the ledger.

        Non-critical alerts are ignored. Never raises for store failures.

        Returns:
            Summary with counts for logged, already_open and failed
        """
        summary = {"logged": 0, "already_open": 0, "failed": 0}

        for alert in alerts:
            if not alert.is_critical:
                continue

            try:
                created = await self._with_retries(
                    "log_escalation", lambda: self._log_one(alert)
                )
            except RepositoryException as e:
                summary["failed"] += 1
                logger.error(
                    "Escalation ledger write failed",
                    extra={
                        "alert_id": alert.id,
                        "dismissal_key": alert.dismissal_key,
                        "error": e.message
                    }
                )
                continue

            if created:
                summary["logged"] += 1
            else:
                summary["already_open"] += 1

        return summary

    async def _log_one(self, alert: Alert) -> bool:
        open_rows = await self._repo.find_unresolved(alert.ledger_key, alert.kind)
        if open_rows:
            return False

        escalation = StoredEscalation.from_alert(alert, triggered_at=self._clock.now())
        stored = await self._repo.add(escalation)
        if stored is None:
            return False

        logger.info(
            "Escalation logged",
            extra={
                "escalation_id": stored.id,
                "task_id": stored.task_id,
                "kind": stored.kind.value,
                "hours_overdue": stored.hours_overdue
            }
        )
        return True

    async def dismiss(self, alert: Alert, actor_id: str) -> DismissOutcome:
        """
        Durably suppress an alert condition.

        Resolves open rows for the alert's key; when none are open and none
        were ever resolved, records a row that is resolved at creation.

        Raises:
            RepositoryException: If the ledger is unavailable
        """
        now = self._clock.now()
        key, kind = alert.ledger_key, alert.kind

        try:
            flipped = await self._repo.resolve_open(key, kind, now, actor_id)
            if flipped:
                outcome = DismissOutcome.RESOLVED
            elif await self._repo.has_resolved(key, kind):
                outcome = DismissOutcome.ALREADY_DISMISSED
            else:
                await self._repo.add(
                    StoredEscalation.from_alert(alert, triggered_at=now, resolved_by=actor_id)
                )
                outcome = DismissOutcome.SUPPRESSED
        except RepositoryException as e:
            logger.error(
                "Dismiss failed",
                extra={
                    "alert_id": alert.id,
                    "dismissal_key": alert.dismissal_key,
                    "actor_id": actor_id,
                    "error": e.message
                }
            )
            raise

        logger.info(
            "Alert dismissed",
            extra={
                "alert_id": alert.id,
                "dismissal_key": alert.dismissal_key,
                "actor_id": actor_id,
                "outcome": outcome.value,
                "rows_resolved": flipped
            }
        )
        return outcome

    async def dismissed_keys(self) -> Set[str]:
        """
        Keys of every dismissed condition.

        Fails open: an unreadable ledger yields an empty set so active
        conditions stay visible.
        """
        try:
            return await self._repo.resolved_keys()
        except RepositoryException as e:
            logger.warning(
                "Dismissed keys unavailable, showing all alerts",
                extra={"error": e.message}
            )
            return set()

    async def list_escalations(
        self,
        resolved: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[StoredEscalation]:
        """List ledger rows for audit views."""
        return await self._repo.list(resolved=resolved, limit=limit, offset=offset)

    async def _with_retries(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run `func`, retrying RepositoryException with exponential backoff."""
        for attempt in range(self._write_retries):
            try:
                return await func()
            except RepositoryException as e:
                if attempt == self._write_retries - 1:
                    raise
                logger.warning(
                    "Ledger operation failed, retrying",
                    extra={"operation": operation, "attempt": attempt + 1, "error": e.message}
                )
                await asyncio.sleep(self._retry_base_delay * (2 ** attempt))
        raise RepositoryException(f"{operation} not attempted")


class AlertMonitorService:
    """
    Long-lived evaluation loop.

    Fact changes and clock ticks both call `request_evaluation()`; a single
    task drains those requests and recomputes the alert set, so
    recomputation never overlaps. Bursts of requests coalesce into one
    cycle.
    """

    def __init__(
        self,
        fact_source: IFactSource,
        rules_provider: IAlertRulesProvider,
        clock: IClock,
        ledger: Optional[EscalationLedgerService] = None,
        persist_critical: bool = True
    ):
        self._fact_source = fact_source
        self._rules_provider = rules_provider
        self._clock = clock
        self._ledger = ledger
        self._persist_critical = persist_critical

        self._tasks: List[Task] = []
        self._users: List[User] = []
        self._subscriptions: List[Subscription] = []
        self._wakeup: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._evaluation_lock = asyncio.Lock()
        self._latest: Optional[EvaluationSnapshot] = None
        self._cycles = 0
        self._ledger_task: Optional[asyncio.Task] = None
        self._pending_critical: Optional[List[Alert]] = None

    async def start(self) -> None:
        """Subscribe to the fact source and start the evaluation loop."""
        if self.is_running:
            logger.warning("Alert monitor already running")
            return

        self._wakeup = asyncio.Event()
        self._subscriptions = [
            self._fact_source.subscribe_tasks(self._on_tasks),
            self._fact_source.subscribe_users(self._on_users),
        ]
        self._loop_task = asyncio.create_task(self._run(), name="alert-evaluation-loop")
        self.request_evaluation()

        logger.info("Alert monitor started")

    async def stop(self) -> None:
        """Unsubscribe and stop the loop (safe to call when not running)."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        if self._ledger_task is not None:
            self._ledger_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ledger_task
            self._ledger_task = None
        self._pending_critical = None

        self._wakeup = None
        logger.info("Alert monitor stopped", extra={"cycles": self._cycles})

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def cycles(self) -> int:
        """Completed evaluation cycles."""
        return self._cycles

    @property
    def latest(self) -> Optional[EvaluationSnapshot]:
        """Most recent evaluation, if any."""
        return self._latest

    def request_evaluation(self) -> None:
        """Ask the loop for a recomputation (no-op when stopped)."""
        if self._wakeup is not None:
            self._wakeup.set()

    def _on_tasks(self, tasks: List[Task]) -> None:
        self._tasks = list(tasks)
        self.request_evaluation()

    def _on_users(self, users: List[User]) -> None:
        self._users = list(users)
        self.request_evaluation()

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            try:
                await self.evaluate_now()
            except Exception:
                logger.exception("Alert evaluation cycle failed")

    async def evaluate_now(self) -> EvaluationSnapshot:
        """
        Recompute the alert set from the current snapshots.

        Critical alerts are handed to a background ledger writer when
        persistence is on. The snapshot is returned without waiting for it.
        """
        async with self._evaluation_lock:
            now = self._clock.now()
            rules = self._rules_provider.get_rules()
            tasks, users = self._tasks, self._users

            with log_latency(logger, "alert_evaluation", tasks=len(tasks), users=len(users)):
                alerts = AlertEvaluator.evaluate(tasks, users, now, rules)

            snapshot = EvaluationSnapshot(
                evaluated_at=now,
                alerts=alerts,
                counts=AlertEvaluator.count(alerts),
                task_count=len(tasks),
                user_count=len(users),
            )
            self._latest = snapshot
            self._cycles += 1

            if self._persist_critical and self._ledger is not None:
                critical = [a for a in alerts if a.is_critical]
                if critical:
                    self._hand_off(critical)

        return snapshot

    def _hand_off(self, critical: List[Alert]) -> None:
        # At most one writer in flight; a newer batch replaces an unsent one.
        self._pending_critical = critical
        if self._ledger_task is None or self._ledger_task.done():
            self._ledger_task = asyncio.create_task(
                self._write_escalations(), name="alert-ledger-writer"
            )

    async def _write_escalations(self) -> None:
        while self._pending_critical is not None:
            batch, self._pending_critical = self._pending_critical, None
            try:
                summary = await self._ledger.log_escalations(batch)
                logger.debug("Escalations reconciled", extra=summary)
            except Exception:
                logger.exception("Escalation hand-off failed")

    @property
    def ledger_busy(self) -> bool:
        """True while critical alerts are being written to the ledger."""
        return self._ledger_task is not None and not self._ledger_task.done()

    async def wait_for_ledger(self) -> None:
        """Wait until handed-off critical alerts have been written."""
        if self._ledger_task is not None:
            await self._ledger_task

    async def visible_alerts(
        self,
        user_id: Optional[str] = None,
        include_dismissed: bool = False
    ) -> Tuple[EvaluationSnapshot, List[Alert]]:
        """
        Latest alerts as a consumer should display them.

        Dismissed conditions are subtracted here, not in the evaluator.
        """
        snapshot = self._latest or await self.evaluate_now()
        alerts = snapshot.alerts

        if user_id:
            alerts = AlertEvaluator.for_user(alerts, user_id)

        if not include_dismissed and self._ledger is not None:
            dismissed = await self._ledger.dismissed_keys()
            alerts = AlertEvaluator.without_dismissed(alerts, dismissed)

        return snapshot, alerts

    def find_alert(self, alert_id: str) -> Alert:
        """
        Look up an alert in the latest evaluation.

        Raises:
            ResourceNotFoundException: If the alert is not currently active
        """
        if self._latest is not None:
            for alert in self._latest.alerts:
                if alert.id == alert_id:
                    return alert
        raise ResourceNotFoundException("Alert", alert_id)

    async def dismiss(self, alert_id: str, actor_id: str) -> Tuple[Alert, DismissOutcome]:
        """Dismiss an active alert by id."""
        if self._ledger is None:
            raise RepositoryException("Escalation ledger not configured")
        alert = self.find_alert(alert_id)
        outcome = await self._ledger.dismiss(alert, actor_id)
        return alert, outcome
