"""
Tests for the evaluation loop: triggers, coalescing, ledger hand-off and
the consumer-side dismissed filter.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import NOON, make_task, make_user
from critical_alerts.alerts.application import AlertMonitorService, EscalationLedgerService
from critical_alerts.alerts.infrastructure import (
    AlertRulesManager,
    InMemoryFactSource,
    SQLAlchemyEscalationRepository,
)
from critical_alerts.config import AlertKind, DismissOutcome, PerformanceFlag, Severity
from critical_alerts.core import RepositoryException, ResourceNotFoundException


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def rules_manager(tmp_path) -> AlertRulesManager:
    manager = AlertRulesManager()
    manager.load(tmp_path / "alert_rules.yaml")
    return manager


@pytest.fixture
def fact_source() -> InMemoryFactSource:
    return InMemoryFactSource()


@pytest.fixture
def ledger(session_factory, clock) -> EscalationLedgerService:
    return EscalationLedgerService(
        SQLAlchemyEscalationRepository(session_factory), clock, retry_base_delay=0
    )


@pytest.fixture
async def monitor(fact_source, rules_manager, clock, ledger):
    service = AlertMonitorService(fact_source, rules_manager, clock, ledger=ledger)
    yield service
    await service.stop()


def overdue_task(task_id: str = "t1", minutes: int = 150):
    return make_task(task_id, deadline=NOON - timedelta(minutes=minutes))


class TestLifecycle:

    async def test_start_runs_first_evaluation(self, monitor, fact_source):
        fact_source.publish_tasks([overdue_task()])

        await monitor.start()
        await wait_until(lambda: monitor.cycles >= 1)

        assert monitor.is_running
        assert [a.id for a in monitor.latest.alerts] == ["overdue-critical-t1"]

    async def test_fact_change_triggers_evaluation(self, monitor, fact_source):
        await monitor.start()
        await wait_until(lambda: monitor.cycles >= 1)
        assert monitor.latest.alerts == []

        fact_source.publish_users([make_user(performance_flag=PerformanceFlag.RED)])
        await wait_until(lambda: monitor.cycles >= 2)

        assert [a.id for a in monitor.latest.alerts] == ["user-red-flag-u1"]

    async def test_tick_catches_time_driven_transitions(self, monitor, fact_source, clock):
        fact_source.publish_tasks([overdue_task(minutes=90)])
        await monitor.start()
        await wait_until(lambda: monitor.cycles >= 1)
        assert monitor.latest.alerts[0].severity == Severity.HIGH

        clock.advance(minutes=40)
        monitor.request_evaluation()
        await wait_until(lambda: monitor.cycles >= 2)

        assert monitor.latest.alerts[0].severity == Severity.CRITICAL

    async def test_burst_of_requests_coalesces(self, fact_source, rules_manager, clock):
        monitor = AlertMonitorService(fact_source, rules_manager, clock)
        await monitor.start()
        for i in range(5):
            fact_source.publish_tasks([overdue_task(f"t{j}") for j in range(i + 1)])
            monitor.request_evaluation()

        await wait_until(lambda: monitor.cycles >= 1)
        await asyncio.sleep(0.05)

        assert monitor.cycles == 1
        assert monitor.latest.task_count == 5
        await monitor.stop()

    async def test_stop_unsubscribes(self, monitor, fact_source):
        await monitor.start()
        assert fact_source.subscriber_count == 2

        await monitor.stop()

        assert fact_source.subscriber_count == 0
        assert not monitor.is_running
        monitor.request_evaluation()

    async def test_start_twice_is_harmless(self, monitor, fact_source):
        await monitor.start()
        await monitor.start()

        assert fact_source.subscriber_count == 2


class TestLedgerHandOff:

    async def test_critical_alerts_are_logged_once(self, monitor, fact_source, ledger):
        await monitor.start()
        fact_source.publish_tasks([overdue_task(), overdue_task("t2", minutes=30)])

        await monitor.evaluate_now()
        await monitor.evaluate_now()
        await monitor.wait_for_ledger()

        rows = await ledger.list_escalations()
        assert [(r.task_id, r.kind) for r in rows] == [("t1", AlertKind.OVERDUE)]

    async def test_persistence_can_be_disabled(self, fact_source, rules_manager, clock, ledger):
        monitor = AlertMonitorService(
            fact_source, rules_manager, clock, ledger=ledger, persist_critical=False
        )
        fact_source.publish_tasks([overdue_task()])
        await monitor.start()
        await wait_until(lambda: monitor.cycles >= 1)
        await monitor.stop()

        assert await ledger.list_escalations() == []

    async def test_ledger_outage_does_not_affect_alerts(
        self, fact_source, rules_manager, clock, failing_repository
    ):
        ledger = EscalationLedgerService(failing_repository, clock, write_retries=1, retry_base_delay=0)
        monitor = AlertMonitorService(fact_source, rules_manager, clock, ledger=ledger)
        await monitor.start()
        fact_source.publish_tasks([overdue_task()])

        snapshot = await monitor.evaluate_now()

        assert [a.id for a in snapshot.alerts] == ["overdue-critical-t1"]
        snapshot, visible = await monitor.visible_alerts()
        assert [a.id for a in visible] == ["overdue-critical-t1"]
        await monitor.stop()


class TestLedgerOutage:
    """A slow, failing ledger with real backoff never holds up evaluation."""

    @pytest.fixture
    async def slow_monitor(self, fact_source, rules_manager, clock, failing_repository):
        ledger = EscalationLedgerService(
            failing_repository, clock, write_retries=3, retry_base_delay=0.5
        )
        service = AlertMonitorService(fact_source, rules_manager, clock, ledger=ledger)
        fact_source.publish_tasks([overdue_task(f"t{i}", minutes=180) for i in range(4)])
        yield service
        await service.stop()

    async def test_forced_evaluation_returns_promptly(self, slow_monitor):
        snapshot = await asyncio.wait_for(slow_monitor.evaluate_now(), timeout=0.5)

        assert snapshot.counts.critical == 4
        assert slow_monitor.ledger_busy

    async def test_concurrent_evaluation_not_blocked_by_retries(self, slow_monitor):
        first = asyncio.create_task(slow_monitor.evaluate_now())
        await asyncio.sleep(0.05)

        second = await asyncio.wait_for(slow_monitor.evaluate_now(), timeout=0.5)

        assert (await first).counts.critical == 4
        assert second.counts.critical == 4

    async def test_loop_keeps_cycling_during_outage(self, slow_monitor, clock):
        await slow_monitor.start()
        await wait_until(lambda: slow_monitor.cycles >= 1, timeout=0.5)

        clock.advance(minutes=10)
        slow_monitor.request_evaluation()
        await wait_until(lambda: slow_monitor.cycles >= 2, timeout=0.5)

        assert slow_monitor.latest.evaluated_at == NOON + timedelta(minutes=10)

    async def test_one_writer_in_flight(self, slow_monitor, failing_repository):
        for _ in range(5):
            await slow_monitor.evaluate_now()
        await asyncio.sleep(0.05)

        # Only the first batch has started; later ones replace each other.
        assert failing_repository.calls == 1

    async def test_stop_cancels_pending_writes(self, slow_monitor):
        await slow_monitor.evaluate_now()
        assert slow_monitor.ledger_busy

        await asyncio.wait_for(slow_monitor.stop(), timeout=0.5)

        assert not slow_monitor.ledger_busy


class TestVisibleAlertsAndDismiss:

    async def test_dismissed_alert_is_hidden_from_consumers(self, monitor, fact_source):
        await monitor.start()
        fact_source.publish_tasks([overdue_task(), overdue_task("t2", minutes=30)])
        await monitor.evaluate_now()
        await monitor.wait_for_ledger()

        alert, outcome = await monitor.dismiss("overdue-critical-t1", "op")

        assert outcome == DismissOutcome.RESOLVED
        assert alert.task_id == "t1"
        _, visible = await monitor.visible_alerts()
        assert [a.id for a in visible] == ["overdue-high-t2"]

    async def test_evaluator_output_still_contains_dismissed_alert(self, monitor, fact_source):
        await monitor.start()
        fact_source.publish_tasks([overdue_task()])
        await monitor.evaluate_now()
        await monitor.dismiss("overdue-critical-t1", "op")

        snapshot = await monitor.evaluate_now()
        _, everything = await monitor.visible_alerts(include_dismissed=True)

        assert [a.id for a in snapshot.alerts] == ["overdue-critical-t1"]
        assert [a.id for a in everything] == ["overdue-critical-t1"]

    async def test_dismiss_medium_alert_suppresses_it(self, monitor, fact_source):
        await monitor.start()
        fact_source.publish_tasks([make_task(deadline=NOON + timedelta(minutes=20))])
        await monitor.evaluate_now()

        _, outcome = await monitor.dismiss("approaching-t1", "op")

        assert outcome == DismissOutcome.SUPPRESSED
        _, visible = await monitor.visible_alerts()
        assert visible == []

    async def test_visible_alerts_for_one_user(self, monitor, fact_source):
        await monitor.start()
        fact_source.publish_tasks([overdue_task("a"), make_task("b", user_id="u2", deadline=NOON - timedelta(hours=3))])
        await monitor.evaluate_now()

        _, visible = await monitor.visible_alerts(user_id="u2")

        assert [a.task_id for a in visible] == ["b"]

    async def test_visible_alerts_evaluates_when_nothing_cached(self, monitor, fact_source):
        await monitor.start()
        fact_source.publish_tasks([overdue_task()])

        snapshot, visible = await monitor.visible_alerts()

        assert snapshot.evaluated_at == NOON
        assert len(visible) == 1

    async def test_dismiss_unknown_alert(self, monitor):
        await monitor.evaluate_now()

        with pytest.raises(ResourceNotFoundException):
            await monitor.dismiss("overdue-critical-missing", "op")

    async def test_dismiss_without_ledger(self, fact_source, rules_manager, clock):
        monitor = AlertMonitorService(fact_source, rules_manager, clock)

        with pytest.raises(RepositoryException):
            await monitor.dismiss("anything", "op")
