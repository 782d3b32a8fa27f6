"""
Tests for the pure alert evaluator: deadline rules, end-of-day rules,
user flags, exclusions and the same-day filter.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOON, TODAY, at_hour, make_task, make_user
from critical_alerts.alerts.domain import AlertEvaluator, AlertRules
from critical_alerts.config import AlertKind, PerformanceFlag, Severity, TaskStatus
from critical_alerts.core import ValidationException


def deadline_alerts(alerts):
    return [a for a in alerts if a.kind in (AlertKind.OVERDUE, AlertKind.APPROACHING_DEADLINE)]


class TestDeadlineRules:
    """Overdue and approaching-deadline classification."""

    def test_overdue_more_than_two_hours_is_critical(self):
        task = make_task(deadline=NOON - timedelta(minutes=150))

        alerts = AlertEvaluator.evaluate([task], [], NOON)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.kind == AlertKind.OVERDUE
        assert alert.severity == Severity.CRITICAL
        assert alert.hours_overdue == 2
        assert alert.id == "overdue-critical-t1"
        assert alert.title == "CRITICAL: Task Overdue by 2 hours"

    def test_overdue_within_two_hours_is_high(self):
        task = make_task(deadline=NOON - timedelta(minutes=30))

        alerts = AlertEvaluator.evaluate([task], [], NOON)

        assert len(alerts) == 1
        assert alerts[0].kind == AlertKind.OVERDUE
        assert alerts[0].severity == Severity.HIGH
        assert alerts[0].hours_overdue == 0
        assert alerts[0].id == "overdue-high-t1"

    def test_exactly_two_hours_overdue_is_high(self):
        task = make_task(deadline=NOON - timedelta(hours=2))

        alerts = AlertEvaluator.evaluate([task], [], NOON)

        assert [a.severity for a in alerts] == [Severity.HIGH]
        assert alerts[0].hours_overdue == 2

    def test_deadline_within_hour_is_approaching_medium(self):
        task = make_task(deadline=NOON + timedelta(minutes=30))

        alerts = AlertEvaluator.evaluate([task], [], NOON)

        assert len(alerts) == 1
        assert alerts[0].kind == AlertKind.APPROACHING_DEADLINE
        assert alerts[0].severity == Severity.MEDIUM
        assert alerts[0].minutes_remaining == 30
        assert alerts[0].title == "Urgent: 30 minutes remaining"

    def test_deadline_exactly_now_is_approaching(self):
        task = make_task(deadline=NOON)

        alerts = AlertEvaluator.evaluate([task], [], NOON)

        assert [a.kind for a in alerts] == [AlertKind.APPROACHING_DEADLINE]
        assert alerts[0].minutes_remaining == 0

    @pytest.mark.parametrize("offset", [timedelta(hours=1), timedelta(hours=2)])
    def test_no_alert_beyond_window(self, offset):
        task = make_task(deadline=NOON + offset)

        assert deadline_alerts(AlertEvaluator.evaluate([task], [], NOON)) == []

    def test_missing_deadline_raises_nothing(self):
        assert AlertEvaluator.evaluate([make_task()], [], NOON) == []

    def test_naive_deadline_read_in_rules_timezone(self):
        rules = AlertRules(timezone="America/New_York")
        now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)  # 08:00 in New York
        task = make_task(deadline=datetime(2026, 3, 10, 7, 30))

        alerts = AlertEvaluator.evaluate([task], [], now, rules)

        assert [a.severity for a in alerts] == [Severity.HIGH]
        assert alerts[0].hours_overdue == 0

    def test_custom_thresholds(self):
        rules = AlertRules(critical_overdue_hours=0.25, approaching_window_hours=3)
        overdue = make_task("late", deadline=NOON - timedelta(minutes=20))
        soon = make_task("soon", deadline=NOON + timedelta(hours=2))

        alerts = AlertEvaluator.evaluate([overdue, soon], [], NOON, rules)

        by_task = {a.task_id: a for a in alerts}
        assert by_task["late"].severity == Severity.CRITICAL
        assert by_task["soon"].kind == AlertKind.APPROACHING_DEADLINE


class TestEndOfDayRules:
    """Red and yellow flags for tasks dated today."""

    def test_red_flag_after_six_pm(self):
        task = make_task(date=TODAY)

        alerts = AlertEvaluator.evaluate([task], [], at_hour(19))

        assert len(alerts) == 1
        assert alerts[0].kind == AlertKind.RED_FLAG
        assert alerts[0].severity == Severity.CRITICAL
        assert alerts[0].id == "red-flag-6pm-t1"
        assert alerts[0].title == "CRITICAL: Task incomplete after 6 PM"

    def test_yellow_flag_after_four_pm(self):
        task = make_task(date=TODAY)

        alerts = AlertEvaluator.evaluate([task], [], at_hour(17))

        assert len(alerts) == 1
        assert alerts[0].kind == AlertKind.YELLOW_FLAG
        assert alerts[0].severity == Severity.MEDIUM
        assert alerts[0].id == "yellow-flag-4pm-t1"

    def test_yellow_flag_includes_acknowledged_tasks(self):
        task = make_task(date=TODAY, status=TaskStatus.ACKNOWLEDGED)

        alerts = AlertEvaluator.evaluate([task], [], at_hour(17))

        assert [a.kind for a in alerts] == [AlertKind.YELLOW_FLAG]

    def test_no_flag_in_the_morning(self):
        task = make_task(date=TODAY)

        assert AlertEvaluator.evaluate([task], [], at_hour(10)) == []

    def test_boundaries_are_inclusive(self):
        task = make_task(date=TODAY)

        assert AlertEvaluator.evaluate([task], [], at_hour(16))[0].kind == AlertKind.YELLOW_FLAG
        assert AlertEvaluator.evaluate([task], [], at_hour(18))[0].kind == AlertKind.RED_FLAG

    def test_other_days_are_ignored(self):
        task = make_task(date="2026-03-09")

        assert AlertEvaluator.evaluate([task], [], at_hour(19)) == []

    def test_deadline_and_day_rules_both_fire(self):
        task = make_task(date=TODAY, deadline=at_hour(16))

        alerts = AlertEvaluator.evaluate([task], [], at_hour(19))

        assert {a.id for a in alerts} == {"overdue-critical-t1", "red-flag-6pm-t1"}

    def test_local_hour_follows_rules_timezone(self):
        rules = AlertRules(timezone="Asia/Tokyo")
        # 10:00 UTC is 19:00 in Tokyo
        now = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
        task = make_task(date="2026-03-10")

        alerts = AlertEvaluator.evaluate([task], [], now, rules)

        assert [a.kind for a in alerts] == [AlertKind.RED_FLAG]

    def test_custom_flag_hours_change_labels(self):
        rules = AlertRules(yellow_flag_hour=14, red_flag_hour=17)
        task = make_task(date=TODAY)

        alerts = AlertEvaluator.evaluate([task], [], at_hour(17, 30), rules)

        assert alerts[0].id == "red-flag-5pm-t1"
        assert alerts[0].title == "CRITICAL: Task incomplete after 5 PM"


class TestUserFlags:
    """Standing red performance flags."""

    def test_red_flagged_user_raises_critical_alert(self):
        user = make_user(performance_flag=PerformanceFlag.RED, flag_reason="Missed three handoffs.")

        alerts = AlertEvaluator.evaluate([], [user], NOON)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.id == "user-red-flag-u1"
        assert alert.kind == AlertKind.RED_FLAG
        assert alert.severity == Severity.CRITICAL
        assert alert.task_id is None
        assert alert.timestamp == NOON
        assert alert.description.endswith("Missed three handoffs.")

    def test_flag_persists_across_evaluations(self):
        user = make_user(performance_flag=PerformanceFlag.RED)

        for minutes in range(0, 180, 60):
            alerts = AlertEvaluator.evaluate([], [user], NOON + timedelta(minutes=minutes))
            assert [a.id for a in alerts] == ["user-red-flag-u1"]

    def test_flag_timestamp_uses_flag_updated_at(self):
        flagged_at = at_hour(9)
        user = make_user(performance_flag=PerformanceFlag.RED, flag_updated_at=flagged_at)

        alerts = AlertEvaluator.evaluate([], [user], NOON)

        assert alerts[0].timestamp == flagged_at

    def test_default_flag_reason(self):
        user = make_user(performance_flag=PerformanceFlag.RED)

        alerts = AlertEvaluator.evaluate([], [user], NOON)

        assert alerts[0].description.endswith("Multiple operational failures detected.")

    @pytest.mark.parametrize("flag", [None, PerformanceFlag.GREEN, PerformanceFlag.YELLOW])
    def test_other_flags_raise_nothing(self, flag):
        assert AlertEvaluator.evaluate([], [make_user(performance_flag=flag)], NOON) == []

    def test_user_alert_ledger_key_is_user_scoped(self):
        user = make_user(user_id="u7", performance_flag=PerformanceFlag.RED)

        alert = AlertEvaluator.evaluate([], [user], NOON)[0]

        assert alert.ledger_key == "user-u7"
        assert alert.dismissal_key == "user-u7-red_flag"


class TestExclusions:
    """Completed tasks, team view and the same-day filter."""

    def test_completed_task_never_alerts(self):
        task = make_task(
            status=TaskStatus.COMPLETED,
            date=TODAY,
            deadline=at_hour(19) - timedelta(hours=5),
        )

        for hour in (10, 17, 19):
            assert AlertEvaluator.evaluate([task], [], at_hour(hour)) == []

    def test_team_view_skips_self_assigned_tasks(self):
        own = make_task("own", deadline=NOON - timedelta(hours=3), created_by="u1")
        assigned = make_task("assigned", deadline=NOON - timedelta(hours=3), created_by="lead")

        alerts = AlertEvaluator.evaluate([own, assigned], [], NOON, AlertRules(team_view=True))

        assert [a.task_id for a in alerts] == ["assigned"]

    def test_team_view_off_keeps_self_assigned_tasks(self):
        own = make_task("own", deadline=NOON - timedelta(hours=3), created_by="u1")

        assert len(AlertEvaluator.evaluate([own], [], NOON)) == 1

    def test_alerts_before_local_midnight_are_dropped(self):
        yesterday = make_task("old", deadline=NOON - timedelta(days=1))
        flagged = make_user(
            performance_flag=PerformanceFlag.RED,
            flag_updated_at=NOON - timedelta(days=2),
        )

        assert AlertEvaluator.evaluate([yesterday], [flagged], NOON) == []

    def test_unknown_assignee_name(self):
        task = make_task(user_id="ghost", deadline=NOON - timedelta(minutes=10))

        alerts = AlertEvaluator.evaluate([task], [make_user()], NOON)

        assert alerts[0].user_name == "Unknown User"

    def test_assignee_name_from_user_snapshot(self):
        task = make_task(deadline=NOON - timedelta(minutes=10))

        alerts = AlertEvaluator.evaluate([task], [make_user(name="Bea")], NOON)

        assert alerts[0].user_name == "Bea"
        assert alerts[0].description.startswith("Bea")


class TestDeterminism:

    def test_identical_inputs_give_identical_output(self):
        tasks = [
            make_task("a", deadline=NOON - timedelta(hours=3)),
            make_task("b", deadline=NOON - timedelta(minutes=10)),
            make_task("c", deadline=NOON + timedelta(minutes=20)),
            make_task("d", date=TODAY),
        ]
        users = [make_user(performance_flag=PerformanceFlag.RED)]

        first = AlertEvaluator.evaluate(tasks, users, NOON)
        second = AlertEvaluator.evaluate(tasks, users, NOON)

        assert first == second
        assert [a.id for a in first] == [a.id for a in second]

    def test_naive_now_is_rejected(self):
        with pytest.raises(ValidationException):
            AlertEvaluator.evaluate([], [], datetime(2026, 3, 10, 12, 0))
