"""
Alert Evaluator
================

Pure rule evaluation over task and user snapshots.

Stateless domain service: no I/O, no clock reads. Everything time-dependent
derives from the `now` argument, so identical inputs yield identical output.
"""

import math
from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional, Set

from critical_alerts.config import AlertKind, SEVERITY_RANK, Severity
from critical_alerts.core import ValidationException
from critical_alerts.alerts.domain.entities import Alert, AlertCounts, Task, User
from critical_alerts.alerts.domain.value_objects import AlertRules


def _localize(value: datetime, tz: tzinfo) -> datetime:
    """Interpret naive datetimes in the rules' local zone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


def _hour_label(hour: int) -> str:
    """18 -> '6 PM', 0 -> '12 AM'."""
    suffix = "AM" if hour < 12 else "PM"
    display = hour % 12 or 12
    return f"{display} {suffix}"


class AlertEvaluator:
    """
    Rule evaluator, severity ranker and alert-list helpers.

    All methods are static and side-effect free.
    """

    @staticmethod
    def evaluate(
        tasks: Iterable[Task],
        users: Iterable[User],
        now: datetime,
        rules: Optional[AlertRules] = None
    ) -> List[Alert]:
        """
        Compute every alert that holds at `now`, ranked.

        Args:
            tasks: Task snapshot
            users: User snapshot
            now: Evaluation instant (timezone-aware)
            rules: Thresholds; defaults apply when omitted

        Returns:
            Ranked alerts, excluding anything timestamped before local midnight

        Raises:
            ValidationException: If `now` is naive
        """
        if now.tzinfo is None:
            raise ValidationException("evaluation instant must be timezone-aware")

        rules = rules or AlertRules()
        tz = rules.tz
        local_now = now.astimezone(tz)
        users = list(users)
        user_names: Dict[str, str] = {user.id: user.name for user in users}

        alerts: List[Alert] = []

        for task in tasks:
            if task.is_completed:
                continue
            if rules.team_view and task.is_self_assigned:
                continue

            user_name = user_names.get(task.user_id, rules.unknown_user_name)

            deadline_alert = AlertEvaluator._deadline_alert(task, user_name, local_now, rules)
            if deadline_alert:
                alerts.append(deadline_alert)

            day_alert = AlertEvaluator._end_of_day_alert(task, user_name, local_now, rules)
            if day_alert:
                alerts.append(day_alert)

        for user in users:
            if user.is_red_flagged:
                alerts.append(AlertEvaluator._user_flag_alert(user, local_now, rules))

        start_of_day = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        todays = [a for a in alerts if a.timestamp >= start_of_day]

        return AlertEvaluator.rank(todays)

    @staticmethod
    def _deadline_alert(
        task: Task,
        user_name: str,
        now: datetime,
        rules: AlertRules
    ) -> Optional[Alert]:
        if task.deadline is None:
            return None

        deadline = _localize(task.deadline, rules.tz)
        diff_hours = (now - deadline).total_seconds() / 3600

        if diff_hours > rules.critical_overdue_hours:
            hours = math.floor(diff_hours)
            return Alert(
                id=f"overdue-critical-{task.id}",
                kind=AlertKind.OVERDUE,
                severity=Severity.CRITICAL,
                title=f"CRITICAL: Task Overdue by {hours} hours",
                description=f'{user_name} - "{task.title}" is severely overdue (Red Flag)',
                timestamp=deadline,
                task_id=task.id,
                task_title=task.title,
                user_id=task.user_id,
                user_name=user_name,
                deadline=deadline,
                hours_overdue=hours,
            )

        if diff_hours > 0:
            hours = math.floor(diff_hours)
            return Alert(
                id=f"overdue-high-{task.id}",
                kind=AlertKind.OVERDUE,
                severity=Severity.HIGH,
                title=f"Task Overdue: {task.title}",
                description=f"{user_name} is late by {hours} hours",
                timestamp=deadline,
                task_id=task.id,
                task_title=task.title,
                user_id=task.user_id,
                user_name=user_name,
                deadline=deadline,
                hours_overdue=hours,
            )

        if diff_hours > -rules.approaching_window_hours:
            minutes = math.floor(abs(diff_hours * 60))
            return Alert(
                id=f"approaching-{task.id}",
                kind=AlertKind.APPROACHING_DEADLINE,
                severity=Severity.MEDIUM,
                title=f"Urgent: {minutes} minutes remaining",
                description=f'{user_name} - "{task.title}" deadline approaching',
                timestamp=now,
                task_id=task.id,
                task_title=task.title,
                user_id=task.user_id,
                user_name=user_name,
                deadline=deadline,
                minutes_remaining=minutes,
            )

        return None

    @staticmethod
    def _end_of_day_alert(
        task: Task,
        user_name: str,
        now: datetime,
        rules: AlertRules
    ) -> Optional[Alert]:
        if task.date != now.date().isoformat():
            return None

        if now.hour >= rules.red_flag_hour:
            label = _hour_label(rules.red_flag_hour)
            return Alert(
                id=f"red-flag-{label.replace(' ', '').lower()}-{task.id}",
                kind=AlertKind.RED_FLAG,
                severity=Severity.CRITICAL,
                title=f"CRITICAL: Task incomplete after {label}",
                description=f'{user_name} - "{task.title}" still pending',
                timestamp=now,
                task_id=task.id,
                task_title=task.title,
                user_id=task.user_id,
                user_name=user_name,
            )

        if now.hour >= rules.yellow_flag_hour:
            label = _hour_label(rules.yellow_flag_hour)
            return Alert(
                id=f"yellow-flag-{label.replace(' ', '').lower()}-{task.id}",
                kind=AlertKind.YELLOW_FLAG,
                severity=Severity.MEDIUM,
                title=f"Warning: {label} - Task pending",
                description=f'{user_name} - "{task.title}" needs attention',
                timestamp=now,
                task_id=task.id,
                task_title=task.title,
                user_id=task.user_id,
                user_name=user_name,
            )

        return None

    @staticmethod
    def _user_flag_alert(user: User, now: datetime, rules: AlertRules) -> Alert:
        timestamp = _localize(user.flag_updated_at, rules.tz) if user.flag_updated_at else now
        reason = user.flag_reason or rules.default_flag_reason
        return Alert(
            id=f"user-red-flag-{user.id}",
            kind=AlertKind.RED_FLAG,
            severity=Severity.CRITICAL,
            title=f"CRITICAL PERFORMANCE FLAG: {user.name}",
            description=f"{user.name} is in the Red Zone. {reason}",
            timestamp=timestamp,
            user_id=user.id,
            user_name=user.name,
        )

    @staticmethod
    def rank(alerts: Iterable[Alert]) -> List[Alert]:
        """
        Order alerts by severity (critical first), then most recent first.

        Stable: alerts equal on both keys keep their input order.
        """
        return sorted(
            alerts,
            key=lambda a: (SEVERITY_RANK[a.severity], -a.timestamp.timestamp())
        )

    @staticmethod
    def count(alerts: Iterable[Alert]) -> AlertCounts:
        """Aggregate counts by severity and by kind."""
        counts = AlertCounts()
        for alert in alerts:
            counts.total += 1
            if alert.severity == Severity.CRITICAL:
                counts.critical += 1
            elif alert.severity == Severity.HIGH:
                counts.high += 1
            else:
                counts.medium += 1

            if alert.kind == AlertKind.OVERDUE:
                counts.overdue += 1
            elif alert.kind == AlertKind.APPROACHING_DEADLINE:
                counts.approaching += 1
            elif alert.kind == AlertKind.RED_FLAG:
                counts.red_flags += 1
            else:
                counts.yellow_flags += 1
        return counts

    @staticmethod
    def for_user(alerts: Iterable[Alert], user_id: str) -> List[Alert]:
        """Restrict alerts to one assignee, keeping order."""
        return [a for a in alerts if a.user_id == user_id]

    @staticmethod
    def without_dismissed(alerts: Iterable[Alert], dismissed_keys: Set[str]) -> List[Alert]:
        """Drop alerts whose dismissal key is in the dismissed set, keeping order."""
        return [a for a in alerts if a.dismissal_key not in dismissed_keys]
