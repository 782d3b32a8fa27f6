"""
Alert External Integrations
============================

External collaborators for the alert engine:
- Clocks (system and fixed)
- In-memory fact source for task/user snapshots
- YAML alert rules with watchdog hot-reload
- APScheduler ticker for time-driven re-evaluation
"""

import threading
from datetime import datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from critical_alerts.alerts.application import (
    IAlertRulesProvider,
    IClock,
    IFactSource,
    Subscription,
)
from critical_alerts.alerts.domain import AlertRules, Task, User
from critical_alerts.core import ConfigurationException, FactSourceException
from critical_alerts.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Clocks ==========

class SystemClock(IClock):
    """Wall clock in a fixed zone."""

    def __init__(self, tz: tzinfo = timezone.utc):
        self._tz = tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock(IClock):
    """Manually advanced clock for replays and tests."""

    def __init__(self, now: datetime):
        if now.tzinfo is None:
            raise ValueError("FixedClock requires a timezone-aware datetime")
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **delta: float) -> datetime:
        """Move forward by timedelta keyword arguments, e.g. advance(minutes=5)."""
        self._now = self._now + timedelta(**delta)
        return self._now


# ========== Fact Source ==========

class InMemoryFactSource(IFactSource):
    """
    Fact source holding the latest task and user snapshots in memory.

    Publishing replaces the snapshot and notifies every subscriber
    synchronously; new subscribers immediately receive the current snapshot.
    """

    def __init__(self):
        self._tasks: List[Task] = []
        self._users: List[User] = []
        self._task_subscribers: Dict[int, Callable[[List[Task]], None]] = {}
        self._user_subscribers: Dict[int, Callable[[List[User]], None]] = {}
        self._next_id = 0
        self._closed = False

    def subscribe_tasks(self, callback: Callable[[List[Task]], None]) -> Subscription:
        return self._subscribe(self._task_subscribers, callback, self._tasks)

    def subscribe_users(self, callback: Callable[[List[User]], None]) -> Subscription:
        return self._subscribe(self._user_subscribers, callback, self._users)

    def _subscribe(self, registry: Dict[int, Callable], callback: Callable, current: list) -> Subscription:
        if self._closed:
            raise FactSourceException("fact source is closed")

        subscriber_id = self._next_id
        self._next_id += 1
        registry[subscriber_id] = callback
        callback(list(current))

        return Subscription(lambda: registry.pop(subscriber_id, None))

    def publish_tasks(self, tasks: List[Task]) -> None:
        """Replace the task snapshot and notify subscribers."""
        self._tasks = list(tasks)
        for callback in list(self._task_subscribers.values()):
            callback(list(self._tasks))

    def publish_users(self, users: List[User]) -> None:
        """Replace the user snapshot and notify subscribers."""
        self._users = list(users)
        for callback in list(self._user_subscribers.values()):
            callback(list(self._users))

    @property
    def subscriber_count(self) -> int:
        return len(self._task_subscribers) + len(self._user_subscribers)

    def close(self) -> None:
        """Drop all subscribers and refuse new ones."""
        self._closed = True
        self._task_subscribers.clear()
        self._user_subscribers.clear()


# ========== Alert Rules ==========

class RulesFileHandler(FileSystemEventHandler):
    """Watchdog event handler for alert rules file changes."""

    def __init__(self, rules_manager: "AlertRulesManager", rules_path: Path):
        self.rules_manager = rules_manager
        self.rules_path = rules_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.rules_path.resolve():
            logger.info(f"Alert rules file changed: {event.src_path}")
            self.rules_manager.reload()


class AlertRulesManager(IAlertRulesProvider):
    """
    Thread-safe alert rules manager with hot-reload support.

    Uses watchdog to monitor file changes and reload rules without
    restarting the service. A failed reload keeps the previous rules.
    """

    def __init__(self):
        self._rules: Optional[AlertRules] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> AlertRules:
        """
        Initial rules load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        rules = self._load_from_file(self._path)
        with self._lock:
            self._rules = rules
        return rules

    def _load_from_file(self, path: Path) -> AlertRules:
        """Load and parse YAML rules file."""
        if not path.exists():
            logger.warning(f"Alert rules file not found: {path}, using defaults")
            return AlertRules()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return AlertRules(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(f"Invalid alert rules in {path}", {"error": str(e)})

    def reload(self) -> bool:
        """Reload rules from file."""
        if self._path is None:
            return False

        try:
            new_rules = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error(f"Failed to reload alert rules: {e.message}", extra=e.details)
            return False

        with self._lock:
            self._rules = new_rules
        logger.info("Alert rules reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the rules file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Rules not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(f"Rules file doesn't exist, skipping file watch: {self._path}")
            return

        try:
            self._observer = Observer()
            handler = RulesFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info(f"Started watching alert rules file: {self._path}")
        except OSError as e:
            logger.warning(f"File watching not available, using static rules: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the rules file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_rules(self) -> AlertRules:
        """Get current rules."""
        with self._lock:
            if self._rules is None:
                raise RuntimeError("Alert rules not loaded")
            return self._rules


# ========== Scheduler ==========

class AlertScheduler:
    """
    Wrapper for APScheduler driving time-based re-evaluation.

    Each tick only requests an evaluation; the monitor's loop does the work.
    """

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        """Start the scheduler with the given coroutine job function."""
        if self._running:
            logger.warning("Alert scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="alert_evaluation_tick",
            name="Alert Evaluation Tick",
            misfire_grace_time=self.interval_seconds,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Alert scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Alert scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
