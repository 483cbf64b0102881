"""Backup scheduling for automated backups."""

import functools
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from snapkeep.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE = {"enabled": False, "frequency": "daily", "time": "02:00", "weekday": 0}


def _parse_time(value: str) -> Tuple[int, int]:
    try:
        hour_text, minute_text = value.split(":")
        hour, minute = int(hour_text), int(minute_text)
    except (AttributeError, ValueError):
        raise ConfigurationError(f"Invalid schedule time: {value!r}", suggestions=["Use HH:MM, e.g. 02:00"])

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ConfigurationError(f"Schedule time out of range: {value}")
    return hour, minute


def next_fire_time(schedule: Dict[str, Any], now: datetime) -> datetime:
    """
    Compute the next automatic backup instant, strictly after ``now``.

    Args:
        schedule: ``{frequency: daily|weekly, time: "HH:MM", weekday}``, weekday 0 is Sunday
        now: Current time; naive or aware, the result uses the same timezone

    Returns:
        datetime: Next fire time
    """
    hour, minute = _parse_time(schedule.get("time", "02:00"))
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    frequency = schedule.get("frequency", "daily")
    if frequency == "weekly":
        # Python counts Monday as 0
        target = (int(schedule.get("weekday", 0)) - 1) % 7
        candidate += timedelta(days=(target - now.weekday()) % 7)
        if candidate <= now:
            candidate += timedelta(days=7)
    elif frequency == "daily":
        if candidate <= now:
            candidate += timedelta(days=1)
    else:
        raise ConfigurationError(f"Unsupported schedule frequency: {frequency}")

    return candidate


def _local_now() -> datetime:
    # Naive local time, offsets are resolved per instant across DST changes
    return datetime.now()


def _with_offset(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.astimezone()


class BackupScheduler:
    """Fires automatic backups on a daily or weekly schedule.

    Each firing arms a fresh one-shot timer, whether or not the backup
    succeeded.
    """

    def __init__(
        self,
        creator: Any,
        config_manager: Any = None,
        schedule: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = _local_now,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        """
        Initialize backup scheduler.

        Args:
            creator: Object exposing ``create_backup(origin)``
            config_manager: Persists schedule changes; its schedule section is used when given
            schedule: Schedule used when no config manager is given
            clock: Returns the current time
            timer_factory: Builds the one-shot timer, ``threading.Timer`` by default
        """
        self.creator = creator
        self.config_manager = config_manager
        if config_manager is not None:
            self.schedule = config_manager.get_section("schedule")
        else:
            self.schedule = dict(schedule or DEFAULT_SCHEDULE)
        self.clock = clock
        self.timer_factory = timer_factory
        self.next_run: Optional[datetime] = None
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._running = False
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """
        Arm the timer for the next scheduled backup.

        Returns:
            bool: False if the schedule is disabled
        """
        with self._lock:
            if not self.schedule.get("enabled"):
                logger.info("Automatic backups are disabled")
                return False

            self._running = True
            self._stopped.clear()
            self._arm()
        return True

    def stop(self) -> None:
        with self._lock:
            self._running = False
            self._cancel()
            self.next_run = None
        self._stopped.set()
        logger.info("Backup scheduler stopped")

    def update_schedule(self, schedule: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replace the schedule, persist it, and re-arm the timer.

        Args:
            schedule: New schedule ({enabled, frequency, time, weekday?})

        Returns:
            Dict[str, Any]: The stored schedule
        """
        if self.config_manager is not None:
            stored = self.config_manager.update_schedule(schedule)
        else:
            next_fire_time(schedule, self.clock())
            stored = dict(schedule)

        with self._lock:
            self.schedule = dict(stored)
            self._cancel()
            self.next_run = None
            if self.schedule.get("enabled"):
                self._running = True
                self._stopped.clear()
                self._arm()
            else:
                self._running = False
                self._stopped.set()

        logger.info(f"Backup schedule updated: {self._describe()}")
        return stored

    def get_schedule_info(self) -> Dict[str, Any]:
        """Get the schedule together with the next run time."""
        enabled = bool(self.schedule.get("enabled"))
        next_run = self.next_run
        if enabled and next_run is None:
            next_run = next_fire_time(self.schedule, self.clock())

        return {
            "enabled": enabled,
            "frequency": self.schedule.get("frequency", "daily"),
            "time": self.schedule.get("time", "02:00"),
            "weekday": self.schedule.get("weekday") if self.schedule.get("frequency") == "weekly" else None,
            "next_run": _with_offset(next_run).isoformat() if enabled and next_run else None,
        }

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until ``stop()`` is called, for foreground use.

        Returns:
            bool: True once the scheduler has stopped, False on timeout
        """
        return self._stopped.wait(timeout)

    def _arm(self) -> None:
        now = self.clock()
        self.next_run = next_fire_time(self.schedule, now)
        delay = max(self.next_run.timestamp() - now.timestamp(), 0.0)

        # A timer armed before a reschedule must not arm another one when it fires
        self._generation += 1
        self._timer = self.timer_factory(delay, functools.partial(self._fire, self._generation))
        self._timer.daemon = True
        self._timer.start()

        logger.info(f"Next automatic backup at {self.next_run.isoformat()}")

    def _cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        try:
            result = self.creator.create_backup("automatic")
            if not getattr(result, "success", False):
                logger.error(f"Automatic backup failed: {getattr(result, 'error', 'unknown error')}")
        except Exception as e:
            logger.exception(f"Automatic backup raised: {e}")
        finally:
            with self._lock:
                if self._running and generation == self._generation:
                    self._arm()

    def _describe(self) -> str:
        if not self.schedule.get("enabled"):
            return "disabled"
        description = f"{self.schedule.get('frequency', 'daily')} at {self.schedule.get('time', '02:00')}"
        if self.schedule.get("frequency") == "weekly":
            description += f" on weekday {self.schedule.get('weekday', 0)}"
        return description
