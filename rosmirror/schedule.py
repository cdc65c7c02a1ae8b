"""
Schedule Service - when the daily scheduled check may run

schedule.json:
    {"enabled": true, "daysOfWeek": ["Monday", ...], "checkTime": "02:00:00",
     "pausedUntil": null, "intervalMinutes": 60,
     "notifyOnCompletion": true, "notifyOnError": true}
"""
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Callable, Dict, List, Optional

import structlog

from rosmirror.constants import SCHEDULE_FILE_NAME, SCHEDULE_WINDOW_MINUTES
from rosmirror.utils import ensure_utc, isoformat_or_none, now_utc, read_json, safe_write_json

logger = structlog.get_logger("schedule")

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

STATUS_DISABLED = "Disabled"
STATUS_PAUSED = "Paused"
STATUS_RUNNING = "Running"


def parse_check_time(value) -> time:
    """Accepts "HH:MM" or "HH:MM:SS"."""
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid check time: {value!r}")
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid check time: {value!r}")
    try:
        return time(*(int(p) for p in parts))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid check time: {value!r}")


def normalize_days(days) -> List[str]:
    if not days:
        return list(WEEKDAYS)
    by_lower = {d.lower(): d for d in WEEKDAYS}
    normalized = []
    for day in days:
        name = by_lower.get(str(day).strip().lower())
        if name is None:
            raise ValueError(f"Unknown day of week: {day!r}")
        if name not in normalized:
            normalized.append(name)
    return normalized


@dataclass
class ScheduleConfig:
    enabled: bool = True
    days_of_week: List[str] = field(default_factory=lambda: list(WEEKDAYS))
    check_time: time = time(2, 0)
    paused_until: Optional[datetime] = None
    interval_minutes: int = 60
    notify_on_completion: bool = True
    notify_on_error: bool = True

    @classmethod
    def from_dict(cls, data: Dict) -> "ScheduleConfig":
        defaults = cls()
        interval = int(data.get("intervalMinutes", defaults.interval_minutes))
        if interval < 1:
            raise ValueError("intervalMinutes must be at least 1")
        return cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            days_of_week=normalize_days(data.get("daysOfWeek")),
            check_time=parse_check_time(data.get("checkTime", "02:00")),
            paused_until=ensure_utc(data.get("pausedUntil")),
            interval_minutes=interval,
            notify_on_completion=bool(data.get("notifyOnCompletion", defaults.notify_on_completion)),
            notify_on_error=bool(data.get("notifyOnError", defaults.notify_on_error)),
        )

    def to_dict(self) -> Dict:
        return {
            "enabled": self.enabled,
            "daysOfWeek": list(self.days_of_week),
            "checkTime": self.check_time.strftime("%H:%M:%S"),
            "pausedUntil": isoformat_or_none(self.paused_until),
            "intervalMinutes": self.interval_minutes,
            "notifyOnCompletion": self.notify_on_completion,
            "notifyOnError": self.notify_on_error,
        }


class ScheduleService:
    """Holds the schedule configuration and answers "should a check run now"."""

    def __init__(self, config_dir: str, clock: Callable[[], datetime] = now_utc):
        self.config_file = os.path.join(config_dir, SCHEDULE_FILE_NAME)
        self.clock = clock
        self._lock = threading.Lock()
        self._listeners: List[Callable[[ScheduleConfig], None]] = []
        self._config = self._load()

    def _load(self) -> ScheduleConfig:
        data = read_json(self.config_file)
        if data is None:
            config = ScheduleConfig()
            try:
                safe_write_json(self.config_file, config.to_dict())
                logger.info("created default schedule configuration", path=self.config_file)
            except OSError as e:
                logger.error("error saving schedule configuration", error=str(e))
            return config

        try:
            return ScheduleConfig.from_dict(data)
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("error loading schedule configuration, using defaults", error=str(e))
            return ScheduleConfig()

    def _save(self):
        safe_write_json(self.config_file, self._config.to_dict())

    def on_change(self, listener: Callable[[ScheduleConfig], None]):
        self._listeners.append(listener)

    def _notify(self, config: ScheduleConfig):
        for listener in self._listeners:
            listener(config)

    @property
    def config(self) -> ScheduleConfig:
        return self._config

    def is_paused(self) -> bool:
        paused_until = self._config.paused_until
        return paused_until is not None and paused_until > self.clock()

    # ----- mutations -----

    def update_config(self, data: Dict) -> ScheduleConfig:
        if data is None:
            raise ValueError("Schedule configuration is required")
        config = ScheduleConfig.from_dict(data)
        with self._lock:
            self._config = config
            self._save()
        logger.info("schedule configuration updated", **config.to_dict())
        self._notify(config)
        return config

    def pause(self, hours: float) -> datetime:
        if hours <= 0:
            raise ValueError("Pause duration must be positive")
        with self._lock:
            self._config.paused_until = self.clock() + timedelta(hours=hours)
            self._save()
            paused_until = self._config.paused_until
        logger.info("updates paused", paused_until=paused_until.isoformat())
        return paused_until

    def resume(self):
        with self._lock:
            self._config.paused_until = None
            self._save()
        logger.info("updates resumed")

    # ----- queries -----

    def should_run_now(self) -> bool:
        config = self._config
        if not config.enabled or self.is_paused():
            return False

        now = self.clock()
        scheduled = datetime.combine(now.date(), config.check_time, tzinfo=now.tzinfo)
        window_end = scheduled + timedelta(minutes=SCHEDULE_WINDOW_MINUTES)
        if scheduled <= now < window_end:
            return WEEKDAYS[now.weekday()] in config.days_of_week
        return False

    def next_check(self) -> Optional[datetime]:
        config = self._config
        if not config.enabled:
            return None

        now = self.clock()
        if self.is_paused():
            return config.paused_until

        today = now.date()
        scheduled = datetime.combine(today, config.check_time, tzinfo=now.tzinfo)
        if now < scheduled and WEEKDAYS[now.weekday()] in config.days_of_week:
            return scheduled

        for offset in range(1, 8):
            day = today + timedelta(days=offset)
            if WEEKDAYS[day.weekday()] in config.days_of_week:
                return datetime.combine(day, config.check_time, tzinfo=now.tzinfo)
        return None

    def status(self) -> Dict:
        config = self._config
        if not config.enabled:
            state = STATUS_DISABLED
        elif self.is_paused():
            state = STATUS_PAUSED
        else:
            state = STATUS_RUNNING

        next_check = self.next_check()
        seconds_until = 0
        if next_check is not None:
            seconds_until = max(0, int((next_check - self.clock()).total_seconds()))

        return {
            "status": state,
            "nextScheduledCheck": isoformat_or_none(next_check),
            "secondsUntilNextCheck": seconds_until,
            "config": config.to_dict(),
        }
