"""
Background Jobs - periodic update checks
"""
from datetime import timedelta

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rosmirror.schedule import ScheduleConfig, ScheduleService
from rosmirror.sync import SyncOrchestrator
from rosmirror.utils import now_utc

logger = structlog.get_logger("jobs")

STARTUP_JOB_ID = "startup_update_check"
INTERVAL_JOB_ID = "update_check"


class JobScheduler:
    """Drives the sync orchestrator from a timer."""

    def __init__(self, orchestrator: SyncOrchestrator, schedule: ScheduleService, clock=now_utc):
        self.orchestrator = orchestrator
        self.schedule = schedule
        self.clock = clock
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.last_scheduled_date = None
        self._jobs_registered = False
        schedule.on_change(self._on_schedule_change)

    def start(self, run_at_startup: bool = True):
        self._register_jobs(run_at_startup)
        self.scheduler.start()
        logger.info("job scheduler initialized", interval_minutes=self.schedule.config.interval_minutes)

    def _register_jobs(self, run_at_startup: bool):
        """Register the startup check and the periodic check"""
        if self._jobs_registered:
            return

        if run_at_startup:
            self.scheduler.add_job(
                func=self.startup_check,
                trigger="date",
                id=STARTUP_JOB_ID,
                name="Initial update check",
                max_instances=1,
            )

        interval = self.schedule.config.interval_minutes
        self.scheduler.add_job(
            func=self.tick,
            trigger=IntervalTrigger(minutes=interval, start_date=now_utc() + timedelta(minutes=interval)),
            id=INTERVAL_JOB_ID,
            name="Update check",
            max_instances=1,
            coalesce=True,
        )

        self._jobs_registered = True
        logger.info("background jobs registered")

    def reschedule(self, interval_minutes: int):
        if not self._jobs_registered:
            return
        self.scheduler.reschedule_job(INTERVAL_JOB_ID, trigger=IntervalTrigger(minutes=interval_minutes))
        logger.info("update check rescheduled", interval_minutes=interval_minutes)

    def _on_schedule_change(self, config: ScheduleConfig):
        self.reschedule(config.interval_minutes)

    def startup_check(self):
        try:
            result = self.orchestrator.run()
        except Exception as e:
            logger.error("initial update check failed", error=str(e), exc_info=True)
            return None
        logger.info("initial update check completed", status=result.status.value, downloaded=result.downloaded)
        return result

    def tick(self):
        """One timer tick. Returns the sync result, or None when skipped."""
        if self.schedule.is_paused():
            logger.debug("update checks paused, skipping tick")
            return None

        today = self.clock().date()
        is_scheduled = self.schedule.should_run_now() and self.last_scheduled_date != today
        run_type = "scheduled" if is_scheduled else "background"

        try:
            result = self.orchestrator.run()
        except Exception as e:
            logger.error("error during update check", run_type=run_type, error=str(e), exc_info=True)
            return None

        if is_scheduled:
            self.last_scheduled_date = today

        if result.downloaded > 0:
            logger.info("update check downloaded files", run_type=run_type, downloaded=result.downloaded)
        else:
            logger.debug("update check completed, no new files", run_type=run_type, status=result.status.value)
        return result

    def shutdown(self):
        """Stop the scheduler and abort an in-flight sync"""
        self.orchestrator.close()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("job scheduler shutdown")
