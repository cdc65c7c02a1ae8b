"""
Tests for the schedule service and the background job scheduler
"""
import json
import os
from datetime import datetime, time, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from rosmirror.jobs.scheduler import INTERVAL_JOB_ID, JobScheduler
from rosmirror.schedule import ScheduleConfig, ScheduleService, parse_check_time
from rosmirror.sync import SyncResult, SyncStatus

# 2026-10-19 is a Monday
MONDAY_0202 = datetime(2026, 10, 19, 2, 2, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(MONDAY_0202)


@pytest.fixture
def schedule(config_dir, clock):
    return ScheduleService(config_dir, clock=clock)


class TestScheduleConfig:

    def test_default_file_created(self, schedule, config_dir):
        with open(os.path.join(config_dir, 'schedule.json')) as f:
            data = json.load(f)
        assert data['checkTime'] == '02:00:00'
        assert data['intervalMinutes'] == 60
        assert len(data['daysOfWeek']) == 7

    def test_empty_days_means_every_day(self):
        config = ScheduleConfig.from_dict({'daysOfWeek': []})
        assert len(config.days_of_week) == 7

    @pytest.mark.parametrize('value, expected', [
        ('02:30', time(2, 30)),
        ('23:59:30', time(23, 59, 30)),
    ])
    def test_parse_check_time(self, value, expected):
        assert parse_check_time(value) == expected

    @pytest.mark.parametrize('value', ['2pm', '25:00', '', None])
    def test_parse_check_time_invalid(self, value):
        with pytest.raises(ValueError):
            parse_check_time(value)

    def test_invalid_interval(self, schedule):
        with pytest.raises(ValueError):
            schedule.update_config({'intervalMinutes': 0})

    def test_corrupt_file_falls_back(self, config_dir, clock):
        with open(os.path.join(config_dir, 'schedule.json'), 'w') as f:
            json.dump({'checkTime': 'noon'}, f)
        service = ScheduleService(config_dir, clock=clock)
        assert service.config.check_time == time(2, 0)


class TestShouldRunNow:

    def test_inside_window(self, schedule):
        assert schedule.should_run_now()

    def test_window_is_five_minutes(self, schedule, clock):
        clock.now = MONDAY_0202.replace(minute=5)
        assert not schedule.should_run_now()
        clock.now = MONDAY_0202.replace(hour=1, minute=59)
        assert not schedule.should_run_now()

    def test_day_not_listed(self, schedule):
        schedule.update_config({'daysOfWeek': ['Tuesday']})
        assert not schedule.should_run_now()

    def test_disabled(self, schedule):
        schedule.update_config({'enabled': False})
        assert not schedule.should_run_now()
        assert schedule.status()['status'] == 'Disabled'

    def test_paused(self, schedule):
        schedule.pause(2)
        assert not schedule.should_run_now()
        assert schedule.status()['status'] == 'Paused'

        schedule.resume()
        assert schedule.should_run_now()
        assert schedule.status()['status'] == 'Running'


class TestNextCheck:

    def test_later_today(self, schedule, clock):
        clock.now = MONDAY_0202.replace(hour=1, minute=0)
        assert schedule.next_check() == MONDAY_0202.replace(hour=2, minute=0)
        assert schedule.status()['secondsUntilNextCheck'] == 3600

    def test_next_listed_day(self, schedule):
        schedule.update_config({'daysOfWeek': ['Monday', 'Thursday']})
        assert schedule.next_check() == datetime(2026, 10, 22, 2, 0, tzinfo=timezone.utc)

    def test_pause_end(self, schedule):
        paused_until = schedule.pause(3)
        assert paused_until == MONDAY_0202 + timedelta(hours=3)
        assert schedule.next_check() == paused_until

    def test_pause_persisted(self, schedule, config_dir, clock):
        schedule.pause(1)
        reloaded = ScheduleService(config_dir, clock=clock)
        assert reloaded.is_paused()

    def test_pause_requires_positive_hours(self, schedule):
        with pytest.raises(ValueError):
            schedule.pause(0)


class TestJobScheduler:

    @pytest.fixture
    def orchestrator(self):
        orchestrator = MagicMock()
        orchestrator.run.return_value = SyncResult(SyncStatus.SUCCESS, downloaded=2)
        return orchestrator

    @pytest.fixture
    def jobs(self, orchestrator, schedule, clock):
        return JobScheduler(orchestrator, schedule, clock=clock)

    def test_scheduled_run_once_per_day(self, jobs, orchestrator):
        jobs.tick()
        assert jobs.last_scheduled_date == MONDAY_0202.date()

        result = jobs.tick()
        assert result.status == SyncStatus.SUCCESS
        assert orchestrator.run.call_count == 2

    def test_background_run_outside_window(self, jobs, clock, orchestrator):
        clock.now = MONDAY_0202.replace(hour=12)
        jobs.tick()
        assert jobs.last_scheduled_date is None
        orchestrator.run.assert_called_once()

    def test_paused_tick_is_skipped(self, jobs, schedule, orchestrator):
        schedule.pause(1)
        assert jobs.tick() is None
        orchestrator.run.assert_not_called()

    def test_errors_do_not_escape(self, jobs, orchestrator):
        orchestrator.run.side_effect = RuntimeError('boom')
        assert jobs.tick() is None
        assert jobs.startup_check() is None

    def test_jobs_registered_with_single_instance(self, jobs):
        jobs._register_jobs(run_at_startup=False)
        job = jobs.scheduler.get_job(INTERVAL_JOB_ID)
        assert job.max_instances == 1
        assert job.coalesce is True

    def test_schedule_change_reschedules(self, jobs, schedule):
        jobs._register_jobs(run_at_startup=False)
        schedule.update_config({'intervalMinutes': 15})
        job = jobs.scheduler.get_job(INTERVAL_JOB_ID)
        assert job.trigger.interval == timedelta(minutes=15)

    def test_shutdown_cancels_sync(self, jobs, orchestrator):
        jobs.shutdown()
        orchestrator.close.assert_called_once()
