"""Tests for the APScheduler-backed recurring job adapter.

The scheduler is never started, so jobs stay pending and nothing fires.
"""

from datetime import timedelta

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from entitlement_client.timers import APSchedulerTimers


@pytest.fixture
def aps_timers():
    return APSchedulerTimers(BackgroundScheduler(timezone="UTC"))


def _noop():
    pass


class TestAPSchedulerTimers:
    def test_schedule_and_lookup(self, aps_timers):
        aps_timers.schedule_recurring("widget_validate_install", timedelta(hours=1), _noop)

        assert aps_timers.is_scheduled("widget_validate_install")
        assert not aps_timers.is_scheduled("other")

    def test_interval(self, aps_timers):
        aps_timers.schedule_recurring("widget_validate_install", timedelta(hours=1), _noop)

        job = aps_timers.scheduler.get_job("widget_validate_install")
        assert job.trigger.interval == timedelta(hours=1)

    def test_rescheduling_replaces(self, aps_timers):
        aps_timers.schedule_recurring("job", timedelta(hours=1), _noop)
        aps_timers.schedule_recurring("job", timedelta(hours=2), _noop)

        assert len(aps_timers.scheduler.get_jobs()) == 1

    def test_cancel(self, aps_timers):
        aps_timers.schedule_recurring("job", timedelta(hours=1), _noop)

        aps_timers.cancel_recurring("job")

        assert not aps_timers.is_scheduled("job")

    def test_cancel_unknown_is_harmless(self, aps_timers):
        aps_timers.cancel_recurring("missing")
        assert not aps_timers.is_scheduled("missing")
