import logging
from datetime import timedelta
from typing import Any, Callable, Optional, Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

logger = logging.getLogger(__name__)


class RecurringTimers(Protocol):
    def schedule_recurring(self, name: str, interval: timedelta, callback: Callable[[], Any]) -> None:
        ...

    def cancel_recurring(self, name: str) -> None:
        ...

    def is_scheduled(self, name: str) -> bool:
        ...


class APSchedulerTimers:
    """
    Recurring jobs on an APScheduler scheduler, keyed by job id.

    Jobs may be added before the scheduler is started; they stay pending
    until ``start()``.
    """

    def __init__(self, scheduler: Optional[BaseScheduler] = None):
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    def schedule_recurring(self, name: str, interval: timedelta, callback: Callable[[], Any]) -> None:
        # replace_existing is not honoured for jobs still pending on a stopped scheduler
        self.cancel_recurring(name)
        self.scheduler.add_job(
            callback,
            "interval",
            seconds=int(interval.total_seconds()),
            id=name,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def cancel_recurring(self, name: str) -> None:
        if self.scheduler.get_job(name) is not None:
            self.scheduler.remove_job(name)

    def is_scheduled(self, name: str) -> bool:
        return self.scheduler.get_job(name) is not None

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Recurring check scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
