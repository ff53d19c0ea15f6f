"""Runs every counter_poll_interval_seconds: refresh available/targeted/total bottle counts."""
import logging

from apscheduler.schedulers.base import BaseScheduler

from driftbottle.core.constants import COUNTER_REFRESH_JOB_ID
from driftbottle.services.counters import CounterSynchronizer

logger = logging.getLogger(__name__)


def register_counter_job(scheduler: BaseScheduler, synchronizer: CounterSynchronizer) -> None:
    """Add (or replace) the interval job. Missed ticks collapse into one; never two at once."""
    scheduler.add_job(
        synchronizer.tick,
        "interval",
        seconds=synchronizer.interval_seconds,
        id=COUNTER_REFRESH_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    logger.info("Counter refresh job scheduled every %ss", synchronizer.interval_seconds)
