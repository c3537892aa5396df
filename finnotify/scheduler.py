"""
Periodic jobs driving rule evaluation and the quiet-hours indicator.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from finnotify.config import ScheduleConfig
from finnotify.rules.engine import FAMILIES

logger = logging.getLogger(__name__)

QUIET_HOURS_JOB_ID = "quiet_hours"


def family_job_id(family: str) -> str:
    return f"rules_{family}"


class Scheduler:
    """One interval job per rule family plus a quiet-hours tick."""

    def __init__(
        self,
        schedule: ScheduleConfig,
        run_family: Callable[[str], Awaitable[object]],
        on_quiet_tick: Optional[Callable[[], None]] = None,
        families: Iterable[str] = FAMILIES,
    ):
        """
        Initialize scheduler.

        Args:
            schedule: Cadence configuration
            run_family: Coroutine function evaluating one family
            on_quiet_tick: Called every quiet_hours_tick_seconds
            families: Rule families to schedule
        """
        self.schedule = schedule
        self.run_family = run_family
        self.on_quiet_tick = on_quiet_tick
        self.families = list(families)
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def get_jobs(self) -> list:
        if self._scheduler is None:
            return []
        return self._scheduler.get_jobs()

    async def start(self) -> None:
        """Register all jobs and start the scheduler on the running loop."""
        if self.running:
            return

        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())

        for family in self.families:
            interval = self.schedule.interval_seconds(family)
            self._scheduler.add_job(
                self._run_family,
                "interval",
                seconds=interval,
                args=[family],
                id=family_job_id(family),
                max_instances=1,
                coalesce=True,
            )
            logger.debug(f"Scheduled {family} rules every {interval}s")

        if self.on_quiet_tick is not None:
            self._scheduler.add_job(
                self._quiet_tick,
                "interval",
                seconds=self.schedule.quiet_hours_tick_seconds,
                id=QUIET_HOURS_JOB_ID,
                max_instances=1,
                coalesce=True,
            )

        self._scheduler.start()

    async def stop(self) -> None:
        """Shut the scheduler down without waiting for running jobs."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            # shutdown is deferred to the loop via call_soon_threadsafe
            await asyncio.sleep(0)
        self._scheduler = None

    async def _run_family(self, family: str) -> None:
        try:
            await self.run_family(family)
        except Exception as e:
            logger.error(f"Scheduled {family} check failed: {e}")

    async def _quiet_tick(self) -> None:
        try:
            self.on_quiet_tick()
        except Exception as e:
            logger.error(f"Quiet hours check failed: {e}")
