"""
Scheduler tests.
Tests for per-family interval jobs and the quiet-hours tick.
"""

import asyncio
from datetime import timedelta

from finnotify.config import ScheduleConfig
from finnotify.scheduler import QUIET_HOURS_JOB_ID, Scheduler, family_job_id


class FastSchedule(ScheduleConfig):
    """Schedule with sub-second intervals."""

    def interval_seconds(self, family: str) -> float:
        return {"transaction": 0.02, "budget": 0.5, "goal": 5, "report": 5}[family]


async def noop_family(family):
    pass


class TestScheduler:
    """Test interval jobs."""

    def test_registers_one_job_per_family(self):
        """Should add an interval job per family at the configured cadence."""

        async def scenario():
            scheduler = Scheduler(ScheduleConfig(), noop_family)
            await scheduler.start()
            jobs = {job.id: job for job in scheduler.get_jobs()}
            await scheduler.stop()
            return jobs

        jobs = asyncio.run(scenario())

        assert set(jobs) == {
            family_job_id("transaction"),
            family_job_id("budget"),
            family_job_id("goal"),
            family_job_id("report"),
        }
        assert jobs["rules_transaction"].trigger.interval == timedelta(minutes=30)
        assert jobs["rules_budget"].trigger.interval == timedelta(minutes=60)
        assert jobs["rules_goal"].trigger.interval == timedelta(minutes=120)
        assert jobs["rules_report"].trigger.interval == timedelta(hours=24)
        assert jobs["rules_budget"].args == ("budget",)
        assert all(job.max_instances == 1 for job in jobs.values())
        assert all(job.coalesce for job in jobs.values())

    def test_families_run_on_their_cadence(self):
        """Should run a family job once its interval elapses."""
        calls = []

        async def run_family(family):
            calls.append(family)

        async def scenario():
            scheduler = Scheduler(FastSchedule(), run_family)
            await scheduler.start()
            assert scheduler.running
            await asyncio.sleep(0.2)
            await scheduler.stop()
            assert not scheduler.running

        asyncio.run(scenario())

        assert "transaction" in calls
        assert "goal" not in calls

    def test_failed_run_is_logged(self, caplog):
        """Should log a failed family run instead of raising."""

        async def run_family(family):
            raise RuntimeError("store offline")

        scheduler = Scheduler(ScheduleConfig(), run_family, families=["transaction"])
        asyncio.run(scheduler._run_family("transaction"))

        assert "Scheduled transaction check failed: store offline" in caplog.text

    def test_quiet_hours_job(self):
        """Should register the quiet-hours tick at its own interval."""
        ticks = []

        async def scenario():
            scheduler = Scheduler(
                ScheduleConfig(quiet_hours_tick_seconds=60),
                noop_family,
                on_quiet_tick=lambda: ticks.append(1),
                families=[],
            )
            await scheduler.start()
            jobs = {job.id: job for job in scheduler.get_jobs()}
            await scheduler._quiet_tick()
            await scheduler.stop()
            return jobs

        jobs = asyncio.run(scenario())

        assert set(jobs) == {QUIET_HOURS_JOB_ID}
        assert jobs[QUIET_HOURS_JOB_ID].trigger.interval == timedelta(seconds=60)
        assert ticks == [1]

    def test_quiet_tick_failure_is_logged(self, caplog):
        """Should log a failing quiet-hours callback."""

        def broken():
            raise RuntimeError("bad settings")

        scheduler = Scheduler(ScheduleConfig(), noop_family, on_quiet_tick=broken)
        asyncio.run(scheduler._quiet_tick())

        assert "Quiet hours check failed: bad settings" in caplog.text

    def test_start_twice_is_noop(self):
        """Should not register duplicate jobs."""

        async def scenario():
            scheduler = Scheduler(ScheduleConfig(), noop_family)
            await scheduler.start()
            await scheduler.start()
            count = len(scheduler.get_jobs())
            await scheduler.stop()
            return count

        assert asyncio.run(scenario()) == 4

    def test_stop_before_start(self):
        """Should allow stopping a scheduler that never started."""
        scheduler = Scheduler(ScheduleConfig(), noop_family)
        asyncio.run(scheduler.stop())
        assert not scheduler.running
        assert scheduler.get_jobs() == []
