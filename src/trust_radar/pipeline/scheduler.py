"""
Trust Radar — Job Scheduler

Runs the registered periodic jobs (see pipeline/sweeps.py) on their
intervals until shutdown. Each tick asks the registry which jobs are due
and runs them one after another; a failing job is recorded in its
checkpoint and never stops the loop.

Jobs can also be run on demand with run_job(name), which is what the
operator script and the tests use.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any

import structlog

from trust_radar.config import settings
from trust_radar.pipeline.jobs import JobRegistry, JobReport

logger = structlog.get_logger(__name__)


class Scheduler:
    """
    Async scheduler for the aggregation jobs.

    Each job keeps its own clock through its checkpoint, so a restart
    resumes the cadence instead of rerunning everything.
    """

    def __init__(self, registry: JobRegistry, tick_seconds: float | None = None):
        self.registry = registry
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.SCHEDULER_TICK_SECONDS
        self._stopping = asyncio.Event()

    async def shutdown(self) -> None:
        """Ask the loop to stop after the job currently running."""
        logger.info("scheduler_stop_requested")
        self._stopping.set()

    async def run_job(self, name: str) -> JobReport:
        """Run one registered job immediately."""
        return await self.registry.run(name)

    async def run_due_jobs(self) -> list[str]:
        """Run every job that is due now. Returns the names that ran."""
        ran = []
        for name in await self.registry.due_jobs():
            if self._stopping.is_set():
                break
            await self.registry.run(name)
            ran.append(name)
        return ran

    async def run(self) -> None:
        """
        Main scheduler loop. Runs until shutdown is signaled.

        Job failures are handled by the registry; anything else (e.g. the
        checkpoint table being unreachable) is logged and the loop carries on
        after one tick.
        """
        logger.info(
            "scheduler_started",
            jobs=self.registry.names(),
            tick_seconds=self.tick_seconds,
        )

        try:
            while not self._stopping.is_set():
                try:
                    await self.run_due_jobs()

                    await asyncio.wait_for(
                        self._stopping.wait(),
                        timeout=self.tick_seconds,
                    )
                except asyncio.TimeoutError:
                    # Tick elapsed
                    continue
                except Exception as e:
                    logger.error(
                        "scheduler_tick_failed",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(self.tick_seconds)

        except asyncio.CancelledError:
            logger.info("scheduler_task_cancelled")
            raise
        finally:
            logger.info("scheduler_exited")


async def run_scheduler(registry: JobRegistry) -> None:
    """
    Run the scheduler in the foreground until the process is told to stop.

    SIGTERM and SIGINT finish the current job, then exit the loop.

    Args:
        registry: Job registry with every periodic job registered.
    """
    scheduler = Scheduler(registry)

    def handle_signal(_signum: int, _frame: Any) -> None:
        """Stop cleanly on SIGTERM or SIGINT."""
        logger.info("scheduler_os_signal")
        asyncio.create_task(scheduler.shutdown())

    loop = asyncio.get_running_loop()

    try:
        loop.add_signal_handler(signal.SIGTERM, handle_signal, signal.SIGTERM, None)
        loop.add_signal_handler(signal.SIGINT, handle_signal, signal.SIGINT, None)
    except NotImplementedError:
        # Not available on Windows event loops
        logger.warning("scheduler_os_signals_unavailable")

    try:
        await scheduler.run()
    except Exception as e:
        logger.error("scheduler_crashed", error=str(e), error_type=type(e).__name__)
        raise
