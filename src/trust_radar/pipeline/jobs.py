"""
Trust Radar — Job registry and checkpoints

Every periodic job is registered by name with its interval, deadline and
handler. Each job owns one JobCheckpoint row recording its last status,
cursor and counters, so progress survives restarts.

A crashed job (handler raised) is recorded as FAILED and retried at the
next interval. Consecutive failures stretch the interval exponentially,
capped at JOB_MAX_BACKOFF_MULTIPLIER × interval.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Awaitable, Callable, NamedTuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trust_radar.config import JobStatus, settings
from trust_radar.models.job_checkpoint import JobCheckpoint
from trust_radar.utils.clock import as_utc, utcnow

logger = structlog.get_logger(__name__)


class JobContext(NamedTuple):
    """What a handler knows about the run it is executing."""
    name: str
    started_at: datetime
    last_success_at: datetime | None
    cursor: str | None
    deadline_seconds: float


class JobReport(NamedTuple):
    status: JobStatus = JobStatus.SUCCEEDED
    processed: int = 0
    failed: int = 0
    cursor: str | None = None


JobHandler = Callable[[JobContext], Awaitable[JobReport]]


class Job:
    """A named periodic unit of work."""

    def __init__(
        self,
        name: str,
        interval: timedelta,
        handler: JobHandler,
        deadline: timedelta | None = None,
    ):
        if interval <= timedelta(0):
            raise ValueError(f"Job {name!r} needs a positive interval")
        self.name = name
        self.interval = interval
        self.handler = handler
        self.deadline = deadline or timedelta(seconds=settings.JOB_DEADLINE_SECONDS)

    def backoff_multiplier(self, consecutive_failures: int) -> int:
        if consecutive_failures <= 0:
            return 1
        return min(2 ** consecutive_failures, settings.JOB_MAX_BACKOFF_MULTIPLIER)

    def next_run_at(self, checkpoint: JobCheckpoint | None) -> datetime | None:
        """When the job is next due; None means immediately."""
        if checkpoint is None or checkpoint.last_started_at is None:
            return None
        multiplier = self.backoff_multiplier(checkpoint.consecutive_failures or 0)
        return as_utc(checkpoint.last_started_at) + self.interval * multiplier

    def is_due(self, checkpoint: JobCheckpoint | None, now: datetime) -> bool:
        next_run = self.next_run_at(checkpoint)
        return next_run is None or next_run <= now

    def __repr__(self) -> str:
        return f"<Job {self.name!r} every {self.interval}>"


class JobRegistry:
    """Named jobs plus their persisted checkpoints."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self._jobs: dict[str, Job] = {}

    def register(self, job: Job) -> Job:
        if job.name in self._jobs:
            raise ValueError(f"Job {job.name!r} is already registered")
        self._jobs[job.name] = job
        return job

    def get(self, name: str) -> Job:
        try:
            return self._jobs[name]
        except KeyError:
            raise KeyError(f"Unknown job {name!r}; registered: {sorted(self._jobs)}") from None

    def names(self) -> list[str]:
        return list(self._jobs)

    async def checkpoint(self, name: str) -> JobCheckpoint | None:
        async with self.session_factory() as session:
            return await session.get(JobCheckpoint, name)

    async def due_jobs(self, now: datetime | None = None) -> list[str]:
        now = now or self.clock()
        due = []
        for name, job in self._jobs.items():
            if job.is_due(await self.checkpoint(name), now):
                due.append(name)
        return due

    async def _record(self, name: str, **values: object) -> None:
        async with self.session_factory() as session:
            checkpoint = await session.get(JobCheckpoint, name)
            if checkpoint is None:
                checkpoint = JobCheckpoint(
                    job_name=name,
                    last_status=JobStatus.NEVER_RUN.value,
                    processed=0,
                    failed=0,
                    consecutive_failures=0,
                )
                session.add(checkpoint)
            for key, value in values.items():
                setattr(checkpoint, key, value)
            await session.commit()

    async def run(self, name: str) -> JobReport:
        """
        Run one job now and record the outcome in its checkpoint.

        Never raises for handler failures; they are logged and recorded as
        FAILED. Raises KeyError for an unknown job name.
        """
        job = self.get(name)
        previous = await self.checkpoint(name)
        started_at = self.clock()
        context = JobContext(
            name=name,
            started_at=started_at,
            last_success_at=(
                as_utc(previous.last_success_at)
                if previous is not None and previous.last_success_at is not None
                else None
            ),
            cursor=previous.cursor if previous is not None else None,
            deadline_seconds=job.deadline.total_seconds(),
        )
        failures_so_far = previous.consecutive_failures if previous is not None else 0

        await self._record(name, last_status=JobStatus.RUNNING.value, last_started_at=started_at)
        logger.info("job_started", job=name, last_success_at=context.last_success_at)

        try:
            report = await job.handler(context)
        except Exception as e:
            failures = failures_so_far + 1
            logger.error(
                "job_failed",
                job=name,
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=failures,
                retry_in_seconds=(job.interval * job.backoff_multiplier(failures)).total_seconds(),
            )
            await self._record(
                name,
                last_status=JobStatus.FAILED.value,
                last_completed_at=self.clock(),
                consecutive_failures=failures,
                last_error=f"{type(e).__name__}: {e}",
            )
            return JobReport(status=JobStatus.FAILED)

        values: dict[str, object] = {
            "last_status": report.status.value,
            "last_completed_at": self.clock(),
            "processed": report.processed,
            "failed": report.failed,
            "cursor": report.cursor,
            "consecutive_failures": 0,
            "last_error": None,
        }
        if report.status == JobStatus.SUCCEEDED:
            values["last_success_at"] = started_at
        await self._record(name, **values)

        logger.info(
            "job_complete",
            job=name,
            status=report.status.value,
            processed=report.processed,
            failed=report.failed,
            cursor=report.cursor,
        )
        return report
