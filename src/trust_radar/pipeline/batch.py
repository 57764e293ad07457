"""
Trust Radar — Bounded batch runner

Runs one async handler per subject id with at most BATCH_MAX_PARALLELISM
in flight and an overall deadline.

- Subjects are processed in sorted order so a cursor is meaningful.
- A failing subject is logged and counted; the batch goes on.
- When the deadline passes, no new subject is started, in-flight ones are
  awaited, and the outcome is TIMED_OUT with the cursor set to the last
  subject of the completed prefix. Unstarted subjects keep their previous
  records and are picked up by the next run.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, NamedTuple

import structlog

from trust_radar.config import JobStatus, settings

logger = structlog.get_logger(__name__)


class BatchOutcome(NamedTuple):
    status: JobStatus
    processed: int
    failed: int
    not_started: int
    cursor: str | None


class BatchRunner:
    """Semaphore-bounded fan-out with a deadline."""

    def __init__(
        self,
        max_parallelism: int | None = None,
        deadline_seconds: float | None = None,
    ):
        self.max_parallelism = max_parallelism or settings.BATCH_MAX_PARALLELISM
        self.deadline_seconds = (
            deadline_seconds if deadline_seconds is not None else settings.JOB_DEADLINE_SECONDS
        )

    async def run(
        self,
        name: str,
        subject_ids: Iterable[str],
        handler: Callable[[str], Awaitable[Any]],
    ) -> BatchOutcome:
        """
        Apply `handler` to every subject id.

        Args:
            name: Batch name for logs.
            subject_ids: Subjects to process (deduplicated and sorted here).
            handler: Per-subject coroutine function. Its exceptions are counted.
        """
        ordered = sorted(set(subject_ids))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.deadline_seconds
        semaphore = asyncio.Semaphore(self.max_parallelism)

        done: set[str] = set()
        failures: list[str] = []
        in_flight: list[asyncio.Task] = []
        timed_out = False

        async def process(subject_id: str) -> None:
            try:
                await handler(subject_id)
            except Exception as e:
                failures.append(subject_id)
                logger.error(
                    "batch_subject_failed",
                    batch=name,
                    subject_id=subject_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                done.add(subject_id)
                semaphore.release()

        logger.info("batch_started", batch=name, subjects=len(ordered), parallelism=self.max_parallelism)

        started = 0
        for subject_id in ordered:
            remaining = deadline - loop.time()
            if remaining <= 0:
                timed_out = True
                break
            try:
                await asyncio.wait_for(semaphore.acquire(), timeout=remaining)
            except asyncio.TimeoutError:
                timed_out = True
                break
            in_flight.append(asyncio.create_task(process(subject_id)))
            started += 1

        if in_flight:
            await asyncio.gather(*in_flight)

        cursor: str | None = None
        for subject_id in ordered:
            if subject_id not in done:
                break
            cursor = subject_id

        outcome = BatchOutcome(
            status=JobStatus.TIMED_OUT if timed_out else JobStatus.SUCCEEDED,
            processed=started - len(failures),
            failed=len(failures),
            not_started=len(ordered) - started,
            cursor=cursor,
        )
        log = logger.warning if timed_out else logger.info
        log(
            "batch_complete",
            batch=name,
            status=outcome.status.value,
            processed=outcome.processed,
            failed=outcome.failed,
            not_started=outcome.not_started,
            cursor=outcome.cursor,
        )
        return outcome
