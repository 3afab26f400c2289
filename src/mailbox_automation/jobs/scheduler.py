"""Continuation scheduling for multi-batch jobs.

A single invocation may only run for `invocation_budget_seconds`. After each
batch the scheduler decides whether the next batch still fits (run it inline),
must be handed to the task queue (defer), or is not needed (stop).

Each enqueue carries the job's `retryCount`. Every new enqueue bumps it, so
only the most recent task for a job is accepted; older deliveries are dropped.
The payload cursor is informational: batches always resume from the cursor
stored on the job, so a redelivered task continues wherever the job is now.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum

import structlog

from mailbox_automation.config import Settings
from mailbox_automation.jobs.tasks import TaskQueue
from mailbox_automation.models import ContinuationPayload, Job, JobStatus
from mailbox_automation.utils import utc_now

logger = structlog.get_logger()

# Headroom for a batch that runs slower than the previous one.
BATCH_TIME_SAFETY_FACTOR = 1.5


class Continuation(str, Enum):
    INLINE = "inline"
    DEFER = "defer"
    STOP = "stop"


class ContinuationScheduler:
    """Decide how a job continues and enqueue deferred continuations."""

    def __init__(
        self,
        queue: TaskQueue,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.queue = queue
        self.settings = settings
        self.clock = clock
        self._handles: dict[str, str] = {}
        self._lock = threading.Lock()

    def plan(
        self,
        job: Job,
        has_more: bool,
        invocation_elapsed: float,
        last_batch_seconds: float,
    ) -> Continuation:
        if job.status != JobStatus.RUNNING or not has_more:
            return Continuation.STOP

        projected = (
            invocation_elapsed
            + self.settings.inline_batch_delay_seconds
            + BATCH_TIME_SAFETY_FACTOR * last_batch_seconds
        )
        if projected <= self.settings.invocation_budget_seconds:
            return Continuation.INLINE
        return Continuation.DEFER

    def schedule(self, job: Job, batch_size: int) -> str | None:
        """Enqueue a continuation for the job's current cursor and retryCount.

        Returns:
            The task handle, or None when the enqueue failed. The job is left
            running with its cursor, so a later poll can still advance it.
        """

        payload = ContinuationPayload(
            job_id=job.id,
            owner=job.owner,
            batch_size=batch_size,
            cursor=job.cursor,
            retry_count=job.retry_count,
            timestamp=self.clock(),
        )

        try:
            handle = self.queue.enqueue(payload, delay_seconds=self.settings.continuation_delay_seconds)
        except Exception as exc:  # noqa: BLE001
            logger.error("continuation_enqueue_failed", job_id=job.id, cursor=job.cursor, error=str(exc))
            return None

        with self._lock:
            previous = self._handles.get(job.id)
            self._handles[job.id] = handle
        if previous and previous != handle:
            self.queue.cancel(previous)

        logger.info(
            "continuation_scheduled",
            job_id=job.id,
            handle=handle,
            cursor=job.cursor,
            retry_count=job.retry_count,
            delay_seconds=self.settings.continuation_delay_seconds,
        )
        return handle

    def accepts(self, job: Job, payload: ContinuationPayload) -> bool:
        """True when `payload` is the live continuation for `job`."""

        return (
            job.status == JobStatus.RUNNING
            and payload.job_id == job.id
            and payload.retry_count == job.retry_count
        )

    def revoke(self, job_id: str) -> bool:
        with self._lock:
            handle = self._handles.pop(job_id, None)
        if handle is None:
            return False
        try:
            revoked = self.queue.cancel(handle)
        except Exception as exc:  # noqa: BLE001
            logger.warning("continuation_revoke_failed", job_id=job_id, handle=handle, error=str(exc))
            return False
        logger.debug("continuation_revoked", job_id=job_id, handle=handle, revoked=revoked)
        return revoked

    def forget(self, job_id: str) -> None:
        """Drop the remembered handle once its task has been delivered."""

        with self._lock:
            self._handles.pop(job_id, None)
