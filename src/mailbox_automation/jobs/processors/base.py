"""Batch processor interface shared by the job kinds."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar

import structlog

from mailbox_automation.config import Settings
from mailbox_automation.exceptions import UpstreamPermanent
from mailbox_automation.jobs.state_machine import JobEvent, transition
from mailbox_automation.mailbox import MessageSource
from mailbox_automation.models import Job, JobCounters, JobKind, JobStatus, MailPage
from mailbox_automation.storage import JobStore
from mailbox_automation.utils import utc_now

logger = structlog.get_logger()


@dataclass
class BatchOutcome:
    """Result of one `run_batch` call."""

    job: Job
    has_more: bool = False
    applied: bool = False
    items: int = 0


class BatchProcessor(ABC):
    """Advance a running job by exactly one page of mail API results.

    Subclasses implement `process_page`, which does the kind-specific work and
    returns the page plus the updated counters. The base class owns the
    lifecycle bookkeeping around it: the status guard, the reload-before-write
    check, the advance/complete transition and failing the job on a permanent
    upstream error. `UpstreamTransient` propagates with nothing written, so the
    cursor stays where it was and the batch can be retried.
    """

    kind: ClassVar[JobKind]

    def __init__(
        self,
        jobs: JobStore,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.jobs = jobs
        self.settings = settings
        self.clock = clock

    @property
    @abstractmethod
    def default_batch_size(self) -> int:
        """Page size used when the trigger does not specify one."""

    @abstractmethod
    def process_page(
        self,
        job: Job,
        source: MessageSource,
        batch_size: int,
    ) -> tuple[MailPage, JobCounters]:
        """Fetch one page at `job.cursor`, do the work, and return new counters."""

    def run_batch(self, job: Job, source: MessageSource, *, batch_size: int | None = None) -> BatchOutcome:
        if job.status != JobStatus.RUNNING:
            logger.debug("batch_skipped_not_running", job_id=job.id, status=job.status.value)
            return BatchOutcome(job=job)

        size = batch_size or self.default_batch_size
        logger.info("batch_started", job_id=job.id, kind=job.kind.value, cursor=job.cursor, batch_size=size)

        try:
            page, counters = self.process_page(job, source, size)
        except UpstreamPermanent as exc:
            return self._fail(job, str(exc))

        return self._commit(job, page, counters)

    def _reload_running(self, job: Job) -> Job | None:
        current = self.jobs.get(job.id)
        if current is None or current.status != JobStatus.RUNNING or current.cursor != job.cursor:
            logger.info(
                "batch_discarded",
                job_id=job.id,
                status=None if current is None else current.status.value,
                cursor=job.cursor,
            )
            return None
        return current

    def _commit(self, job: Job, page: MailPage, counters: JobCounters) -> BatchOutcome:
        current = self._reload_running(job)
        if current is None:
            return BatchOutcome(job=self.jobs.get(job.id) or job, items=len(page.items))

        event = JobEvent.ADVANCE if page.has_more else JobEvent.COMPLETE
        updated = transition(current, event, now=self.clock(), cursor=page.next_cursor, counters=counters)
        self.jobs.put(updated)

        logger.info(
            "batch_completed",
            job_id=job.id,
            items=len(page.items),
            has_more=page.has_more,
            status=updated.status.value,
            **counters.model_dump(),
        )
        return BatchOutcome(job=updated, has_more=page.has_more, applied=True, items=len(page.items))

    def _fail(self, job: Job, error: str) -> BatchOutcome:
        current = self._reload_running(job)
        if current is None:
            return BatchOutcome(job=self.jobs.get(job.id) or job)

        failed = transition(current, JobEvent.FAIL, now=self.clock(), error=error)
        self.jobs.put(failed)
        logger.error("job_failed", job_id=job.id, kind=job.kind.value, error=error)
        return BatchOutcome(job=failed, applied=True)
