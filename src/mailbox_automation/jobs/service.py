"""Job orchestration service.

`JobService` is the single entry point for job lifecycle operations. HTTP
routes, the CLI and continuation workers all call into it. It owns:

- creation and validation of job documents;
- lifecycle changes (start/pause/resume/cancel/delete) through the state machine;
- driving batches through the processor for the job's kind, inline while the
  invocation budget allows and through the task queue afterwards;
- status views with elapsed time and ETA.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from mailbox_automation.config import Settings
from mailbox_automation.exceptions import InvalidTransition, JobNotFound, ValidationError
from mailbox_automation.jobs import estimator
from mailbox_automation.jobs.processors import BatchProcessor
from mailbox_automation.jobs.scheduler import Continuation, ContinuationScheduler
from mailbox_automation.jobs.state_machine import JobEvent, transition
from mailbox_automation.mailbox import MailboxFactory
from mailbox_automation.models import (
    ContinuationPayload,
    Job,
    JobKind,
    JobStatus,
    LabelCounters,
    RuleCriteria,
    ScanCounters,
)
from mailbox_automation.storage import JobStore, make_job_id
from mailbox_automation.utils import utc_now

logger = structlog.get_logger()

DELETE_REFUSED_MESSAGE = "Could not delete job. Job may be running or not found."


@dataclass
class InvocationResult:
    """What one invocation did to a job."""

    job: Job
    batches: int = 0
    enqueued: bool = False
    dropped: bool = False


@dataclass
class JobStatusView:
    """A job plus the derived progress fields shown to users."""

    job: Job
    elapsed_seconds: float
    estimated_total: int | None
    estimated_remaining_seconds: float | None
    eta_hint: str | None
    message: str


def status_message(job: Job) -> str:
    """Human-readable one-line status for a job."""

    noun = "Scan" if job.kind == JobKind.SCAN else "Label job"
    counters = job.counters

    if job.status == JobStatus.PENDING:
        return f"{noun} created. Start it to begin processing."
    if job.status == JobStatus.PAUSED:
        return f"{noun} paused. Resume to continue from the saved position."
    if job.status == JobStatus.FAILED:
        return f"{noun} failed. Try restarting."

    if isinstance(counters, ScanCounters):
        if job.status == JobStatus.COMPLETED:
            return "Scan complete! All messages processed."
        if job.status == JobStatus.CANCELLED:
            return "Scan was cancelled. Data collected so far has been saved."
        return (
            f"Scanning... {counters.messages_processed} messages processed, "
            f"{counters.addresses_found} addresses found."
        )

    assert isinstance(counters, LabelCounters)
    if job.status == JobStatus.COMPLETED:
        return (
            f"Label job complete. Labels applied to {counters.labels_applied} "
            f"of {counters.messages_matched} matched messages."
        )
    if job.status == JobStatus.CANCELLED:
        return "Label job was cancelled. Labels already applied were kept."
    return (
        f"Applying labels... {counters.messages_processed} of "
        f"{counters.messages_matched} matched messages processed."
    )


class JobService:
    """Lifecycle operations and batch driving for scan and label jobs."""

    def __init__(
        self,
        jobs: JobStore,
        processors: Mapping[JobKind, BatchProcessor],
        scheduler: ContinuationScheduler,
        mailbox_factory: MailboxFactory,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.jobs = jobs
        self.processors = dict(processors)
        self.scheduler = scheduler
        self.mailbox_factory = mailbox_factory
        self.settings = settings
        self.clock = clock
        self.timer = timer
        self.sleep = sleep

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_scan_job(self, owner: str) -> Job:
        owner = self._require_owner(owner)
        now = self.clock()
        job = Job(
            id=make_job_id(JobKind.SCAN, now=now),
            kind=JobKind.SCAN,
            owner=owner,
            counters=ScanCounters(),
            created_at=now,
        )
        self.jobs.put(job)
        logger.info("job_created", job_id=job.id, kind=job.kind.value, owner=owner)
        return job

    def create_label_job(
        self,
        owner: str,
        filter_id: str,
        rule_criteria: RuleCriteria | Mapping[str, Any] | None,
        label_ids: list[str] | None,
    ) -> Job:
        """Create a pending label-application job.

        Raises:
            ValidationError: If the filter id, criteria or labels are missing.
        """

        owner = self._require_owner(owner)
        if not (filter_id or "").strip():
            raise ValidationError("filterId is required")

        if rule_criteria is None:
            raise ValidationError("ruleCriteria is required")
        if not isinstance(rule_criteria, RuleCriteria):
            try:
                rule_criteria = RuleCriteria.model_validate(dict(rule_criteria))
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid ruleCriteria: {exc}") from exc
        if not rule_criteria.has_terms():
            raise ValidationError("ruleCriteria needs at least one of from, to, subject or query")

        labels = [str(l).strip() for l in (label_ids or []) if str(l).strip()]
        if not labels:
            raise ValidationError("labelIds must contain at least one label")

        now = self.clock()
        job = Job(
            id=make_job_id(JobKind.LABEL_APPLICATION, now=now),
            kind=JobKind.LABEL_APPLICATION,
            owner=owner,
            counters=LabelCounters(),
            rule_criteria=rule_criteria,
            label_ids=labels,
            filter_id=filter_id.strip(),
            created_at=now,
        )
        self.jobs.put(job)
        logger.info("job_created", job_id=job.id, kind=job.kind.value, owner=owner, filter_id=job.filter_id)
        return job

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, job_id: str, *, owner: str | None = None) -> Job:
        """Return the job, raising JobNotFound for unknown or foreign ids."""

        job = self.jobs.get(job_id)
        if job is None or (owner is not None and job.owner != owner):
            raise JobNotFound(job_id)
        return job

    def status(self, job_id: str, *, owner: str | None = None) -> JobStatusView:
        return self.describe(self.get(job_id, owner=owner))

    def describe(self, job: Job) -> JobStatusView:
        now = self.clock()
        total: int | None = None
        remaining: float | None = None
        if job.kind == JobKind.SCAN:
            total = estimator.estimated_scan_total(job, self.settings.scan_target_messages)
            if estimator.elapsed_seconds(job, now) >= self.settings.eta_min_elapsed_seconds:
                remaining = estimator.estimated_remaining_seconds(job, total, now)

        return JobStatusView(
            job=job,
            elapsed_seconds=estimator.elapsed_seconds(job, now),
            estimated_total=total,
            estimated_remaining_seconds=None if job.is_terminal else remaining,
            eta_hint=estimator.eta_hint(
                job,
                now,
                target=self.settings.scan_target_messages,
                min_elapsed_seconds=self.settings.eta_min_elapsed_seconds,
            ),
            message=status_message(job),
        )

    def list_for_owner(self, owner: str) -> list[Job]:
        return self.jobs.list_for_owner(owner)

    def active_jobs(self, owner: str, kind: JobKind | None = None) -> list[Job]:
        """The owner's non-terminal jobs, optionally of one kind."""

        return [j for j in self.jobs.list_for_owner(owner) if not j.is_terminal and (kind is None or j.kind == kind)]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, job_id: str, *, owner: str | None = None) -> InvocationResult:
        """Move a pending job to running and enqueue its first batch."""

        with self._job_lock(job_id):
            job = self.get(job_id, owner=owner)
            self.mailbox_factory(job.owner, job.kind)
            started = transition(job, JobEvent.START, now=self.clock())
            self.jobs.put(started)
            logger.info("job_started", job_id=job_id, kind=job.kind.value, owner=job.owner)
            return self._defer(started, None)

    def pause(self, job_id: str, *, owner: str | None = None) -> Job:
        with self._job_lock(job_id):
            job = self.get(job_id, owner=owner)
            paused = transition(job, JobEvent.PAUSE, now=self.clock())
            self.jobs.put(paused)
        self.scheduler.revoke(job_id)
        logger.info("job_paused", job_id=job_id, cursor=paused.cursor)
        return paused

    def resume(self, job_id: str, *, owner: str | None = None) -> InvocationResult:
        """Move a paused job back to running and enqueue the next batch."""

        with self._job_lock(job_id):
            job = self.get(job_id, owner=owner)
            self.mailbox_factory(job.owner, job.kind)
            resumed = transition(job, JobEvent.RESUME, now=self.clock())
            self.jobs.put(resumed)
            logger.info("job_resumed", job_id=job_id, cursor=resumed.cursor)
            return self._defer(resumed, None)

    def cancel(self, job_id: str, *, owner: str | None = None) -> Job:
        """Cancel a non-terminal job. Progress persisted so far is kept."""

        with self._job_lock(job_id):
            job = self.get(job_id, owner=owner)
            if job.status == JobStatus.CANCELLED:
                return job
            cancelled = transition(job, JobEvent.CANCEL, now=self.clock())
            self.jobs.put(cancelled)
        self.scheduler.revoke(job_id)
        logger.info("job_cancelled", job_id=job_id, **cancelled.counters.model_dump())
        return cancelled

    def delete(self, job_id: str, *, owner: str | None = None) -> None:
        """Delete a terminal or pending job.

        Raises:
            JobNotFound: Unknown id.
            InvalidTransition: The job is running or paused.
        """

        with self._job_lock(job_id):
            job = self.get(job_id, owner=owner)
            if not (job.is_terminal or job.status == JobStatus.PENDING):
                raise InvalidTransition(DELETE_REFUSED_MESSAGE, status=job.status.value, event="delete")
            self.jobs.delete(job_id)
        self._discard_lock(job_id)
        self.scheduler.revoke(job_id)
        logger.info("job_deleted", job_id=job_id, status=job.status.value)

    def purge_expired(self, owner: str) -> int:
        before = {j.id for j in self.jobs.list_for_owner(owner)}
        purged = self.jobs.purge_expired(
            owner,
            ttl=timedelta(hours=self.settings.job_ttl_hours),
            now=self.clock(),
        )
        if purged:
            remaining = {j.id for j in self.jobs.list_for_owner(owner)}
            for job_id in before - remaining:
                self._discard_lock(job_id)
        return purged

    # ------------------------------------------------------------------
    # Batch driving
    # ------------------------------------------------------------------

    def process_batch(self, job_id: str, *, owner: str | None = None) -> InvocationResult:
        """Advance a running job by exactly one batch; a no-op otherwise."""

        if owner is not None:
            self.get(job_id, owner=owner)
        return self.run_invocation(job_id, max_batches=1)

    def handle_continuation(self, payload: ContinuationPayload) -> InvocationResult:
        """Entry point for delivered continuation tasks."""

        return self.run_invocation(payload.job_id, payload=payload)

    def run_invocation(
        self,
        job_id: str,
        payload: ContinuationPayload | None = None,
        max_batches: int | None = None,
    ) -> InvocationResult:
        """Run batches for one job until done, out of budget or `max_batches`.

        Args:
            job_id: Job to advance.
            payload: Continuation that triggered this invocation, if any. A
                stale or duplicated payload is dropped without any work.
            max_batches: Stop after this many batches without enqueueing.

        Returns:
            InvocationResult describing the batches run and any enqueue.

        Raises:
            JobNotFound: Unknown id.
            NotAuthenticated: No mailbox credential for the job's owner.
            UpstreamTransient: The current batch should be retried later.
        """

        with self._job_lock(job_id):
            job = self.get(job_id)

            batch_size: int | None = None
            if payload is not None:
                if payload.owner != job.owner or not self.scheduler.accepts(job, payload):
                    logger.info(
                        "continuation_dropped",
                        job_id=job_id,
                        status=job.status.value,
                        payload_retry_count=payload.retry_count,
                        job_retry_count=job.retry_count,
                    )
                    return InvocationResult(job=job, dropped=True)
                self.scheduler.forget(job_id)
                batch_size = payload.batch_size

            if job.status != JobStatus.RUNNING:
                return InvocationResult(job=job)

            source = self.mailbox_factory(job.owner, job.kind)
            processor = self.processors[job.kind]

            invocation_start = self.timer()
            batches = 0
            while True:
                batch_start = self.timer()
                outcome = processor.run_batch(job, source, batch_size=batch_size)
                batches += 1
                job = outcome.job

                if not outcome.applied or (max_batches is not None and batches >= max_batches):
                    return InvocationResult(job=job, batches=batches)

                now = self.timer()
                decision = self.scheduler.plan(job, outcome.has_more, now - invocation_start, now - batch_start)
                if decision == Continuation.STOP:
                    return InvocationResult(job=job, batches=batches)
                if decision == Continuation.DEFER:
                    result = self._defer(job, batch_size)
                    result.batches = batches
                    return result

                self.sleep(self.settings.inline_batch_delay_seconds)
                job = self.get(job_id)

    def _defer(self, job: Job, batch_size: int | None) -> InvocationResult:
        # Bump retryCount so earlier tasks for this job fail the fence.
        current = self.jobs.get(job.id)
        if current is None or current.status != JobStatus.RUNNING:
            return InvocationResult(job=current or job)

        bumped = current.model_copy(update={"retry_count": current.retry_count + 1})
        self.jobs.put(bumped)
        size = batch_size or self.processors[bumped.kind].default_batch_size
        handle = self.scheduler.schedule(bumped, size)
        return InvocationResult(job=bumped, enqueued=handle is not None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _job_lock(self, job_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(job_id, threading.Lock())
        with lock:
            yield

    def _discard_lock(self, job_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(job_id, None)

    @staticmethod
    def _require_owner(owner: str) -> str:
        owner = (owner or "").strip().lower()
        if not owner:
            raise ValidationError("owner is required")
        return owner
