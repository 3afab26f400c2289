"""Job lifecycle state machine.

Every status change goes through `transition`, which returns an updated copy
of the job and never touches the input. A rejected event therefore leaves the
persisted document exactly as it was.

Legal transitions:

    pending  --start-->    running   (startedAt set once, retryCount reset)
    running  --pause-->    paused
    paused   --resume-->   running
    running  --advance-->  running   (cursor + counters)
    running  --complete--> completed (counters, cursor cleared, completedAt)
    running  --fail-->     failed    (error, completedAt)
    pending/running/paused --cancel--> cancelled (completedAt)
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from mailbox_automation.exceptions import InvalidTransition
from mailbox_automation.models import Job, JobCounters, JobStatus


class JobEvent(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    ADVANCE = "advance"
    COMPLETE = "complete"
    FAIL = "fail"
    CANCEL = "cancel"


_TRANSITIONS: dict[tuple[JobStatus, JobEvent], JobStatus] = {
    (JobStatus.PENDING, JobEvent.START): JobStatus.RUNNING,
    (JobStatus.RUNNING, JobEvent.PAUSE): JobStatus.PAUSED,
    (JobStatus.PAUSED, JobEvent.RESUME): JobStatus.RUNNING,
    (JobStatus.RUNNING, JobEvent.ADVANCE): JobStatus.RUNNING,
    (JobStatus.RUNNING, JobEvent.COMPLETE): JobStatus.COMPLETED,
    (JobStatus.RUNNING, JobEvent.FAIL): JobStatus.FAILED,
    (JobStatus.PENDING, JobEvent.CANCEL): JobStatus.CANCELLED,
    (JobStatus.RUNNING, JobEvent.CANCEL): JobStatus.CANCELLED,
    (JobStatus.PAUSED, JobEvent.CANCEL): JobStatus.CANCELLED,
}


def can_transition(status: JobStatus, event: JobEvent) -> bool:
    return (status, event) in _TRANSITIONS


def transition(
    job: Job,
    event: JobEvent,
    *,
    now: datetime,
    cursor: str | None = None,
    counters: JobCounters | None = None,
    error: str | None = None,
) -> Job:
    """Apply a lifecycle event and return the updated job.

    Args:
        job: Current job document.
        event: Event to apply.
        now: Timestamp used for lifecycle fields.
        cursor: New page token (advance only).
        counters: Updated accumulators (advance/complete/fail).
        error: Failure description (fail only).

    Returns:
        A new Job; `job` itself is never modified.

    Raises:
        InvalidTransition: If the event is not legal from the job's status.
    """

    if job.status == JobStatus.CANCELLED and event == JobEvent.CANCEL:
        return job.model_copy(deep=True)

    if job.is_terminal:
        raise InvalidTransition(
            f"Job {job.id} is already terminal ({job.status.value})",
            status=job.status.value,
            event=event.value,
        )

    target = _TRANSITIONS.get((job.status, event))
    if target is None:
        raise InvalidTransition(
            f"Cannot {event.value} a {job.status.value} job",
            status=job.status.value,
            event=event.value,
        )

    update: dict[str, Any] = {"status": target}

    if event == JobEvent.START:
        update["retry_count"] = 0
        if job.started_at is None:
            update["started_at"] = now
    elif event == JobEvent.ADVANCE:
        update["cursor"] = cursor
    elif event == JobEvent.COMPLETE:
        update["cursor"] = None
        update["completed_at"] = now
    elif event == JobEvent.FAIL:
        update["error"] = error or "unknown error"
        update["completed_at"] = now
    elif event == JobEvent.CANCEL:
        update["completed_at"] = now

    if counters is not None and event in (JobEvent.ADVANCE, JobEvent.COMPLETE, JobEvent.FAIL):
        if type(counters) is not type(job.counters):
            raise InvalidTransition(
                f"{type(counters).__name__} do not belong to a {job.kind.value} job",
                status=job.status.value,
                event=event.value,
            )
        update["counters"] = counters.model_copy()

    return job.model_copy(deep=True, update=update)
