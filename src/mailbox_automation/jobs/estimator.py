"""Progress and time estimation for jobs.

All functions here are pure: they read a job and a clock value and never
write anything.
"""

from __future__ import annotations

from datetime import datetime

from mailbox_automation.models import Job, JobKind

SCAN_TOTAL_GROWTH = 1.5


def elapsed_seconds(job: Job, now: datetime) -> float:
    """Seconds the job has been running (or ran, once terminal)."""

    if job.started_at is None:
        return 0.0
    end = job.completed_at if job.is_terminal and job.completed_at is not None else now
    return max(0.0, (end - job.started_at).total_seconds())


def estimated_scan_total(job: Job, target: int) -> int:
    """Projected message total for a scan.

    Mailbox sizes are unknown up front, so the projection grows with progress:
    never below `target`, and always half again beyond what is already done.
    """

    processed = job.counters.messages_processed
    return int(max(target, processed * SCAN_TOTAL_GROWTH))


def estimated_remaining_seconds(job: Job, estimated_total: int | None, now: datetime) -> float | None:
    """Projected seconds left for a scan job, or None when unknown.

    Args:
        job: The job to estimate.
        estimated_total: Projected total message count; None means unknown.
        now: Current time.

    Returns:
        Seconds remaining (never negative), or None for label jobs, unknown
        totals and jobs with nothing processed yet.
    """

    if job.kind != JobKind.SCAN or not estimated_total or estimated_total <= 0:
        return None

    processed = job.counters.messages_processed
    if processed <= 0:
        return None

    elapsed = elapsed_seconds(job, now)
    remaining = elapsed * (estimated_total - processed) / processed
    return max(0.0, remaining)


def format_eta(seconds: float | None) -> str | None:
    if seconds is None or seconds < 0:
        return None

    s = int(seconds)
    if s < 60:
        return f"~{s}s"
    if s < 3600:
        m = max(1, s // 60)
        return f"~{m}m"
    h = s // 3600
    m = (s % 3600) // 60
    return f"~{h}h {m}m"


def eta_hint(
    job: Job,
    now: datetime,
    *,
    target: int,
    min_elapsed_seconds: float,
) -> str | None:
    """Short remaining-time hint for a running scan, e.g. ``~3m``.

    Returns None until `min_elapsed_seconds` have passed, since early rates
    are dominated by setup latency.
    """

    if job.is_terminal or job.started_at is None:
        return None
    if elapsed_seconds(job, now) < min_elapsed_seconds:
        return None
    total = estimated_scan_total(job, target)
    return format_eta(estimated_remaining_seconds(job, total, now))
