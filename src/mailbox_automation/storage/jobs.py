"""Job document persistence.

The job store is the single source of truth for job progress. It does not
enforce exclusivity between jobs of the same owner; callers list the owner's
jobs before creating a new one.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

import structlog

from mailbox_automation.models import Job, JobKind
from mailbox_automation.storage.documents import DocumentStore
from mailbox_automation.utils import utc_now

logger = structlog.get_logger()


JOBS_COLLECTION = "jobs"

_KIND_PREFIX = {
    JobKind.SCAN: "scan",
    JobKind.LABEL_APPLICATION: "label",
}


def make_job_id(kind: JobKind, *, now: datetime | None = None) -> str:
    stamp = (now or utc_now()).strftime("%Y%m%d-%H%M%S")
    return f"job-{stamp}-{_KIND_PREFIX[kind]}-{uuid.uuid4().hex[:6]}"


class JobStore:
    """Keyed persistence of job documents."""

    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents

    def get(self, job_id: str) -> Job | None:
        doc = self._documents.get(JOBS_COLLECTION, job_id)
        return None if doc is None else Job.from_document(doc)

    def put(self, job: Job) -> Job:
        """Write the whole job document."""

        self._documents.set(JOBS_COLLECTION, job.id, job.to_document())
        return job

    def delete(self, job_id: str) -> None:
        self._documents.delete(JOBS_COLLECTION, job_id)

    def list_for_owner(self, owner: str) -> list[Job]:
        """Return the owner's jobs, newest first."""

        jobs = [Job.from_document(d) for d in self._documents.find(JOBS_COLLECTION, "owner", owner)]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    def purge_expired(self, owner: str, *, ttl: timedelta, now: datetime | None = None) -> int:
        """Delete the owner's terminal jobs that completed more than `ttl` ago."""

        cutoff = (now or utc_now()) - ttl
        purged = 0
        for job in self.list_for_owner(owner):
            if job.is_terminal and job.completed_at is not None and job.completed_at < cutoff:
                self.delete(job.id)
                purged += 1

        if purged:
            logger.info("expired_jobs_purged", owner=owner, purged=purged, ttl_hours=ttl.total_seconds() / 3600)
        return purged
