"""API models for the Mailbox Automation HTTP API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from mailbox_automation.jobs import InvocationResult, JobStatusView
from mailbox_automation.models import ContactSnapshot, RuleCriteria


class JobStatusResponse(BaseModel):
    job_id: str
    kind: str
    owner: str
    status: str
    cursor: str | None = None
    counters: dict[str, int]
    filter_id: str | None = None
    rule_criteria: dict | None = None
    label_ids: list[str] | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    elapsed_seconds: float
    estimated_total: int | None = None
    estimated_remaining_seconds: float | None = None
    eta_hint: str | None = None
    message: str

    @classmethod
    def from_view(cls, view: JobStatusView) -> "JobStatusResponse":
        job = view.job
        return cls(
            job_id=job.id,
            kind=job.kind.value,
            owner=job.owner,
            status=job.status.value,
            cursor=job.cursor,
            counters=job.counters.model_dump(),
            filter_id=job.filter_id,
            rule_criteria=job.rule_criteria.model_dump(by_alias=True) if job.rule_criteria else None,
            label_ids=job.label_ids,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            error=job.error,
            retry_count=job.retry_count,
            elapsed_seconds=round(view.elapsed_seconds, 3),
            estimated_total=view.estimated_total,
            estimated_remaining_seconds=view.estimated_remaining_seconds,
            eta_hint=view.eta_hint,
            message=view.message,
        )


class InvocationResponse(BaseModel):
    job: JobStatusResponse
    batches: int = 0
    enqueued: bool = False
    dropped: bool = False

    @classmethod
    def from_result(cls, result: InvocationResult, view: JobStatusView) -> "InvocationResponse":
        return cls(
            job=JobStatusResponse.from_view(view),
            batches=result.batches,
            enqueued=result.enqueued,
            dropped=result.dropped,
        )


class JobListResponse(BaseModel):
    jobs: list[JobStatusResponse]


class CreateLabelJobRequest(BaseModel):
    """Body of `POST /api/jobs/label`.

    Fields are optional at the schema level so missing values are reported as
    400 validation errors by the service rather than 422 schema errors.
    """

    model_config = ConfigDict(populate_by_name=True)

    filter_id: str | None = Field(default=None, alias="filterId")
    rule_criteria: RuleCriteria | None = Field(default=None, alias="ruleCriteria")
    label_ids: list[str] | None = Field(default=None, alias="labelIds")


class ContactsResponse(BaseModel):
    senders: list[str]
    recipients: list[str]
    merged: list[str]
    message_sample_count: int = 0
    updated_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: ContactSnapshot | None) -> "ContactsResponse":
        if snapshot is None:
            return cls(senders=[], recipients=[], merged=[])
        return cls(
            senders=snapshot.senders,
            recipients=snapshot.recipients,
            merged=snapshot.merged,
            message_sample_count=snapshot.message_sample_count,
            updated_at=snapshot.updated_at,
        )


class ContactStatsResponse(BaseModel):
    senders: int = 0
    recipients: int = 0
    merged: int = 0
    message_sample_count: int = 0
    updated_at: datetime | None = None


class ErrorResponse(BaseModel):
    error: str
    message: str | None = None
