"""Job document model.

A job is the persisted record of one long-running scan or label-application
operation. Persisted documents use camelCase field names; Python attributes are
snake_case and mapped through aliases.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobKind(str, Enum):
    """Job variant tag."""

    SCAN = "scan"
    LABEL_APPLICATION = "label_application"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.FAILED})


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ScanCounters(_Document):
    """Accumulators for scan jobs."""

    messages_processed: int = Field(default=0, ge=0, alias="messagesProcessed")
    addresses_found: int = Field(default=0, ge=0, alias="addressesFound")


class LabelCounters(_Document):
    """Accumulators for label-application jobs."""

    messages_processed: int = Field(default=0, ge=0, alias="messagesProcessed")
    messages_matched: int = Field(default=0, ge=0, alias="messagesMatched")
    labels_applied: int = Field(default=0, ge=0, alias="labelsApplied")


JobCounters = Union[ScanCounters, LabelCounters]


class RuleCriteria(_Document):
    """Match criteria of the rule a label job applies.

    Values follow Gmail search semantics; `query` is appended verbatim.
    """

    from_: str | None = Field(default=None, alias="from", description="Sender match")
    to: str | None = Field(default=None, description="Recipient match")
    subject: str | None = Field(default=None, description="Subject match")
    query: str | None = Field(default=None, description="Free-text search terms")
    archive: bool = Field(default=False, description="Remove INBOX when applying labels")

    def has_terms(self) -> bool:
        return any((v or "").strip() for v in (self.from_, self.to, self.subject, self.query))


class Job(BaseModel):
    """A persisted job document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(description="Opaque unique job id")
    kind: JobKind = Field(description="Job variant")
    owner: str = Field(description="Mailbox identity that owns the job")
    status: JobStatus = Field(default=JobStatus.PENDING)
    cursor: str | None = Field(default=None, description="Continuation page token")
    counters: JobCounters = Field(description="Kind-specific accumulators")

    rule_criteria: RuleCriteria | None = Field(default=None, alias="ruleCriteria")
    label_ids: list[str] | None = Field(default=None, alias="labelIds")
    filter_id: str | None = Field(default=None, alias="filterId")

    created_at: datetime = Field(alias="createdAt")
    started_at: datetime | None = Field(default=None, alias="startedAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")

    error: str | None = Field(default=None, description="Failure description when failed")
    retry_count: int = Field(default=0, ge=0, alias="retryCount")

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "Job":
        if self.kind == JobKind.SCAN:
            if not isinstance(self.counters, ScanCounters):
                raise ValueError("scan jobs require scan counters")
            if self.rule_criteria is not None or self.label_ids is not None:
                raise ValueError("scan jobs do not carry rule parameters")
        else:
            if not isinstance(self.counters, LabelCounters):
                raise ValueError("label_application jobs require label counters")
            if self.rule_criteria is None or not self.label_ids:
                raise ValueError("label_application jobs require ruleCriteria and labelIds")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_document(self) -> dict[str, Any]:
        """Serialize to the persisted (camelCase, JSON-safe) representation."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Job":
        return cls.model_validate(document)
