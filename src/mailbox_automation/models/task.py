"""Continuation task payload."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ContinuationPayload(BaseModel):
    """Body of an enqueued continuation that resumes a job from its saved cursor.

    `retry_count` and `cursor` identify the job state the task was enqueued for;
    a task whose values no longer match the job is stale and is dropped.
    """

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    owner: str = Field(description="Mailbox identity owning the job")
    batch_size: int = Field(default=50, ge=1, alias="batchSize")
    cursor: str | None = Field(default=None)
    retry_count: int = Field(default=0, ge=0, alias="retryCount")
    timestamp: datetime
