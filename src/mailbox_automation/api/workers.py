"""Continuation worker endpoint.

A task queue delivers `ContinuationPayload` bodies here. Stale or duplicated
payloads are acknowledged with `dropped=true` so the queue does not retry them;
transient failures answer 503 so it does.
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import APIRouter, Depends, Header

from mailbox_automation.api.deps import get_runtime
from mailbox_automation.api.models import ErrorResponse, InvocationResponse
from mailbox_automation.exceptions import NotAuthenticated, ValidationError
from mailbox_automation.models import ContinuationPayload
from mailbox_automation.runtime import Runtime

logger = structlog.get_logger()

router = APIRouter(prefix="/api/workers", tags=["workers"], responses={503: {"model": ErrorResponse}})


@router.post("/jobs/{job_id}", response_model=InvocationResponse)
def run_continuation(
    job_id: str,
    payload: ContinuationPayload,
    x_worker_token: str | None = Header(default=None),
    runtime: Runtime = Depends(get_runtime),
) -> InvocationResponse:
    expected = runtime.settings.worker_token
    if expected and not hmac.compare_digest(x_worker_token or "", expected):
        raise NotAuthenticated("Invalid worker token")
    if payload.job_id != job_id:
        raise ValidationError(f"Payload jobId {payload.job_id} does not match path {job_id}")

    logger.info(
        "continuation_received",
        job_id=job_id,
        cursor=payload.cursor,
        retry_count=payload.retry_count,
        enqueued_at=payload.timestamp.isoformat(),
    )

    service = runtime.service
    result = service.handle_continuation(payload)
    return InvocationResponse.from_result(result, service.describe(result.job))
