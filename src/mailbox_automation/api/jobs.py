"""Job endpoints.

All routes act on jobs of the requesting owner only; another owner's job is
reported as not found.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from mailbox_automation.api.deps import get_owner, get_service
from mailbox_automation.api.models import (
    CreateLabelJobRequest,
    ErrorResponse,
    InvocationResponse,
    JobListResponse,
    JobStatusResponse,
)
from mailbox_automation.exceptions import InvalidTransition
from mailbox_automation.jobs import InvocationResult, JobService
from mailbox_automation.models import JobKind

router = APIRouter(
    prefix="/api/jobs",
    tags=["jobs"],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


def _status(service: JobService, job_id: str, owner: str) -> JobStatusResponse:
    return JobStatusResponse.from_view(service.status(job_id, owner=owner))


def _invocation(service: JobService, result: InvocationResult) -> InvocationResponse:
    return InvocationResponse.from_result(result, service.describe(result.job))


@router.get("", response_model=JobListResponse)
def list_jobs(
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> JobListResponse:
    return JobListResponse(
        jobs=[JobStatusResponse.from_view(service.describe(j)) for j in service.list_for_owner(owner)]
    )


@router.post("/scan", response_model=JobStatusResponse, status_code=201)
def create_scan_job(
    start: bool = False,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> JobStatusResponse:
    active = service.active_jobs(owner, JobKind.SCAN)
    if active:
        raise InvalidTransition(f"A scan job is already active: {active[0].id}", status=active[0].status.value)

    job = service.create_scan_job(owner)
    if start:
        service.start(job.id, owner=owner)
    return _status(service, job.id, owner)


@router.post("/label", response_model=JobStatusResponse, status_code=201)
def create_label_job(
    body: CreateLabelJobRequest,
    start: bool = False,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> JobStatusResponse:
    for existing in service.active_jobs(owner, JobKind.LABEL_APPLICATION):
        if body.filter_id and existing.filter_id == body.filter_id.strip():
            raise InvalidTransition(
                f"A label job for filter {existing.filter_id} is already active: {existing.id}",
                status=existing.status.value,
            )

    job = service.create_label_job(owner, body.filter_id or "", body.rule_criteria, body.label_ids)
    if start:
        service.start(job.id, owner=owner)
    return _status(service, job.id, owner)


@router.get("/{job_id}", response_model=JobStatusResponse)
def get_job(
    job_id: str,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> JobStatusResponse:
    return _status(service, job_id, owner)


@router.post("/{job_id}/start", response_model=InvocationResponse)
def start_job(
    job_id: str,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> InvocationResponse:
    return _invocation(service, service.start(job_id, owner=owner))


@router.post("/{job_id}/pause", response_model=JobStatusResponse)
def pause_job(
    job_id: str,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> JobStatusResponse:
    service.pause(job_id, owner=owner)
    return _status(service, job_id, owner)


@router.post("/{job_id}/resume", response_model=InvocationResponse)
def resume_job(
    job_id: str,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> InvocationResponse:
    return _invocation(service, service.resume(job_id, owner=owner))


@router.post("/{job_id}/cancel", response_model=JobStatusResponse)
def cancel_job(
    job_id: str,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> JobStatusResponse:
    service.cancel(job_id, owner=owner)
    return _status(service, job_id, owner)


@router.post("/{job_id}/batch", response_model=InvocationResponse)
def process_batch(
    job_id: str,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> InvocationResponse:
    return _invocation(service, service.process_batch(job_id, owner=owner))


@router.delete("/{job_id}", status_code=204)
def delete_job(
    job_id: str,
    owner: str = Depends(get_owner),
    service: JobService = Depends(get_service),
) -> Response:
    service.delete(job_id, owner=owner)
    return Response(status_code=204)
