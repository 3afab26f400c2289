"""Contact snapshot endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from mailbox_automation.api.deps import get_owner, get_runtime
from mailbox_automation.api.models import ContactsResponse, ContactStatsResponse
from mailbox_automation.runtime import Runtime

router = APIRouter(prefix="/api/contacts", tags=["contacts"])


@router.get("", response_model=ContactsResponse)
def get_contacts(
    owner: str = Depends(get_owner),
    runtime: Runtime = Depends(get_runtime),
) -> ContactsResponse:
    return ContactsResponse.from_snapshot(runtime.contacts.load(owner))


@router.get("/stats", response_model=ContactStatsResponse)
def get_contact_stats(
    owner: str = Depends(get_owner),
    runtime: Runtime = Depends(get_runtime),
) -> ContactStatsResponse:
    snapshot = runtime.contacts.load(owner)
    if snapshot is None:
        return ContactStatsResponse()
    return ContactStatsResponse(
        senders=len(snapshot.senders),
        recipients=len(snapshot.recipients),
        merged=len(snapshot.merged),
        message_sample_count=snapshot.message_sample_count,
        updated_at=snapshot.updated_at,
    )
