"""Contact snapshot model.

The snapshot is the queryable result of scan jobs: the deduplicated sender and
recipient addresses seen in an owner's mailbox. It is stored separately from the
job document, which only tracks progress.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ContactSnapshot(BaseModel):
    """Denormalized contact address sets for one owner."""

    model_config = ConfigDict(populate_by_name=True)

    senders: list[str] = Field(default_factory=list)
    recipients: list[str] = Field(default_factory=list)
    merged: list[str] = Field(default_factory=list)
    message_sample_count: int = Field(default=0, alias="messageSampleCount")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @classmethod
    def build(
        cls,
        senders: Iterable[str],
        recipients: Iterable[str],
        *,
        message_sample_count: int,
        updated_at: datetime,
    ) -> "ContactSnapshot":
        sender_set = set(senders)
        recipient_set = set(recipients)
        return cls(
            senders=sorted(sender_set),
            recipients=sorted(recipient_set),
            merged=sorted(sender_set | recipient_set),
            message_sample_count=message_sample_count,
            updated_at=updated_at,
        )

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
