"""Mail API capabilities consumed by the job processors."""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from mailbox_automation.models import JobKind, MailPage


@runtime_checkable
class MessageSource(Protocol):
    """List mailbox items page by page, given a cursor."""

    def list_page(
        self,
        cursor: str | None,
        *,
        page_size: int,
        query: str | None = None,
        include_headers: bool = True,
    ) -> MailPage:
        """Return one page starting at `cursor` (None means the first page)."""


@runtime_checkable
class LabelMutator(Protocol):
    """Apply labels to messages."""

    def mutate_labels(
        self,
        message_id: str,
        add_ids: list[str],
        remove_ids: list[str] | None = None,
    ) -> bool:
        """Apply a label change to one message; False when it did not apply."""

    def resolve_or_create_label(self, name: str) -> str:
        """Return the id of the label with this id or name, creating it if missing."""


# (owner, kind) -> mail API client for that mailbox. Raises NotAuthenticated
# when no credential is available for the owner.
MailboxFactory = Callable[[str, JobKind], MessageSource]
