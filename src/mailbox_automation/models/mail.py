"""Mail API boundary models.

A page is what one `list_page` call against a message source returns. Items
carry only the address headers the scan needs; label jobs request ids only.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class MailItem(BaseModel):
    """One message listed by a message source."""

    message_id: str = Field(description="Source message id (Gmail id or IMAP UID)")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Lower-cased header name -> raw value (from/to/cc/bcc only)",
    )

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


class MailPage(BaseModel):
    """One page of listing results plus the continuation marker."""

    items: list[MailItem] = Field(default_factory=list)
    next_cursor: str | None = Field(default=None, description="Cursor of the next page, if any")
    result_size_estimate: int | None = Field(default=None, description="Upstream total estimate")

    @property
    def has_more(self) -> bool:
        return bool(self.next_cursor)
