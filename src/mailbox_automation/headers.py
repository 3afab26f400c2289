"""Address extraction from message headers."""

from __future__ import annotations

from dataclasses import dataclass, field
from email.utils import getaddresses

from mailbox_automation.models import MailItem

SENDER_HEADERS: tuple[str, ...] = ("from",)
RECIPIENT_HEADERS: tuple[str, ...] = ("to", "cc", "bcc")


@dataclass
class ParsedAddresses:
    """Addresses found on one message."""

    senders: set[str] = field(default_factory=set)
    recipients: set[str] = field(default_factory=set)


def parse_address_list(value: str | None) -> list[str]:
    """Parse a raw address header into lower-cased addresses.

    Malformed entries (no `@`, embedded whitespace) are dropped rather than raising.
    """

    if not value:
        return []

    out: list[str] = []
    for _, addr in getaddresses([value]):
        addr = (addr or "").strip().strip("<>").lower()
        if not addr or "@" not in addr or any(c.isspace() for c in addr):
            continue
        local, _, domain = addr.rpartition("@")
        if not local or not domain:
            continue
        out.append(addr)
    return out


def extract_addresses(item: MailItem) -> ParsedAddresses:
    """Split an item's headers into sender and recipient addresses."""

    parsed = ParsedAddresses()
    for name in SENDER_HEADERS:
        parsed.senders.update(parse_address_list(item.header(name)))
    for name in RECIPIENT_HEADERS:
        parsed.recipients.update(parse_address_list(item.header(name)))
    return parsed
