"""Helpers for parsing Gmail message metadata into internal models."""

from __future__ import annotations

from typing import Any

from mailbox_automation.headers import RECIPIENT_HEADERS, SENDER_HEADERS
from mailbox_automation.models import MailItem

METADATA_HEADERS: tuple[str, ...] = ("From", "To", "Cc", "Bcc")

_WANTED = frozenset(SENDER_HEADERS + RECIPIENT_HEADERS)


def _header_map(message: dict[str, Any]) -> dict[str, str]:
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    result: dict[str, str] = {}
    for h in headers:
        if not isinstance(h, dict):
            continue
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            key = name.lower()
            if key not in _WANTED:
                continue
            # Repeated recipient headers are joined so no address is lost.
            if key in result and key != "from":
                result[key] = f"{result[key]}, {value}"
            else:
                result.setdefault(key, value)
    return result


def message_to_mail_item(message: dict[str, Any]) -> MailItem:
    """Convert a Gmail API message (format=metadata) to a MailItem.

    Args:
        message: Gmail API message dict.

    Returns:
        MailItem: id plus the address headers.
    """

    return MailItem(
        message_id=str(message.get("id") or ""),
        headers=_header_map(message),
    )
