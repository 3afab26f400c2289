"""IMAP message source for contact scans.

Gmail exposes every mailbox over IMAP with an app password, which lets a scan
run without an OAuth client. The cursor is the last UID seen, so a resumed
scan continues strictly after it. Label jobs are not supported here.
"""

from __future__ import annotations

import email
import imaplib
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from email.header import decode_header, make_header
from typing import Any

import structlog

from mailbox_automation.config import Settings
from mailbox_automation.exceptions import (
    NotAuthenticated,
    UpstreamPermanent,
    UpstreamTransient,
    ValidationError,
)
from mailbox_automation.models import MailItem, MailPage

logger = structlog.get_logger()

APP_PASSWORD_LENGTH = 16

_HEADER_FETCH = "(UID BODY.PEEK[HEADER.FIELDS (FROM TO CC BCC)])"
_UID_RE = re.compile(rb"UID (\d+)")

ConnectionFactory = Callable[[str, int], Any]


def normalize_app_password(password: str | None) -> str:
    """Strip the display spaces from an app password and check its length.

    Raises:
        ValidationError: If the password is not exactly 16 characters.
    """

    cleaned = "".join((password or "").split())
    if len(cleaned) != APP_PASSWORD_LENGTH:
        raise ValidationError(
            f"IMAP app password must be {APP_PASSWORD_LENGTH} characters (got {len(cleaned)})"
        )
    return cleaned


def imap_quote(value: str) -> str:
    """Render `value` as an IMAP quoted string."""

    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _decode(value: str) -> str:
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeDecodeError, LookupError, ValueError):
        return value


def _parse_fetch_response(data: list[Any]) -> dict[int, dict[str, str]]:
    out: dict[int, dict[str, str]] = {}
    for part in data or []:
        if not isinstance(part, tuple) or len(part) < 2:
            continue
        match = _UID_RE.search(part[0] if isinstance(part[0], bytes) else b"")
        if not match:
            continue
        msg = email.message_from_bytes(part[1] or b"")
        headers: dict[str, str] = {}
        for name in ("from", "to", "cc", "bcc"):
            values = msg.get_all(name) or []
            if values:
                headers[name] = ", ".join(_decode(str(v)) for v in values)
        out[int(match.group(1))] = headers
    return out


class ImapMailbox:
    """Read-only IMAP message source for one mailbox."""

    def __init__(
        self,
        settings: Settings,
        *,
        username: str,
        password: str | None = None,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.settings = settings
        self.username = username
        self._password = normalize_app_password(
            password if password is not None else settings.imap_app_password
        )
        self._connect = connection_factory or imaplib.IMAP4_SSL

    @contextmanager
    def _session(self) -> Iterator[Any]:
        try:
            conn = self._connect(self.settings.imap_host, self.settings.imap_port)
        except OSError as exc:
            raise UpstreamTransient(f"IMAP connect to {self.settings.imap_host} failed: {exc}") from exc

        try:
            try:
                conn.login(self.username, self._password)
            except imaplib.IMAP4.error as exc:
                raise NotAuthenticated(f"IMAP login failed for {self.username}: {exc}") from exc

            status, _ = conn.select(f'"{self.settings.imap_mailbox}"', readonly=True)
            if status != "OK":
                raise UpstreamPermanent(f"IMAP mailbox not found: {self.settings.imap_mailbox}")
            yield conn
        except (imaplib.IMAP4.abort, OSError) as exc:
            raise UpstreamTransient(f"IMAP connection dropped: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise UpstreamPermanent(f"IMAP command failed: {exc}") from exc
        finally:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError):
                logger.debug("imap_logout_failed", host=self.settings.imap_host)

    def list_page(
        self,
        cursor: str | None,
        *,
        page_size: int,
        query: str | None = None,
        include_headers: bool = True,
    ) -> MailPage:
        """List messages with a UID greater than `cursor`, oldest first."""

        try:
            last_uid = int(cursor) if cursor else 0
        except ValueError as exc:
            raise UpstreamPermanent(f"Invalid IMAP cursor: {cursor!r}") from exc

        with self._session() as conn:
            criteria: list[str] = [f"UID {last_uid + 1}:*"]
            if query:
                # Gmail's IMAP extension accepts its web search syntax.
                criteria += ["X-GM-RAW", imap_quote(query)]
            status, data = conn.uid("SEARCH", None, *criteria)
            if status != "OK":
                raise UpstreamTransient(f"IMAP search failed: {status}")

            # "N:*" always matches the highest UID, even when it is below N.
            uids = sorted(u for u in (int(x) for x in (data[0] or b"").split()) if u > last_uid)
            page_uids = uids[:page_size]

            headers_by_uid: dict[int, dict[str, str]] = {}
            if include_headers and page_uids:
                uid_set = ",".join(str(u) for u in page_uids)
                status, fetched = conn.uid("FETCH", uid_set, _HEADER_FETCH)
                if status != "OK":
                    raise UpstreamTransient(f"IMAP fetch failed: {status}")
                headers_by_uid = _parse_fetch_response(fetched)

        items = [MailItem(message_id=str(u), headers=headers_by_uid.get(u, {})) for u in page_uids]
        has_more = len(uids) > len(page_uids)
        logger.debug("imap_page_listed", last_uid=last_uid, count=len(items), has_more=has_more)
        return MailPage(
            items=items,
            next_cursor=str(page_uids[-1]) if has_more else None,
            result_size_estimate=len(uids),
        )
