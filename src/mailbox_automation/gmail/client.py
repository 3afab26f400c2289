"""Gmail API mailbox client.

This module adapts the Gmail API to the `MessageSource` and `LabelMutator`
capabilities used by the job processors.

Notes:
    The Google API client is synchronous, and so is batch processing: one
    invocation fetches one page and finishes it before returning.
    Library errors are translated to `UpstreamTransient` (retry the batch) or
    `UpstreamPermanent` (fail the job).
"""

from __future__ import annotations

import json
import socket
import unicodedata
from pathlib import Path
from typing import Any

import structlog

from mailbox_automation.config import Settings
from mailbox_automation.exceptions import (
    ConfigurationError,
    NotAuthenticated,
    UpstreamError,
    UpstreamPermanent,
    UpstreamTransient,
)
from mailbox_automation.gmail.parsing import METADATA_HEADERS, message_to_mail_item
from mailbox_automation.models import MailItem, MailPage

logger = structlog.get_logger()

INBOX_LABEL_ID = "INBOX"

_TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})
_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded", "backendError"})
_CREDENTIAL_REASONS = frozenset({"authError", "insufficientPermissions"})


def _http_status(err: BaseException) -> int | None:
    try:
        resp = getattr(err, "resp", None)
        status = getattr(resp, "status", None)
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _error_reasons(err: BaseException) -> set[str]:
    content = getattr(err, "content", None)
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    if not isinstance(content, str) or not content:
        return set()
    try:
        body = json.loads(content)
    except ValueError:
        return set()
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return set()
    return {str(e.get("reason")) for e in error.get("errors") or [] if isinstance(e, dict) and e.get("reason")}


def _retry_after(err: BaseException) -> float | None:
    resp = getattr(err, "resp", None)
    value = resp.get("retry-after") if hasattr(resp, "get") else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _is_refresh_error(err: BaseException) -> bool:
    from google.auth.exceptions import RefreshError

    return isinstance(err, RefreshError)


def is_credential_failure(err: BaseException) -> bool:
    """True when the error means the mailbox credential itself is unusable."""

    if _is_refresh_error(err):
        return True
    status = _http_status(err)
    if status == 401:
        return True
    return status == 403 and bool(_error_reasons(err) & _CREDENTIAL_REASONS)


def translate_error(err: BaseException, *, operation: str) -> UpstreamError:
    """Map a Gmail client exception to the upstream error taxonomy."""

    if isinstance(err, UpstreamError):
        return err
    if _is_refresh_error(err):
        return UpstreamPermanent(f"Gmail credential revoked or expired during {operation}: {err}")
    if isinstance(err, (TimeoutError, socket.timeout, ConnectionError)):
        return UpstreamTransient(f"Gmail {operation} timed out: {err}")

    status = _http_status(err)
    if status is None:
        return UpstreamPermanent(f"Gmail {operation} failed: {err}")
    if status in _TRANSIENT_STATUSES:
        return UpstreamTransient(f"Gmail {operation} failed with HTTP {status}", retry_after=_retry_after(err))
    if status == 403 and _error_reasons(err) & _RATE_LIMIT_REASONS:
        return UpstreamTransient(f"Gmail {operation} rate limited", retry_after=_retry_after(err))
    return UpstreamPermanent(f"Gmail {operation} failed with HTTP {status}: {err}")


def _norm_label_name(name: str) -> str:
    # Gmail treats case/whitespace variants of a label name as the same label.
    return unicodedata.normalize("NFKC", str(name)).strip().casefold()


class GmailMailbox:
    """Gmail API client for one mailbox.

    This client handles authentication, paged message listing, label
    resolution and per-message label mutation.
    """

    def __init__(self, settings: Settings | None = None, *, service: Any | None = None) -> None:
        """Initialize the mailbox client.

        Args:
            settings: Application settings. If None, uses default settings.
            service: Pre-built Gmail API service resource. If None,
                `authenticate()` builds one from the local OAuth files.
        """
        from mailbox_automation.config import get_settings

        self.settings = settings or get_settings()
        self._service: Any | None = service
        self._labels_by_id: dict[str, str] | None = None
        logger.debug("gmail_mailbox_initialized", prebuilt_service=service is not None)

    @property
    def user_id(self) -> str:
        return self.settings.gmail_user_id

    def authenticate(self) -> None:
        """Authenticate with Gmail API using OAuth2.

        Raises:
            ConfigurationError: If the client secrets file is missing.
            NotAuthenticated: If no valid credential can be obtained.
        """

        if self._service is not None:
            return

        credentials_path = Path(self.settings.gmail_credentials_path)
        token_path = Path(self.settings.gmail_token_path)
        scope = self.settings.gmail_scope

        if not credentials_path.exists() and not token_path.exists():
            raise ConfigurationError(
                f"Gmail credentials file not found: {credentials_path}. "
                "See README.md -> Gmail API Setup."
            )

        logger.info(
            "gmail_authentication_started",
            credentials_path=str(credentials_path),
            token_path=str(token_path),
            scope=scope,
        )

        try:
            self._service = self._build_service(credentials_path, token_path, scope)
        except NotAuthenticated:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_authentication_failed", error=str(exc))
            raise NotAuthenticated(str(exc)) from exc

        logger.info("gmail_authentication_completed")

    def profile_email(self) -> str:
        """Return the mailbox address the credential belongs to."""

        service = self._require_service()
        try:
            profile = service.users().getProfile(userId=self.user_id).execute()
        except Exception as exc:  # noqa: BLE001
            raise translate_error(exc, operation="getProfile") from exc
        return str(profile.get("emailAddress") or "")

    def list_page(
        self,
        cursor: str | None,
        *,
        page_size: int,
        query: str | None = None,
        include_headers: bool = True,
    ) -> MailPage:
        """List one page of messages, optionally with address headers.

        Raises:
            UpstreamTransient: Rate limit, timeout or server error; retry later.
            UpstreamPermanent: Revoked credential or other unrecoverable error.
        """

        service = self._require_service()
        logger.debug("gmail_list_page", cursor=cursor, page_size=page_size, query=query)

        try:
            response = (
                service.users()
                .messages()
                .list(
                    userId=self.user_id,
                    maxResults=page_size,
                    q=query or None,
                    pageToken=cursor,
                )
                .execute()
            )
        except Exception as exc:  # noqa: BLE001
            raise translate_error(exc, operation="messages.list") from exc

        items: list[MailItem] = []
        for ref in response.get("messages", []) or []:
            message_id = ref.get("id")
            if not isinstance(message_id, str) or not message_id:
                continue
            if include_headers:
                items.append(self._get_metadata(message_id))
            else:
                items.append(MailItem(message_id=message_id))

        estimate = response.get("resultSizeEstimate")
        return MailPage(
            items=items,
            next_cursor=response.get("nextPageToken") or None,
            result_size_estimate=int(estimate) if estimate is not None else None,
        )

    def mutate_labels(
        self,
        message_id: str,
        add_ids: list[str],
        remove_ids: list[str] | None = None,
    ) -> bool:
        """Add/remove labels on one message.

        Returns False for per-message failures. A credential failure raises,
        since every following message would fail the same way.
        """

        service = self._require_service()
        body = {"addLabelIds": list(add_ids), "removeLabelIds": list(remove_ids or [])}

        try:
            service.users().messages().modify(userId=self.user_id, id=message_id, body=body).execute()
        except Exception as exc:  # noqa: BLE001
            if is_credential_failure(exc):
                raise translate_error(exc, operation="messages.modify") from exc
            logger.warning(
                "gmail_modify_failed",
                message_id=message_id,
                status=_http_status(exc),
                error=str(exc),
            )
            return False
        return True

    def resolve_or_create_label(self, name: str) -> str:
        """Resolve a label id or name to an id, creating the label if needed.

        Resolution order: existing id, exact name, normalized name, create.
        """

        labels = self._label_map()
        if name in labels:
            return name

        existing = self._lookup_label_id(name)
        if existing:
            return existing

        service = self._require_service()
        try:
            created = (
                service.users()
                .labels()
                .create(
                    userId=self.user_id,
                    body={"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"},
                )
                .execute()
            )
        except Exception as exc:  # noqa: BLE001
            # Another run may have created the label since we listed them.
            if _http_status(exc) == 409:
                self._labels_by_id = None
                existing = self._lookup_label_id(name)
                if existing:
                    return existing
            raise translate_error(exc, operation="labels.create") from exc

        label_id = str(created.get("id") or "")
        if not label_id:
            raise UpstreamPermanent(f"Gmail labels.create returned no id for {name!r}")
        labels[label_id] = str(created.get("name") or name)
        logger.info("gmail_label_created", label_id=label_id, name=name)
        return label_id

    def _lookup_label_id(self, name: str) -> str | None:
        labels = self._label_map()
        for label_id, label_name in labels.items():
            if label_name == name:
                return label_id
        wanted = _norm_label_name(name)
        for label_id, label_name in labels.items():
            if _norm_label_name(label_name) == wanted:
                return label_id
        return None

    def _label_map(self) -> dict[str, str]:
        if self._labels_by_id is not None:
            return self._labels_by_id

        service = self._require_service()
        try:
            resp = service.users().labels().list(userId=self.user_id).execute()
        except Exception as exc:  # noqa: BLE001
            raise translate_error(exc, operation="labels.list") from exc

        out: dict[str, str] = {}
        for label in resp.get("labels", []) or []:
            lid = label.get("id")
            lname = label.get("name")
            if lid and lname:
                out[str(lid)] = str(lname)
        self._labels_by_id = out
        return out

    def _get_metadata(self, message_id: str) -> MailItem:
        service = self._require_service()
        try:
            message = (
                service.users()
                .messages()
                .get(
                    userId=self.user_id,
                    id=message_id,
                    format="metadata",
                    metadataHeaders=list(METADATA_HEADERS),
                )
                .execute()
            )
        except Exception as exc:  # noqa: BLE001
            if _http_status(exc) == 404:
                # Deleted between list and get; counts as processed with no addresses.
                logger.warning("gmail_message_vanished", message_id=message_id)
                return MailItem(message_id=message_id)
            raise translate_error(exc, operation="messages.get") from exc
        return message_to_mail_item(message)

    def _require_service(self) -> Any:
        if self._service is None:
            raise NotAuthenticated(
                "Gmail mailbox is not authenticated. Call GmailMailbox.authenticate() first."
            )
        return self._service

    def _build_service(self, credentials_path: Path, token_path: Path, scope: str) -> Any:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.exceptions import RefreshError
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build

        creds: Credentials | None = None
        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), scopes=[scope])

        if creds is not None and creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except RefreshError as exc:
                raise NotAuthenticated(f"Gmail token refresh failed: {exc}") from exc

        if creds is None or not creds.valid:
            if not self.settings.gmail_allow_interactive:
                raise NotAuthenticated(
                    "Gmail OAuth token is missing/invalid and interactive auth is disabled."
                )
            if not credentials_path.exists():
                raise ConfigurationError(f"Gmail credentials file not found: {credentials_path}")
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
            creds = flow.run_local_server(port=0)
            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(creds.to_json(), encoding="utf-8")

        # cache_discovery=False prevents writing discovery docs to disk.
        return build("gmail", "v1", credentials=creds, cache_discovery=False)
