"""Unit tests for Gmail client."""

import json
from unittest.mock import MagicMock

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from mailbox_automation.exceptions import (
    ConfigurationError,
    NotAuthenticated,
    UpstreamPermanent,
    UpstreamTransient,
)
from mailbox_automation.gmail.client import GmailMailbox, translate_error


def _http_error(status: int, reason: str | None = None, *, retry_after: str | None = None) -> HttpError:
    info = {"status": str(status)}
    if retry_after is not None:
        info["retry-after"] = retry_after
    body = {"error": {"code": status, "message": "boom", "errors": [{"reason": reason}] if reason else []}}
    return HttpError(httplib2.Response(info), json.dumps(body).encode("utf-8"))


def _request(result=None, error: Exception | None = None) -> MagicMock:
    req = MagicMock()
    if error is not None:
        req.execute.side_effect = error
    else:
        req.execute.return_value = result
    return req


def _metadata(message_id: str, sender: str) -> dict:
    return {"id": message_id, "payload": {"headers": [{"name": "From", "value": sender}]}}


class TestTranslateError:
    """Test suite for Gmail error translation."""

    def test_rate_limit_is_transient_with_retry_after(self) -> None:
        err = translate_error(_http_error(429, retry_after="30"), operation="messages.list")

        assert isinstance(err, UpstreamTransient)
        assert err.retry_after == 30.0

    def test_server_error_is_transient(self) -> None:
        assert isinstance(translate_error(_http_error(503), operation="x"), UpstreamTransient)

    def test_403_rate_limit_reason_is_transient(self) -> None:
        err = translate_error(_http_error(403, "userRateLimitExceeded"), operation="x")

        assert isinstance(err, UpstreamTransient)

    def test_other_403_is_permanent(self) -> None:
        assert isinstance(translate_error(_http_error(403, "forbidden"), operation="x"), UpstreamPermanent)

    def test_client_errors_are_permanent(self) -> None:
        assert isinstance(translate_error(_http_error(401), operation="x"), UpstreamPermanent)
        assert isinstance(translate_error(_http_error(400), operation="x"), UpstreamPermanent)

    def test_refresh_error_is_permanent(self) -> None:
        err = translate_error(RefreshError("invalid_grant"), operation="x")

        assert isinstance(err, UpstreamPermanent)
        assert "revoked" in str(err)

    def test_timeout_is_transient(self) -> None:
        assert isinstance(translate_error(TimeoutError("read timed out"), operation="x"), UpstreamTransient)


class TestGmailMailbox:
    """Test suite for GmailMailbox class."""

    def test_requires_authentication(self, settings) -> None:
        """Test that API calls require authenticate() first."""
        mailbox = GmailMailbox(settings)

        with pytest.raises(NotAuthenticated):
            mailbox.list_page(None, page_size=10)

    def test_authenticate_missing_credentials_raises(self, settings) -> None:
        """Test that authenticate fails fast when no credential files exist."""
        mailbox = GmailMailbox(settings)

        with pytest.raises(ConfigurationError):
            mailbox.authenticate()

    def test_list_page_fetches_metadata_per_message(self, settings) -> None:
        service = MagicMock()
        messages = service.users().messages()
        messages.list.return_value = _request(
            {"messages": [{"id": "m1"}, {"id": "m2"}], "nextPageToken": "tok-2", "resultSizeEstimate": 40}
        )
        messages.get.side_effect = lambda **kw: _request(_metadata(kw["id"], f"{kw['id']}@x.com"))

        page = GmailMailbox(settings, service=service).list_page("tok-1", page_size=2, query="in:anywhere")

        assert [i.message_id for i in page.items] == ["m1", "m2"]
        assert page.items[0].header("from") == "m1@x.com"
        assert page.next_cursor == "tok-2"
        assert page.result_size_estimate == 40
        messages.list.assert_called_with(userId="me", maxResults=2, q="in:anywhere", pageToken="tok-1")
        assert messages.get.call_args.kwargs["format"] == "metadata"

    def test_list_page_without_headers_skips_metadata(self, settings) -> None:
        service = MagicMock()
        messages = service.users().messages()
        messages.list.return_value = _request({"messages": [{"id": "m1"}]})

        page = GmailMailbox(settings, service=service).list_page(None, page_size=5, include_headers=False)

        assert [i.message_id for i in page.items] == ["m1"]
        assert page.next_cursor is None
        messages.get.assert_not_called()

    def test_vanished_message_is_kept_without_headers(self, settings) -> None:
        service = MagicMock()
        messages = service.users().messages()
        messages.list.return_value = _request({"messages": [{"id": "gone"}, {"id": "m2"}]})

        def get(**kw):
            if kw["id"] == "gone":
                return _request(error=_http_error(404))
            return _request(_metadata(kw["id"], "s@x.com"))

        messages.get.side_effect = get

        page = GmailMailbox(settings, service=service).list_page(None, page_size=5)

        assert [i.message_id for i in page.items] == ["gone", "m2"]
        assert page.items[0].headers == {}

    def test_list_page_translates_errors(self, settings) -> None:
        service = MagicMock()
        service.users().messages().list.return_value = _request(error=_http_error(429))

        with pytest.raises(UpstreamTransient):
            GmailMailbox(settings, service=service).list_page(None, page_size=5)

    def test_mutate_labels_success(self, settings) -> None:
        service = MagicMock()
        modify = service.users().messages().modify
        modify.return_value = _request({})

        assert GmailMailbox(settings, service=service).mutate_labels("m1", ["L1"], ["INBOX"]) is True
        modify.assert_called_with(
            userId="me",
            id="m1",
            body={"addLabelIds": ["L1"], "removeLabelIds": ["INBOX"]},
        )

    def test_mutate_labels_per_message_failure_returns_false(self, settings) -> None:
        service = MagicMock()
        service.users().messages().modify.return_value = _request(error=_http_error(400))

        assert GmailMailbox(settings, service=service).mutate_labels("m1", ["L1"]) is False

    def test_mutate_labels_credential_failure_raises(self, settings) -> None:
        service = MagicMock()
        service.users().messages().modify.return_value = _request(error=_http_error(401))

        with pytest.raises(UpstreamPermanent):
            GmailMailbox(settings, service=service).mutate_labels("m1", ["L1"])

    def test_resolve_label_by_id_and_normalized_name(self, settings) -> None:
        service = MagicMock()
        labels = service.users().labels()
        labels.list.return_value = _request({"labels": [{"id": "Label_7", "name": "Newsletters"}]})

        mailbox = GmailMailbox(settings, service=service)

        assert mailbox.resolve_or_create_label("Label_7") == "Label_7"
        assert mailbox.resolve_or_create_label("  newsletters ") == "Label_7"
        labels.create.assert_not_called()
        assert labels.list.call_count == 1

    def test_resolve_label_creates_missing(self, settings) -> None:
        service = MagicMock()
        labels = service.users().labels()
        labels.list.return_value = _request({"labels": []})
        labels.create.return_value = _request({"id": "Label_9", "name": "Receipts"})

        mailbox = GmailMailbox(settings, service=service)

        assert mailbox.resolve_or_create_label("Receipts") == "Label_9"
        assert mailbox.resolve_or_create_label("Receipts") == "Label_9"
        assert labels.create.call_count == 1

    def test_resolve_label_conflict_links_existing(self, settings) -> None:
        service = MagicMock()
        labels = service.users().labels()
        labels.list.side_effect = [
            _request({"labels": []}),
            _request({"labels": [{"id": "Label_3", "name": "Receipts"}]}),
        ]
        labels.create.return_value = _request(error=_http_error(409))

        assert GmailMailbox(settings, service=service).resolve_or_create_label("Receipts") == "Label_3"

    def test_profile_email(self, settings) -> None:
        service = MagicMock()
        service.users().getProfile.return_value = _request({"emailAddress": "a@x.com"})

        assert GmailMailbox(settings, service=service).profile_email() == "a@x.com"
