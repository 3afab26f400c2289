"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mailbox_automation.exceptions import UpstreamPermanent
from mailbox_automation.models import MailItem, MailPage


class FakeClock:
    """Controllable wall clock; call it to get the current time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeTimer:
    """Controllable monotonic timer."""

    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def mail_item(message_id: str, *, sender: str | None = None, to: str | None = None, cc: str | None = None) -> MailItem:
    headers = {}
    if sender is not None:
        headers["from"] = sender
    if to is not None:
        headers["to"] = to
    if cc is not None:
        headers["cc"] = cc
    return MailItem(message_id=message_id, headers=headers)


class FakeMailbox:
    """In-memory message source and label mutator.

    Pages are addressed by cursor: the first page has cursor None, page `i`
    has cursor ``"page-i"``.
    """

    def __init__(self, pages: list[list[MailItem]] | None = None) -> None:
        self.pages = pages if pages is not None else []
        self.list_calls: list[dict] = []
        self.list_errors: list[Exception] = []
        self.mutations: list[tuple[str, list[str], list[str]]] = []
        self.failing_messages: set[str] = set()
        self.mutate_errors: dict[str, Exception] = {}
        self.labels: dict[str, str] = {"INBOX": "INBOX", "Label_1": "Existing"}
        self.created_labels: list[str] = []
        self.on_list = None

    def list_page(self, cursor, *, page_size, query=None, include_headers=True) -> MailPage:
        self.list_calls.append(
            {"cursor": cursor, "page_size": page_size, "query": query, "include_headers": include_headers}
        )
        if self.on_list is not None:
            self.on_list(cursor)
        if self.list_errors:
            raise self.list_errors.pop(0)

        index = 0 if cursor is None else int(cursor.split("-")[1])
        items = self.pages[index] if index < len(self.pages) else []
        if not include_headers:
            items = [MailItem(message_id=i.message_id) for i in items]
        next_cursor = f"page-{index + 1}" if index + 1 < len(self.pages) else None
        return MailPage(items=list(items), next_cursor=next_cursor)

    def mutate_labels(self, message_id, add_ids, remove_ids=None) -> bool:
        if message_id in self.mutate_errors:
            raise self.mutate_errors[message_id]
        if message_id in self.failing_messages:
            return False
        self.mutations.append((message_id, list(add_ids), list(remove_ids or [])))
        return True

    def resolve_or_create_label(self, name: str) -> str:
        if name in self.labels:
            return name
        for label_id, label_name in self.labels.items():
            if label_name.casefold() == name.casefold():
                return label_id
        label_id = f"Label_{len(self.labels) + 1}"
        self.labels[label_id] = name
        self.created_labels.append(name)
        return label_id


@pytest.fixture
def settings(tmp_path):
    """Provide settings isolated from the environment and .env."""
    from mailbox_automation.config import Settings

    return Settings(
        _env_file=None,
        gmail_credentials_path=tmp_path / "credentials.json",
        gmail_token_path=tmp_path / "token.json",
        store_path=tmp_path / "store.sqlite3",
        scan_batch_size=2,
        label_batch_size=3,
        continuation_delay_seconds=0,
        inline_batch_delay_seconds=0,
        invocation_budget_seconds=240,
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def documents():
    from mailbox_automation.storage import InMemoryDocumentStore

    return InMemoryDocumentStore()


@pytest.fixture
def job_store(documents):
    from mailbox_automation.storage import JobStore

    return JobStore(documents)


@pytest.fixture
def contacts(documents):
    from mailbox_automation.storage import ContactSnapshotRepository

    return ContactSnapshotRepository(documents)


@pytest.fixture
def task_queue():
    from mailbox_automation.jobs import InMemoryTaskQueue

    return InMemoryTaskQueue()


@pytest.fixture
def mailbox() -> FakeMailbox:
    """Two pages: two messages, then one."""
    return FakeMailbox(
        [
            [
                mail_item("m1", sender="Alice <alice@example.com>", to="owner@example.com"),
                mail_item("m2", sender="bob@example.com", to="owner@example.com, carol@example.com"),
            ],
            [mail_item("m3", sender="dave@example.com", cc="alice@example.com")],
        ]
    )


@pytest.fixture
def runtime(settings, documents, task_queue, mailbox, clock, timer):
    from mailbox_automation.runtime import build_runtime

    rt = build_runtime(
        settings,
        documents=documents,
        queue=task_queue,
        mailbox_factory=lambda owner, kind: mailbox,
        clock=clock,
    )
    rt.service.timer = timer
    rt.service.sleep = lambda seconds: None
    return rt


@pytest.fixture
def service(runtime):
    return runtime.service


@pytest.fixture
def revoked_credential() -> UpstreamPermanent:
    return UpstreamPermanent("Gmail credential revoked or expired during messages.list")


@pytest.fixture
def sample_gmail_message() -> dict:
    """Provide a Gmail API message in format=metadata."""
    return {
        "id": "msg123456",
        "threadId": "thread789",
        "labelIds": ["INBOX", "UNREAD"],
        "payload": {
            "headers": [
                {"name": "Subject", "value": "Weekly Newsletter - Python Tips"},
                {"name": "From", "value": "Python News <newsletter@python.org>"},
                {"name": "To", "value": "user@example.com"},
                {"name": "Cc", "value": "team@example.com"},
            ],
        },
    }


@pytest.fixture
def make_item():
    """Factory for MailItems with address headers."""
    return mail_item


@pytest.fixture
def make_mailbox():
    """Factory for FakeMailbox instances with given pages."""
    return FakeMailbox
