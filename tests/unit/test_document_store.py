"""Unit tests for the keyed document stores."""

import sqlite3

import pytest

from mailbox_automation.exceptions import PersistenceError
from mailbox_automation.storage import InMemoryDocumentStore, SqliteDocumentStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryDocumentStore()
    s = SqliteDocumentStore(tmp_path / "docs.sqlite3", max_retries=0)
    s.initialize()
    return s


def test_get_missing_returns_none(store) -> None:
    assert store.get("jobs", "nope") is None


def test_set_replaces_whole_document(store) -> None:
    store.set("jobs", "j1", {"a": 1, "b": 2})
    store.set("jobs", "j1", {"a": 3})

    assert store.get("jobs", "j1") == {"a": 3}


def test_merge_updates_top_level_fields(store) -> None:
    store.set("contacts", "a@x.com", {"senders": ["s@x.com"], "extra": True})
    store.set("contacts", "a@x.com", {"senders": ["s@x.com", "t@x.com"]}, merge=True)

    assert store.get("contacts", "a@x.com") == {"senders": ["s@x.com", "t@x.com"], "extra": True}


def test_merge_on_missing_document_creates_it(store) -> None:
    store.set("contacts", "b@x.com", {"merged": []}, merge=True)

    assert store.get("contacts", "b@x.com") == {"merged": []}


def test_delete_is_idempotent(store) -> None:
    store.set("jobs", "j1", {"a": 1})
    store.delete("jobs", "j1")
    store.delete("jobs", "j1")

    assert store.get("jobs", "j1") is None


def test_find_by_top_level_field(store) -> None:
    store.set("jobs", "j1", {"owner": "a@x.com"})
    store.set("jobs", "j2", {"owner": "b@x.com"})
    store.set("jobs", "j3", {"owner": "a@x.com"})
    store.set("contacts", "a@x.com", {"owner": "a@x.com"})

    found = store.find("jobs", "owner", "a@x.com")

    assert sorted(d["owner"] for d in found) == ["a@x.com", "a@x.com"]
    assert len(found) == 2


def test_returned_documents_are_copies(store) -> None:
    store.set("jobs", "j1", {"labels": ["L1"]})

    doc = store.get("jobs", "j1")
    doc["labels"].append("L2")

    assert store.get("jobs", "j1") == {"labels": ["L1"]}


class TestSqliteDocumentStore:
    """Test suite for SQLite specifics."""

    def test_documents_survive_reopen(self, tmp_path) -> None:
        path = tmp_path / "docs.sqlite3"
        first = SqliteDocumentStore(path)
        first.initialize()
        first.set("jobs", "j1", {"status": "running"})

        second = SqliteDocumentStore(path)
        second.initialize()

        assert second.get("jobs", "j1") == {"status": "running"}

    def test_unsupported_schema_version_raises(self, tmp_path) -> None:
        path = tmp_path / "docs.sqlite3"
        SqliteDocumentStore(path).initialize()
        with sqlite3.connect(path) as conn:
            conn.execute("UPDATE _schema_meta SET value = '99' WHERE key = 'schema_version'")

        with pytest.raises(PersistenceError):
            SqliteDocumentStore(path).initialize()

    def test_sqlite_errors_become_persistence_errors(self, tmp_path) -> None:
        store = SqliteDocumentStore(tmp_path / "docs.sqlite3", max_retries=0)

        # No initialize(): the documents table does not exist.
        with pytest.raises(PersistenceError):
            store.get("jobs", "j1")
