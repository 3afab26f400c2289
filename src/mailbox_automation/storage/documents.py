"""Keyed document stores.

Documents are JSON objects addressed by (collection, key). Writes replace the
whole document, or merge top-level fields into the existing one when
`merge=True`. There are no cross-document transactions.
"""

from __future__ import annotations

import copy
import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import structlog

from mailbox_automation.exceptions import PersistenceError
from mailbox_automation.utils import retry_on_failure

logger = structlog.get_logger()


_SCHEMA_VERSION = 1


class DocumentStore(Protocol):
    """Capability to get/set/delete a document by key."""

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return the document or None if it does not exist."""

    def set(self, collection: str, key: str, value: dict[str, Any], *, merge: bool = False) -> None:
        """Write a document, replacing it or merging top-level fields."""

    def delete(self, collection: str, key: str) -> None:
        """Delete a document; deleting a missing document is not an error."""

    def find(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        """Return all documents in a collection whose top-level `field` equals `value`."""


class InMemoryDocumentStore:
    """Process-local document store for tests and single-process use."""

    def __init__(self) -> None:
        self._docs: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            doc = self._docs.get((collection, key))
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, key: str, value: dict[str, Any], *, merge: bool = False) -> None:
        with self._lock:
            existing = self._docs.get((collection, key))
            if merge and existing is not None:
                updated = {**existing, **copy.deepcopy(value)}
            else:
                updated = copy.deepcopy(value)
            self._docs[(collection, key)] = updated

    def delete(self, collection: str, key: str) -> None:
        with self._lock:
            self._docs.pop((collection, key), None)

    def find(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(doc)
                for (coll, _), doc in self._docs.items()
                if coll == collection and doc.get(field) == value
            ]


class SqliteDocumentStore:
    """SQLite-backed document store.

    Each document is one row holding its JSON body. Lookups by field use
    SQLite's JSON1 `json_extract`, so only top-level scalar fields are queryable.
    """

    def __init__(self, db_path: Path, *, max_retries: int = 3) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
            max_retries: Retries for operations failing with a locked database.
        """

        self._db_path = Path(db_path)
        self._max_retries = max_retries

    def initialize(self) -> None:
        """Create or upgrade the store schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        def _init(conn: sqlite3.Connection) -> None:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            row = conn.execute("SELECT value FROM _schema_meta WHERE key = 'schema_version'").fetchone()
            if row is None:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        key TEXT NOT NULL,
                        body_json TEXT NOT NULL,
                        updated_at_iso TEXT NOT NULL,
                        PRIMARY KEY (collection, key)
                    );
                    """
                )
                conn.execute(
                    "INSERT INTO _schema_meta (key, value) VALUES ('schema_version', ?)",
                    (str(_SCHEMA_VERSION),),
                )
                logger.info("document_store_schema_created", version=_SCHEMA_VERSION, path=str(self._db_path))
                return

            if int(row[0]) != _SCHEMA_VERSION:
                raise PersistenceError(
                    f"Unsupported schema version {row[0]}; expected {_SCHEMA_VERSION}"
                )

        self._run(_init)

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        def _get(conn: sqlite3.Connection) -> dict[str, Any] | None:
            row = conn.execute(
                "SELECT body_json FROM documents WHERE collection = ? AND key = ?",
                (collection, key),
            ).fetchone()
            return None if row is None else json.loads(row[0])

        return self._run(_get)

    def set(self, collection: str, key: str, value: dict[str, Any], *, merge: bool = False) -> None:
        def _set(conn: sqlite3.Connection) -> None:
            body = value
            if merge:
                row = conn.execute(
                    "SELECT body_json FROM documents WHERE collection = ? AND key = ?",
                    (collection, key),
                ).fetchone()
                if row is not None:
                    body = {**json.loads(row[0]), **value}

            conn.execute(
                """
                INSERT INTO documents (collection, key, body_json, updated_at_iso)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (collection, key)
                DO UPDATE SET body_json = excluded.body_json, updated_at_iso = excluded.updated_at_iso
                """,
                (collection, key, json.dumps(body), datetime.now(timezone.utc).isoformat()),
            )

        self._run(_set)

    def delete(self, collection: str, key: str) -> None:
        def _delete(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM documents WHERE collection = ? AND key = ?", (collection, key))

        self._run(_delete)

    def find(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        def _find(conn: sqlite3.Connection) -> list[dict[str, Any]]:
            rows = conn.execute(
                """
                SELECT body_json FROM documents
                WHERE collection = ? AND json_extract(body_json, ?) = ?
                ORDER BY key
                """,
                (collection, f"$.{field}", value),
            ).fetchall()
            return [json.loads(r[0]) for r in rows]

        return self._run(_find)

    def _run(self, operation):
        locked_retry = retry_on_failure(
            max_retries=self._max_retries,
            delay=0.05,
            exceptions=(sqlite3.OperationalError,),
        )

        @locked_retry
        def _attempt():
            with self._connect() as conn:
                result = operation(conn)
                conn.commit()
                return result

        try:
            return _attempt()
        except sqlite3.Error as exc:
            logger.exception("document_store_operation_failed", path=str(self._db_path), error=str(exc))
            raise PersistenceError(str(exc)) from exc

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._db_path), timeout=5.0)
        try:
            yield conn
        finally:
            conn.close()
