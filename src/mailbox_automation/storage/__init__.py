"""Document persistence.

Jobs and contact snapshots are stored as separate JSON documents in a keyed
document store.
"""

from .contacts import CONTACTS_COLLECTION, ContactSnapshotRepository
from .documents import DocumentStore, InMemoryDocumentStore, SqliteDocumentStore
from .jobs import JOBS_COLLECTION, JobStore, make_job_id

__all__ = [
    "CONTACTS_COLLECTION",
    "JOBS_COLLECTION",
    "ContactSnapshotRepository",
    "DocumentStore",
    "InMemoryDocumentStore",
    "JobStore",
    "SqliteDocumentStore",
    "make_job_id",
]
