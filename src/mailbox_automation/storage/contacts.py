"""Contact snapshot persistence, keyed by owner."""

from __future__ import annotations

from mailbox_automation.models import ContactSnapshot
from mailbox_automation.storage.documents import DocumentStore

CONTACTS_COLLECTION = "contacts"


class ContactSnapshotRepository:
    """Load and save the owner's contact snapshot."""

    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents

    def load(self, owner: str) -> ContactSnapshot | None:
        doc = self._documents.get(CONTACTS_COLLECTION, owner)
        return None if doc is None else ContactSnapshot.model_validate(doc)

    def save(self, owner: str, snapshot: ContactSnapshot) -> None:
        self._documents.set(CONTACTS_COLLECTION, owner, snapshot.to_document(), merge=True)

    def delete(self, owner: str) -> None:
        self._documents.delete(CONTACTS_COLLECTION, owner)
