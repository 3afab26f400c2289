"""Contact scan processor.

Each batch lists one page of messages with their address headers, folds the
senders and recipients into the owner's contact snapshot, and advances the job.
The snapshot is written before the job, and re-merging a page only re-adds
addresses already present, so a retried batch leaves it unchanged.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from mailbox_automation.config import Settings
from mailbox_automation.headers import extract_addresses
from mailbox_automation.jobs.processors.base import BatchProcessor
from mailbox_automation.mailbox import MessageSource
from mailbox_automation.models import ContactSnapshot, Job, JobKind, MailPage, ScanCounters
from mailbox_automation.storage import ContactSnapshotRepository, JobStore
from mailbox_automation.utils import utc_now

logger = structlog.get_logger()


class ScanJobProcessor(BatchProcessor):
    kind = JobKind.SCAN

    def __init__(
        self,
        jobs: JobStore,
        contacts: ContactSnapshotRepository,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(jobs, settings, clock=clock)
        self.contacts = contacts

    @property
    def default_batch_size(self) -> int:
        return self.settings.scan_batch_size

    def process_page(self, job: Job, source: MessageSource, batch_size: int) -> tuple[MailPage, ScanCounters]:
        page = source.list_page(
            job.cursor,
            page_size=batch_size,
            query=self.settings.scan_query or None,
            include_headers=True,
        )

        existing = self.contacts.load(job.owner)
        senders = set(existing.senders) if existing else set()
        recipients = set(existing.recipients) if existing else set()

        for item in page.items:
            parsed = extract_addresses(item)
            senders |= parsed.senders
            recipients |= parsed.recipients

        counters = ScanCounters(
            messages_processed=job.counters.messages_processed + len(page.items),
            addresses_found=len(senders | recipients),
        )

        snapshot = ContactSnapshot.build(
            senders,
            recipients,
            message_sample_count=counters.messages_processed,
            updated_at=self.clock(),
        )
        self.contacts.save(job.owner, snapshot)
        logger.debug(
            "contact_snapshot_saved",
            job_id=job.id,
            owner=job.owner,
            senders=len(snapshot.senders),
            recipients=len(snapshot.recipients),
        )
        return page, counters
