"""Label application processor.

Each batch lists one page of messages matching the rule's criteria and applies
the rule's labels to every message on it. Per-message failures are logged and
counted but do not stop the batch; the cursor moves past them.
"""

from __future__ import annotations

import structlog

from mailbox_automation.exceptions import MailboxAutomationError, UpstreamPermanent
from mailbox_automation.gmail.client import INBOX_LABEL_ID
from mailbox_automation.gmail.query import build_search_query
from mailbox_automation.jobs.processors.base import BatchProcessor
from mailbox_automation.mailbox import LabelMutator, MessageSource
from mailbox_automation.models import Job, JobKind, LabelCounters, MailPage

logger = structlog.get_logger()


class LabelJobProcessor(BatchProcessor):
    kind = JobKind.LABEL_APPLICATION

    @property
    def default_batch_size(self) -> int:
        return self.settings.label_batch_size

    def process_page(self, job: Job, source: MessageSource, batch_size: int) -> tuple[MailPage, LabelCounters]:
        if not isinstance(source, LabelMutator):
            raise UpstreamPermanent(f"{type(source).__name__} cannot apply labels")

        criteria = job.rule_criteria
        assert criteria is not None and job.label_ids  # enforced by the Job model

        query = build_search_query(criteria)
        page = source.list_page(job.cursor, page_size=batch_size, query=query or None, include_headers=False)

        counters = job.counters
        processed = counters.messages_processed
        applied = counters.labels_applied
        failed = 0

        if page.items:
            add_ids = list(dict.fromkeys(source.resolve_or_create_label(name) for name in job.label_ids))
            remove_ids = [INBOX_LABEL_ID] if criteria.archive else []

            for item in page.items:
                try:
                    ok = source.mutate_labels(item.message_id, add_ids, remove_ids)
                except UpstreamPermanent:
                    raise
                except MailboxAutomationError as exc:
                    logger.warning("label_apply_failed", job_id=job.id, message_id=item.message_id, error=str(exc))
                    ok = False

                processed += 1
                if ok:
                    applied += 1
                else:
                    failed += 1

        if failed:
            logger.warning("label_batch_partial", job_id=job.id, failed=failed, items=len(page.items))

        return page, LabelCounters(
            messages_processed=processed,
            messages_matched=counters.messages_matched + len(page.items),
            labels_applied=applied,
        )
