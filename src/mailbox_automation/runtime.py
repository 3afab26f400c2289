"""Wiring of stores, mail clients, queue and service into a runnable unit."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from mailbox_automation.config import Settings, get_settings
from mailbox_automation.exceptions import NotAuthenticated, UpstreamPermanent
from mailbox_automation.gmail import GmailMailbox
from mailbox_automation.imap import ImapMailbox
from mailbox_automation.jobs import (
    ContinuationScheduler,
    InMemoryTaskQueue,
    JobService,
    LabelJobProcessor,
    ScanJobProcessor,
    TaskQueue,
    ThreadingTaskQueue,
)
from mailbox_automation.mailbox import MailboxFactory, MessageSource
from mailbox_automation.models import JobKind
from mailbox_automation.storage import (
    ContactSnapshotRepository,
    DocumentStore,
    JobStore,
    SqliteDocumentStore,
)
from mailbox_automation.utils import utc_now

logger = structlog.get_logger()


def make_mailbox_factory(settings: Settings) -> MailboxFactory:
    """Build the default owner -> mail client factory.

    Scans use IMAP when `scan_engine == "imap"`; everything else goes through
    the Gmail API with the local OAuth token, which must belong to `owner`.
    """

    def factory(owner: str, kind: JobKind) -> MessageSource:
        if kind == JobKind.SCAN and settings.scan_engine == "imap":
            if not settings.imap_app_password:
                raise NotAuthenticated("No IMAP app password configured")
            return ImapMailbox(settings, username=owner)

        mailbox = GmailMailbox(settings)
        mailbox.authenticate()
        try:
            address = mailbox.profile_email()
        except UpstreamPermanent as exc:
            raise NotAuthenticated(f"Gmail credential rejected: {exc}") from exc
        if address.strip().lower() != owner.strip().lower():
            raise NotAuthenticated(f"Gmail token belongs to {address or 'unknown'}, not {owner}")
        return mailbox

    return factory


@dataclass
class Runtime:
    """Everything a CLI command or the API needs to operate on jobs."""

    settings: Settings
    documents: DocumentStore
    jobs: JobStore
    contacts: ContactSnapshotRepository
    queue: TaskQueue
    scheduler: ContinuationScheduler
    service: JobService


def build_runtime(
    settings: Settings | None = None,
    *,
    documents: DocumentStore | None = None,
    queue: TaskQueue | None = None,
    mailbox_factory: MailboxFactory | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> Runtime:
    """Assemble a Runtime, defaulting to the SQLite store and an in-memory queue."""

    settings = settings or get_settings()

    if documents is None:
        sqlite_store = SqliteDocumentStore(settings.store_path, max_retries=settings.max_retries)
        sqlite_store.initialize()
        documents = sqlite_store

    jobs = JobStore(documents)
    contacts = ContactSnapshotRepository(documents)
    queue = queue if queue is not None else InMemoryTaskQueue()
    scheduler = ContinuationScheduler(queue, settings, clock=clock)

    service = JobService(
        jobs,
        {
            JobKind.SCAN: ScanJobProcessor(jobs, contacts, settings, clock=clock),
            JobKind.LABEL_APPLICATION: LabelJobProcessor(jobs, settings, clock=clock),
        },
        scheduler,
        mailbox_factory or make_mailbox_factory(settings),
        settings,
        clock=clock,
    )

    if isinstance(queue, ThreadingTaskQueue):
        queue.set_handler(service.handle_continuation)

    logger.debug(
        "runtime_built",
        documents=type(documents).__name__,
        queue=type(queue).__name__,
        scan_engine=settings.scan_engine,
    )
    return Runtime(
        settings=settings,
        documents=documents,
        jobs=jobs,
        contacts=contacts,
        queue=queue,
        scheduler=scheduler,
        service=service,
    )


def build_job_service(settings: Settings | None = None, **kwargs) -> JobService:
    return build_runtime(settings, **kwargs).service
