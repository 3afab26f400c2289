"""Data models for Mailbox Automation.

This package contains Pydantic models for job documents, mail pages, contact
snapshots and continuation payloads.
"""

from .contacts import ContactSnapshot
from .job import (
    TERMINAL_STATUSES,
    Job,
    JobCounters,
    JobKind,
    JobStatus,
    LabelCounters,
    RuleCriteria,
    ScanCounters,
)
from .mail import MailItem, MailPage
from .task import ContinuationPayload

__all__ = [
    "TERMINAL_STATUSES",
    "ContactSnapshot",
    "ContinuationPayload",
    "Job",
    "JobCounters",
    "JobKind",
    "JobStatus",
    "LabelCounters",
    "MailItem",
    "MailPage",
    "RuleCriteria",
    "ScanCounters",
]
