"""Unit tests for data models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from mailbox_automation.models import (
    ContactSnapshot,
    ContinuationPayload,
    Job,
    JobKind,
    JobStatus,
    LabelCounters,
    RuleCriteria,
    ScanCounters,
)

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _scan_job(**kwargs) -> Job:
    kwargs.setdefault("counters", ScanCounters())
    return Job(id="job-1", kind=JobKind.SCAN, owner="a@x.com", created_at=NOW, **kwargs)


class TestJob:
    """Test suite for the Job document model."""

    def test_scan_job_document_omits_absent_fields(self) -> None:
        """Test that optional fields are omitted, not written as null."""
        doc = _scan_job().to_document()

        assert doc == {
            "id": "job-1",
            "kind": "scan",
            "owner": "a@x.com",
            "status": "pending",
            "counters": {"messagesProcessed": 0, "addressesFound": 0},
            "createdAt": "2026-01-05T09:00:00Z",
            "retryCount": 0,
        }

    def test_label_job_round_trips_camel_case(self) -> None:
        """Test that label job fields use the persisted camelCase names."""
        job = Job(
            id="job-2",
            kind=JobKind.LABEL_APPLICATION,
            owner="a@x.com",
            counters=LabelCounters(messages_matched=4),
            rule_criteria=RuleCriteria(from_="news@x.com", archive=True),
            label_ids=["L1"],
            filter_id="f1",
            created_at=NOW,
        )

        doc = job.to_document()
        assert doc["ruleCriteria"] == {"from": "news@x.com", "archive": True}
        assert doc["labelIds"] == ["L1"]
        assert doc["filterId"] == "f1"
        assert doc["counters"] == {"messagesProcessed": 0, "messagesMatched": 4, "labelsApplied": 0}

        restored = Job.from_document(doc)
        assert restored == job
        assert isinstance(restored.counters, LabelCounters)

    def test_scan_document_parses_scan_counters(self) -> None:
        """Test that scan counters survive a document round trip."""
        job = _scan_job(counters=ScanCounters(messages_processed=7, addresses_found=3))
        restored = Job.from_document(job.to_document())

        assert isinstance(restored.counters, ScanCounters)
        assert restored.counters.addresses_found == 3

    def test_label_job_requires_labels(self) -> None:
        """Test that label jobs need rule criteria and at least one label."""
        with pytest.raises(ValidationError):
            Job(
                id="job-3",
                kind=JobKind.LABEL_APPLICATION,
                owner="a@x.com",
                counters=LabelCounters(),
                rule_criteria=RuleCriteria(subject="x"),
                label_ids=[],
                created_at=NOW,
            )

    def test_scan_job_rejects_rule_fields(self) -> None:
        """Test that scan jobs cannot carry label parameters."""
        with pytest.raises(ValidationError):
            _scan_job(label_ids=["L1"])

    def test_terminal_statuses(self) -> None:
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.CANCELLED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.PAUSED.is_terminal
        assert not _scan_job().is_terminal


class TestRuleCriteria:
    def test_has_terms(self) -> None:
        assert RuleCriteria(query="has:attachment").has_terms()
        assert not RuleCriteria(archive=True).has_terms()
        assert not RuleCriteria(subject="   ").has_terms()


class TestContactSnapshot:
    def test_build_sorts_and_merges(self) -> None:
        snapshot = ContactSnapshot.build(
            {"b@x.com", "a@x.com"},
            ["c@x.com", "a@x.com"],
            message_sample_count=3,
            updated_at=NOW,
        )

        assert snapshot.senders == ["a@x.com", "b@x.com"]
        assert snapshot.recipients == ["a@x.com", "c@x.com"]
        assert snapshot.merged == ["a@x.com", "b@x.com", "c@x.com"]
        assert snapshot.to_document()["messageSampleCount"] == 3


class TestContinuationPayload:
    def test_accepts_task_body_aliases(self) -> None:
        payload = ContinuationPayload.model_validate(
            {
                "jobId": "job-1",
                "owner": "a@x.com",
                "batchSize": 50,
                "cursor": "abc",
                "retryCount": 2,
                "timestamp": "2026-01-05T09:00:00Z",
            }
        )

        assert payload.job_id == "job-1"
        assert payload.retry_count == 2
        assert payload.timestamp == NOW
