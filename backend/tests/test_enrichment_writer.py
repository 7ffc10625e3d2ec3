"""Tests for writing posting details onto job records."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session, sessionmaker

from job_tracker.enrichment.parser import PostingDetails
from job_tracker.enrichment.settings import EnrichmentSettings
from job_tracker.enrichment.worker import EnrichmentQueueItem, EnrichmentWorker, record_key, url_key
from job_tracker.enrichment.writer import ENRICHED_NOTE, RecordEnrichmentWriter, reconcile_pending
from job_tracker.models import Application

JOB_URL = "https://www.linkedin.com/jobs/view/3901234567/"

DETAILS = PostingDetails(
    title="Senior Data Analyst II",
    location="Austin, TX",
    location_type="Hybrid",
    description="Analyze data",
    employment_type="Full-time",
    salary_text="$90,000/yr - $110,000/yr",
    recruiter_name="Jane Doe",
    recruiter_role="Technical Recruiter",
)


def _add_record(session_factory: sessionmaker[Session], **kwargs) -> int:
    fields = dict(
        company="Globex",
        job_title="Data Analyst",
        applied_at=datetime(2025, 2, 1, tzinfo=timezone.utc),
        website=JOB_URL,
        external_job_id="3901234567",
        pending_enrichment=True,
        notes="Imported from email on 2025-02-01",
    )
    fields.update(kwargs)
    with session_factory() as session:
        record = Application(**fields)
        session.add(record)
        session.commit()
        return record.id


class TestRecordEnrichmentWriter:
    def test_applies_details_and_keeps_title(self, session_factory: sessionmaker[Session]) -> None:
        record_id = _add_record(session_factory)
        item = EnrichmentQueueItem(key=record_key(record_id), url=JOB_URL, record_id=record_id)

        assert RecordEnrichmentWriter(session_factory).apply(item, DETAILS) is True

        with session_factory() as session:
            record = session.get(Application, record_id)
            assert record.job_title == "Data Analyst"
            assert record.description == "Analyze data"
            assert record.employment_type == "Full-time"
            assert record.location_type == "Hybrid"
            assert record.company_location == "Austin, TX"
            assert (record.wages_min, record.wages_max, record.wage_type) == (90000.0, 110000.0, "Yearly")
            assert record.pending_enrichment is False
            assert record.enriched_at is not None
            assert record.notes.splitlines() == [
                "Imported from email on 2025-02-01",
                "Recruiter: Jane Doe, Technical Recruiter",
                ENRICHED_NOTE,
            ]

    def test_enriching_twice_does_not_repeat_notes(self, session_factory: sessionmaker[Session]) -> None:
        record_id = _add_record(session_factory)
        item = EnrichmentQueueItem(key=record_key(record_id), url=JOB_URL, record_id=record_id)
        writer = RecordEnrichmentWriter(session_factory)

        writer.apply(item, DETAILS)
        writer.apply(item, DETAILS)

        with session_factory() as session:
            assert session.get(Application, record_id).notes.count(ENRICHED_NOTE) == 1

    def test_raw_url_found_by_job_id(self, session_factory: sessionmaker[Session]) -> None:
        record_id = _add_record(session_factory, website=None)
        url = "https://www.linkedin.com/comm/jobs/view/3901234567/"
        item = EnrichmentQueueItem(key=url_key(url), url=url)

        assert RecordEnrichmentWriter(session_factory).apply(item, DETAILS) is True
        with session_factory() as session:
            assert session.get(Application, record_id).description == "Analyze data"

    def test_missing_record(self, session_factory: sessionmaker[Session]) -> None:
        item = EnrichmentQueueItem(key=record_key(42), url=JOB_URL, record_id=42)
        assert RecordEnrichmentWriter(session_factory).apply(item, DETAILS) is False


class TestReconcilePending:
    def test_queues_flagged_records_once(self, session_factory: sessionmaker[Session]) -> None:
        pending = _add_record(session_factory)
        _add_record(session_factory, pending_enrichment=False, external_job_id="1", website="https://a.example/1")
        _add_record(session_factory, website=None, external_job_id="2")
        worker = EnrichmentWorker(EnrichmentSettings(), fetcher=None, writer=None)  # type: ignore[arg-type]

        assert reconcile_pending(session_factory, worker) == 1
        assert reconcile_pending(session_factory, worker) == 0
        assert worker.is_pending(record_key(pending))
        assert worker.queue_size == 1
