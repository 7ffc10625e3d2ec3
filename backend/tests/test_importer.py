"""Tests for writing candidates to job records."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

import fixtures_mail as mail
from job_tracker.candidates import APPLICATION, RESPONSE, STATUS_UPDATE, CandidateItem
from job_tracker.email.classifier import RuleBasedClassifier
from job_tracker.errors import JobCancelled
from job_tracker.ingestion.importer import import_candidates
from job_tracker.linking.resolver import as_utc
from job_tracker.models import Application


def _day(day: int, month: int = 1) -> datetime:
    return datetime(2025, month, day, 9, tzinfo=timezone.utc)


def _application(day: int = 10, **kwargs) -> CandidateItem:
    fields = {"company": "Acme", "job_title": "Engineer"}
    fields.update(kwargs)
    return CandidateItem(item_type=APPLICATION, event_at=_day(day), **fields)


def _response(response: str, day: int, **kwargs) -> CandidateItem:
    fields = {"company": "Acme", "job_title": "Engineer"}
    fields.update(kwargs)
    return CandidateItem(item_type=RESPONSE, event_at=_day(day), response=response, **fields)


def _records(session: Session) -> list[Application]:
    return list(session.scalars(select(Application).order_by(Application.id)))


class TestAcmeScenario:
    def test_application_and_rejection_in_one_batch(self, db_session: Session) -> None:
        classifier = RuleBasedClassifier()
        # Response first: applications are still written before follow-ups
        candidates = [classifier.classify(mail.ACME_REJECTION), classifier.classify(mail.ACME_APPLICATION)]

        stats = import_candidates(db_session, candidates)
        db_session.commit()

        assert stats.applications_added == 1
        assert stats.responses_processed == 1
        (record,) = _records(db_session)
        assert record.response == "Rejected"
        assert as_utc(record.responded_at) == mail.ACME_REJECTION.date
        assert record.source == "Email"
        assert [check.notes for check in record.status_checks] == ["Received a rejected response from Acme"]

    def test_import_twice_changes_nothing(self, db_session: Session) -> None:
        classifier = RuleBasedClassifier()
        candidates = [classifier.classify(mail.ACME_APPLICATION), classifier.classify(mail.ACME_REJECTION)]

        import_candidates(db_session, candidates)
        db_session.commit()
        second = import_candidates(db_session, candidates)
        db_session.commit()

        assert second.applications_added == 0
        assert second.applications_existing == 1
        (record,) = _records(db_session)
        assert record.response == "Rejected"
        assert len(record.status_checks) == 1


class TestResponses:
    def test_older_response_is_stale(self, db_session: Session) -> None:
        import_candidates(db_session, [_application(), _response("Rejected", 15)])
        db_session.commit()

        stats = import_candidates(db_session, [_response("Interview", 12)])
        db_session.commit()

        assert stats.responses_stale == 1
        assert stats.responses_processed == 0
        (record,) = _records(db_session)
        assert record.response == "Rejected"
        assert as_utc(record.responded_at) == _day(15)

    def test_newer_response_wins(self, db_session: Session) -> None:
        import_candidates(db_session, [_application(), _response("Phone Screen", 15), _response("Offer", 20)])
        db_session.commit()

        (record,) = _records(db_session)
        assert record.response == "Offer"
        assert as_utc(record.responded_at) == _day(20)
        assert len(record.status_checks) == 2

    def test_response_goes_to_repeat_application(self, db_session: Session) -> None:
        last_year = CandidateItem(
            item_type=APPLICATION,
            company="Acme",
            job_title="Engineer",
            event_at=datetime(2024, 1, 10, 9, tzinfo=timezone.utc),
        )
        import_candidates(db_session, [last_year, _application(10)])
        db_session.commit()

        stats = import_candidates(db_session, [_response("Rejected", 15)])
        db_session.commit()

        assert stats.responses_processed == 1
        old, new = _records(db_session)
        assert old.response == "No Response"
        assert old.responded_at is None
        assert new.response == "Rejected"
        assert as_utc(new.responded_at) == _day(15)

    def test_unmatched_response_is_a_no_op(self, db_session: Session) -> None:
        stats = import_candidates(db_session, [_response("Rejected", 15, company="Hooli")])
        db_session.commit()

        assert stats.responses_unmatched == 1
        assert _records(db_session) == []


class TestStatusUpdates:
    def test_status_check_appended_once(self, db_session: Session) -> None:
        update = CandidateItem(
            item_type=STATUS_UPDATE,
            company="Acme",
            job_title="Engineer",
            event_at=_day(12),
            status_type="viewed",
        )
        import_candidates(db_session, [_application(), update])
        db_session.commit()
        stats = import_candidates(db_session, [update])
        db_session.commit()

        assert stats.status_updates_processed == 1
        (record,) = _records(db_session)
        assert [check.notes for check in record.status_checks] == ["Your application was viewed by Acme"]
        assert record.response == "No Response"

    def test_unmatched_status_update(self, db_session: Session) -> None:
        update = CandidateItem(item_type=STATUS_UPDATE, company="Acme", job_title="Engineer", event_at=_day(12))
        stats = import_candidates(db_session, [update])
        assert stats.status_updates_unmatched == 1


class TestBatchBehaviour:
    def test_failing_candidate_does_not_stop_batch(self, db_session: Session) -> None:
        candidates = [
            _application(),
            _application(company="Globex", job_title="Data Analyst"),
            _response("Maybe Later", 15),
            _response("Rejected", 16, company="Globex", job_title="Data Analyst"),
        ]
        stats = import_candidates(db_session, candidates)
        db_session.commit()

        assert stats.applications_added == 2
        assert stats.responses_errors == 1
        assert stats.responses_processed == 1
        assert len(stats.failures) == 1
        assert "Maybe Later" in stats.failures[0]
        acme, globex = _records(db_session)
        assert acme.response == "No Response"
        assert globex.response == "Rejected"

    def test_website_marks_record_pending(self, db_session: Session) -> None:
        stats = import_candidates(
            db_session,
            [_application(website=mail.GLOBEX_JOB_URL, external_id=mail.GLOBEX_JOB_ID), _application(day=1, company="Hooli")],
        )
        db_session.commit()

        linked, plain = _records(db_session)
        assert stats.created_record_ids == [linked.id, plain.id]
        assert linked.pending_enrichment is True
        assert linked.external_job_id == mail.GLOBEX_JOB_ID
        assert plain.pending_enrichment is False

    def test_duplicate_applications_in_one_batch(self, db_session: Session) -> None:
        stats = import_candidates(db_session, [_application(10), _application(11)])
        assert stats.applications_added == 1
        assert stats.applications_existing == 1

    def test_checkpoint_between_phases(self, db_session: Session) -> None:
        def cancel() -> None:
            raise JobCancelled("Job cancelled")

        with pytest.raises(JobCancelled):
            import_candidates(db_session, [_application(), _response("Rejected", 15)], checkpoint=cancel)
        db_session.rollback()
        assert _records(db_session) == []

    def test_stats_shape(self, db_session: Session) -> None:
        stats = import_candidates(db_session, [_application()]).to_dict()
        assert stats["applications"] == {"added": 1, "existing": 0, "errors": 0}
        assert set(stats["responses"]) == {"processed", "stale", "unmatched", "errors"}
        assert set(stats["statusUpdates"]) == {"processed", "unmatched", "errors"}
        assert stats["failures"] == []
