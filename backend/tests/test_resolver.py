"""Tests for candidate-to-record matching."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from job_tracker.candidates import APPLICATION, RESPONSE, STATUS_UPDATE, CandidateItem
from job_tracker.linking import find_match, link_candidate, resolve_candidates


@dataclass
class _Record:
    id: int
    company: str
    job_title: str
    applied_at: datetime
    external_job_id: Optional[str] = None


def _day(day: int) -> datetime:
    return datetime(2025, 1, day, 12, tzinfo=timezone.utc)


def _candidate(item_type: str = APPLICATION, day: int = 10, **kwargs) -> CandidateItem:
    fields = {"company": "Acme", "job_title": "Engineer"}
    fields.update(kwargs)
    return CandidateItem(item_type=item_type, event_at=_day(day), **fields)


RECORDS = [
    _Record(1, "Acme", "Engineer", _day(10)),
    _Record(2, "Globex", "Data Analyst", _day(5), external_job_id="3901234567"),
]


class TestMatching:
    def test_company_and_title_case_insensitive(self) -> None:
        candidate = _candidate(company="  ACME ", job_title="engineer")
        result = link_candidate(candidate, RECORDS)
        assert result.record_id == 1
        assert result.link_method == "company_title"

    def test_external_id_wins_regardless_of_title(self) -> None:
        candidate = _candidate(company="Globex Corp", job_title="Analyst", external_id="3901234567", day=28)
        result = link_candidate(candidate, RECORDS)
        assert result.record_id == 2
        assert result.link_method == "external_id"

    def test_application_window_is_inclusive(self) -> None:
        assert find_match(_candidate(day=13), RECORDS) is RECORDS[0]
        assert find_match(_candidate(day=7), RECORDS) is RECORDS[0]

    def test_application_outside_window_is_new(self) -> None:
        assert find_match(_candidate(day=14), RECORDS) is None
        assert find_match(_candidate(day=6), RECORDS) is None

    def test_follow_up_may_come_long_after_application(self) -> None:
        assert find_match(_candidate(RESPONSE, day=30, response="Rejected"), RECORDS) is RECORDS[0]

    def test_follow_up_cannot_precede_application_beyond_window(self) -> None:
        assert find_match(_candidate(STATUS_UPDATE, day=6), RECORDS) is None
        assert find_match(_candidate(STATUS_UPDATE, day=7), RECORDS) is RECORDS[0]

    def test_custom_window(self) -> None:
        assert find_match(_candidate(day=14), RECORDS, timedelta(days=5)) is RECORDS[0]

    def test_first_record_in_order_wins(self) -> None:
        records = [_Record(7, "Acme", "Engineer", _day(11)), _Record(3, "Acme", "Engineer", _day(10))]
        assert link_candidate(_candidate(), records).record_id == 7

    def test_follow_up_links_to_latest_application(self) -> None:
        records = [
            _Record(1, "Acme", "Engineer", datetime(2024, 1, 10, 12, tzinfo=timezone.utc)),
            _Record(2, "Acme", "Engineer", _day(10)),
        ]
        assert link_candidate(_candidate(RESPONSE, day=15, response="Rejected"), records).record_id == 2
        assert link_candidate(_candidate(STATUS_UPDATE, day=15), records).record_id == 2

    def test_follow_up_ignores_application_made_after_it(self) -> None:
        records = [
            _Record(1, "Acme", "Engineer", _day(10)),
            _Record(2, "Acme", "Engineer", _day(28)),
        ]
        assert link_candidate(_candidate(RESPONSE, day=15, response="Rejected"), records).record_id == 1

    def test_naive_record_dates_are_utc(self) -> None:
        records = [_Record(1, "Acme", "Engineer", datetime(2025, 1, 10, 12))]
        assert find_match(_candidate(day=12), records) is records[0]

    def test_missing_title_never_matches_by_name(self) -> None:
        assert not link_candidate(_candidate(job_title=""), RECORDS).is_linked


class TestResolveCandidates:
    def test_sets_exists_flags(self) -> None:
        resolved = resolve_candidates(
            [_candidate(), _candidate(company="Initech")],
            RECORDS,
        )
        assert [(c.exists, c.existing_record_id) for c in resolved] == [(True, 1), (False, None)]

    def test_incoming_flags_are_recomputed(self) -> None:
        stale = _candidate(company="Initech", exists=True, existing_record_id=99)
        (resolved,) = resolve_candidates([stale], RECORDS)
        assert resolved.exists is False
        assert resolved.existing_record_id is None
