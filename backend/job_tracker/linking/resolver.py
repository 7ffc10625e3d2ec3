"""Match candidate items against stored job records.

Matching rules (in priority order):
1. External job id - exact match on ``external_job_id``
2. Company + job title - case-insensitive, whitespace-collapsed, and the
   candidate's date inside the tolerance window

For an ``application`` candidate the window is symmetric around the
record's applied date. Status updates and responses refer back to an
earlier application, so they match any record applied no later than
``window`` after the event; when several do, the most recent application
wins.

This module is the only place where a candidate's ``exists`` flag is set.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Protocol, Sequence

import structlog

from job_tracker.candidates import CandidateItem

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW = timedelta(days=3)


class MatchableRecord(Protocol):
    """The fields of a job record the matcher needs (``Application`` satisfies it)."""

    id: int
    company: str
    job_title: str
    applied_at: datetime
    external_job_id: Optional[str]


@dataclass(frozen=True)
class LinkResult:
    """Result of attempting to link a candidate to a stored record."""

    record_id: Optional[int] = None
    link_method: str = "new"  # "external_id", "company_title", "new"

    @property
    def is_linked(self) -> bool:
        """Return True if the candidate matched an existing record."""
        return self.record_id is not None


def normalize_key(value: str | None) -> str:
    """Lower-case and collapse whitespace (including non-breaking spaces)."""
    if not value:
        return ""
    return re.sub(r"\s+", " ", value).strip().lower()


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _date_matches(candidate: CandidateItem, applied_at: datetime, window: timedelta) -> bool:
    event = as_utc(candidate.event_at)
    applied = as_utc(applied_at)
    if candidate.is_application:
        return abs(event - applied) <= window
    return event >= applied - window


def link_candidate(
    candidate: CandidateItem,
    records: Iterable[MatchableRecord],
    window: timedelta = DEFAULT_WINDOW,
) -> LinkResult:
    """Return the record matching *candidate*, checking external ids first.

    Applications link to the first match in record order; follow-ups link to
    the match with the latest ``applied_at`` (first in record order on ties).
    """
    records = list(records)

    external_id = (candidate.external_id or "").strip()
    if external_id:
        for record in records:
            if (record.external_job_id or "").strip() == external_id:
                return LinkResult(record_id=record.id, link_method="external_id")

    company = normalize_key(candidate.company)
    title = normalize_key(candidate.job_title)
    if not company or not title:
        return LinkResult()

    matches = [
        record
        for record in records
        if normalize_key(record.company) == company
        and normalize_key(record.job_title) == title
        and _date_matches(candidate, record.applied_at, window)
    ]
    if not matches:
        return LinkResult()
    if candidate.is_application:
        chosen = matches[0]
    else:
        chosen = max(matches, key=lambda record: as_utc(record.applied_at))
    return LinkResult(record_id=chosen.id, link_method="company_title")


def find_match(
    candidate: CandidateItem,
    records: Sequence[MatchableRecord],
    window: timedelta = DEFAULT_WINDOW,
) -> Optional[MatchableRecord]:
    """Return the matched record itself, or None."""
    result = link_candidate(candidate, records, window)
    if not result.is_linked:
        return None
    return next(record for record in records if record.id == result.record_id)


def resolve_candidates(
    candidates: Iterable[CandidateItem],
    records: Sequence[MatchableRecord],
    window: timedelta = DEFAULT_WINDOW,
) -> List[CandidateItem]:
    """Return *candidates* with ``exists`` / ``existing_record_id`` filled in."""
    resolved: List[CandidateItem] = []
    for candidate in candidates:
        result = link_candidate(candidate, records, window)
        resolved.append(
            replace(candidate, exists=result.is_linked, existing_record_id=result.record_id)
        )
        if result.is_linked:
            logger.debug(
                "candidate_linked",
                item_type=candidate.item_type,
                company=candidate.company,
                record_id=result.record_id,
                method=result.link_method,
            )
    return resolved
