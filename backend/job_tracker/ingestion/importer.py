"""Apply candidate items to stored job records.

Applications are written first so that status updates and responses found
in the same batch can attach to records created moments earlier. Follow-ups
are then applied in the order their messages were read. Every candidate is
written inside its own SAVEPOINT: a failing candidate is rolled back alone,
counted in the stats, and the rest of the batch carries on. The caller owns
the surrounding transaction and commits once.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from job_tracker.candidates import APPLICATION, RESPONSE, STATUS_UPDATE, CandidateItem
from job_tracker.errors import ImportWriteError
from job_tracker.linking.resolver import DEFAULT_WINDOW, as_utc, find_match
from job_tracker.models import NO_RESPONSE, RESPONSE_VALUES, Application, StatusCheck

logger = structlog.get_logger(__name__)


@dataclass
class ImportStats:
    """Counters describing what one import batch did."""

    applications_added: int = 0
    applications_existing: int = 0
    applications_errors: int = 0
    status_updates_processed: int = 0
    status_updates_unmatched: int = 0
    status_updates_errors: int = 0
    responses_processed: int = 0
    responses_stale: int = 0
    responses_unmatched: int = 0
    responses_errors: int = 0
    failures: List[str] = field(default_factory=list)
    created_record_ids: List[int] = field(default_factory=list)

    def record_failure(self, candidate: CandidateItem, error: ImportWriteError) -> None:
        if candidate.item_type == APPLICATION:
            self.applications_errors += 1
        elif candidate.item_type == STATUS_UPDATE:
            self.status_updates_errors += 1
        else:
            self.responses_errors += 1
        self.failures.append(str(error))

    def to_dict(self) -> dict[str, Any]:
        return {
            "applications": {
                "added": self.applications_added,
                "existing": self.applications_existing,
                "errors": self.applications_errors,
            },
            "statusUpdates": {
                "processed": self.status_updates_processed,
                "unmatched": self.status_updates_unmatched,
                "errors": self.status_updates_errors,
            },
            "responses": {
                "processed": self.responses_processed,
                "stale": self.responses_stale,
                "unmatched": self.responses_unmatched,
                "errors": self.responses_errors,
            },
            "failures": list(self.failures),
            "createdRecordIds": list(self.created_record_ids),
        }


class AccountLocks:
    """One lock per mailbox account, so two imports for it never interleave."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield


def _has_check(record: Application, date: datetime, notes: str) -> bool:
    target = as_utc(date)
    return any(as_utc(check.date) == target and check.notes == notes for check in record.status_checks)


def _add_check(record: Application, date: datetime, notes: str) -> None:
    if not _has_check(record, date, notes):
        record.status_checks.append(StatusCheck(date=date, notes=notes))


def _new_record(candidate: CandidateItem, now: datetime) -> Application:
    return Application(
        job_title=candidate.job_title,
        company=candidate.company,
        company_location=candidate.company_location,
        applied_at=candidate.event_at,
        response=NO_RESPONSE,
        external_job_id=candidate.external_id,
        website=candidate.website,
        source="Email",
        notes=candidate.notes or f"Imported from email on {now:%Y-%m-%d}",
        pending_enrichment=bool(candidate.website),
    )


def _status_notes(candidate: CandidateItem) -> str:
    if candidate.notes:
        return candidate.notes
    return f"Your application was {candidate.status_type or 'updated'} by {candidate.company}"


def _response_notes(candidate: CandidateItem, response: str) -> str:
    if candidate.notes:
        return candidate.notes
    return f"Received a {response.lower()} response from {candidate.company}"


def import_candidates(
    session: Session,
    candidates: Iterable[CandidateItem],
    *,
    window: timedelta = DEFAULT_WINDOW,
    now: Optional[datetime] = None,
    checkpoint: Callable[[], None] | None = None,
) -> ImportStats:
    """Write *candidates* to the session and return what happened.

    Every candidate is matched again against the records present at write
    time, which makes running the same batch twice a no-op.
    """
    now = now or datetime.now(timezone.utc)
    candidates = list(candidates)
    stats = ImportStats()
    records: List[Application] = list(session.scalars(select(Application).order_by(Application.id)))

    applications = [c for c in candidates if c.item_type == APPLICATION]
    follow_ups = [c for c in candidates if c.item_type != APPLICATION]

    for candidate in applications:
        try:
            with session.begin_nested():
                if find_match(candidate, records, window) is not None:
                    stats.applications_existing += 1
                    continue
                record = _new_record(candidate, now)
                session.add(record)
                session.flush()
        except Exception as exc:
            stats.record_failure(candidate, _write_error(candidate, exc))
            continue
        records.append(record)
        stats.applications_added += 1
        stats.created_record_ids.append(record.id)

    if checkpoint is not None:
        checkpoint()

    for candidate in follow_ups:
        try:
            with session.begin_nested():
                if candidate.item_type == STATUS_UPDATE:
                    _apply_status_update(session, candidate, records, window, stats)
                elif candidate.item_type == RESPONSE:
                    _apply_response(session, candidate, records, window, stats)
        except Exception as exc:
            stats.record_failure(candidate, _write_error(candidate, exc))

    logger.info(
        "import_complete",
        added=stats.applications_added,
        existing=stats.applications_existing,
        status_updates=stats.status_updates_processed,
        responses=stats.responses_processed,
        failures=len(stats.failures),
    )
    return stats


def _write_error(candidate: CandidateItem, exc: Exception) -> ImportWriteError:
    error = ImportWriteError(
        f"{candidate.item_type} for {candidate.job_title or 'unknown title'} at {candidate.company}: {exc}",
        item_type=candidate.item_type,
    )
    logger.warning("import_candidate_failed", item_type=candidate.item_type, error=str(error))
    return error


def _apply_status_update(
    session: Session,
    candidate: CandidateItem,
    records: List[Application],
    window: timedelta,
    stats: ImportStats,
) -> None:
    record = find_match(candidate, records, window)
    if record is None:
        stats.status_updates_unmatched += 1
        return
    _add_check(record, candidate.event_at, _status_notes(candidate))
    session.flush()
    stats.status_updates_processed += 1


def _apply_response(
    session: Session,
    candidate: CandidateItem,
    records: List[Application],
    window: timedelta,
    stats: ImportStats,
) -> None:
    record = find_match(candidate, records, window)
    if record is None:
        stats.responses_unmatched += 1
        return

    response = candidate.response or "Other"
    if response not in RESPONSE_VALUES:
        raise ValueError(f"unknown response value {response!r}")

    current = record.responded_at
    if current is not None and as_utc(candidate.event_at) < as_utc(current):
        # An older reply never overwrites a newer one
        stats.responses_stale += 1
        return

    record.response = response
    record.responded_at = candidate.event_at
    _add_check(record, candidate.event_at, _response_notes(candidate, response))
    session.flush()
    stats.responses_processed += 1
