"""Write scraped posting details onto job records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from job_tracker.database import session_scope
from job_tracker.enrichment.parser import PostingDetails, extract_job_id
from job_tracker.enrichment.worker import EnrichmentQueueItem, EnrichmentWorker
from job_tracker.models import Application

logger = structlog.get_logger(__name__)

ENRICHED_NOTE = "Enriched with LinkedIn data"


def apply_details(record: Application, details: PostingDetails, now: Optional[datetime] = None) -> None:
    """Copy posting fields onto *record*.

    The job title found in email is kept. Fields the posting does not carry
    are left as they are.
    """
    now = now or datetime.now(timezone.utc)
    if details.description:
        record.description = details.description
    if details.employment_type:
        record.employment_type = details.employment_type
    if details.location_type:
        record.location_type = details.location_type
    if details.location and not record.company_location:
        record.company_location = details.location

    salary = details.salary
    if salary is not None:
        record.wages_min = salary.minimum
        record.wages_max = salary.maximum
        record.wage_type = salary.wage_type

    notes = record.notes or ""
    if details.recruiter_name and details.recruiter_name not in notes:
        line = f"Recruiter: {details.recruiter_name}"
        if details.recruiter_role:
            line += f", {details.recruiter_role}"
        notes = f"{notes}\n{line}" if notes else line
    if ENRICHED_NOTE not in notes:
        notes = f"{notes}\n{ENRICHED_NOTE}" if notes else ENRICHED_NOTE
    record.notes = notes

    record.pending_enrichment = False
    record.enriched_at = now


def _find_record(session: Session, item: EnrichmentQueueItem) -> Optional[Application]:
    if item.record_id is not None:
        return session.get(Application, item.record_id)
    conditions = [Application.website == item.url]
    job_id = extract_job_id(item.url)
    if job_id:
        conditions.append(Application.external_job_id == job_id)
    return session.scalars(select(Application).where(or_(*conditions)).order_by(Application.id)).first()


class RecordEnrichmentWriter:
    """Enrichment sink that persists details to the ``applications`` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def apply(self, item: EnrichmentQueueItem, details: PostingDetails) -> bool:
        with session_scope(self._session_factory) as session:
            record = _find_record(session, item)
            if record is None:
                logger.info("enrichment_record_missing", key=item.key, url=item.url)
                return False
            apply_details(record, details)
            logger.info(
                "record_enriched",
                record_id=record.id,
                employment_type=record.employment_type,
                wages_min=record.wages_min,
                wages_max=record.wages_max,
            )
            return True


def reconcile_pending(session_factory: sessionmaker[Session], worker: EnrichmentWorker) -> int:
    """Queue every record still flagged for enrichment; returns how many were added."""
    with session_scope(session_factory) as session:
        pending = session.execute(
            select(Application.id, Application.website).where(
                Application.pending_enrichment.is_(True),
                Application.website.is_not(None),
            )
        ).all()

    queued = sum(1 for record_id, website in pending if website and worker.enqueue_record(record_id, website))
    logger.info("enrichment_reconciled", pending=len(pending), queued=queued)
    return queued
