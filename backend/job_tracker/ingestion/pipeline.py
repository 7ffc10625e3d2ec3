"""Job bodies for mailbox search, import, sync and enrichment.

Each ``run_*`` function is executed by :class:`~job_tracker.jobs.runner.JobRunner`
on its own thread. They report progress through the :class:`JobContext` and
call ``ctx.checkpoint()`` between folders, every ``CHECKPOINT_EVERY``
messages, between import phases and while waiting on the enrichment queue.

Progress steps::

    10   connecting
    20-50 searching folders
    60   resolving / importing
    80   queueing enrichment
    100  done (set by the runner)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog
from sqlalchemy import select

from job_tracker.candidates import CANDIDATE_TYPES, RESULT_KEYS, CandidateItem
from job_tracker.database import session_scope
from job_tracker.email.classifier import classify_safely
from job_tracker.email.client import IMAPMailboxClient, compute_since
from job_tracker.enrichment.worker import DROPPED, SUCCEEDED, record_key
from job_tracker.errors import JobCancelled
from job_tracker.ingestion.importer import import_candidates
from job_tracker.jobs.runner import JobContext
from job_tracker.linking.resolver import resolve_candidates
from job_tracker.models import Application
from job_tracker.services import EngineServices

logger = structlog.get_logger(__name__)

CHECKPOINT_EVERY = 25
ENRICHMENT_POLL_SEC = 1.0


@dataclass
class ScanOutcome:
    """What a mailbox pass produced before anything was written."""

    candidates: List[CandidateItem] = field(default_factory=list)
    skipped_folders: List[str] = field(default_factory=list)
    messages_scanned: int = 0
    discarded: int = 0
    since: Optional[datetime] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "skippedFolders": list(self.skipped_folders),
            "messagesScanned": self.messages_scanned,
            "discarded": self.discarded,
        }


def _open_client(
    services: EngineServices,
    credential_id: int,
    ignore_previous_import: bool = False,
) -> tuple[IMAPMailboxClient, datetime, List[str]]:
    """Build a mailbox client for a stored credential, with its search window and folders."""
    with session_scope(services.session_factory) as session:
        credential = services.credentials.get(session, credential_id)
        password = services.credentials.get_password(credential)
        since = compute_since(credential, ignore_previous_import)
        folders = list(credential.search_folders or ["INBOX"])
        client = services.mailbox_factory(credential, password)
    return client, since, folders


def scan_mailbox(
    ctx: JobContext,
    services: EngineServices,
    credential_id: int,
    ignore_previous_import: bool = False,
) -> ScanOutcome:
    """Read and classify every message in the credential's search window."""
    client, since, folders = _open_client(services, credential_id, ignore_previous_import)
    outcome = ScanOutcome(since=since)

    def on_folder(folder: str, index: int, total: int) -> None:
        ctx.checkpoint()
        ctx.update(20 + 30 * index / max(total, 1), f"Searching {folder} ({index + 1}/{total})")

    ctx.update(10, "Connecting to mailbox")
    with client:
        ctx.update(20, f"Searching {len(folders)} folder(s) since {since:%Y-%m-%d}")
        for message in client.search(since, folders, on_folder=on_folder):
            outcome.messages_scanned += 1
            candidate = classify_safely(services.classifier, message)
            if candidate is None:
                outcome.discarded += 1
            else:
                outcome.candidates.append(candidate)
            if outcome.messages_scanned % CHECKPOINT_EVERY == 0:
                ctx.checkpoint()
        outcome.skipped_folders = client.skipped_folders

    logger.info(
        "mailbox_scanned",
        credential_id=credential_id,
        messages=outcome.messages_scanned,
        candidates=len(outcome.candidates),
        discarded=outcome.discarded,
        skipped_folders=outcome.skipped_folders,
    )
    ctx.update(50, f"Found {len(outcome.candidates)} item(s) in {outcome.messages_scanned} message(s)")
    return outcome


def group_candidates(candidates: Iterable[CandidateItem]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {RESULT_KEYS[t]: [] for t in CANDIDATE_TYPES}
    for candidate in candidates:
        grouped[RESULT_KEYS[candidate.item_type]].append(candidate.to_payload())
    return grouped


def run_search(
    ctx: JobContext,
    services: EngineServices,
    credential_id: int,
    ignore_previous_import: bool = False,
) -> Dict[str, Any]:
    """Search a mailbox and report candidates, flagging ones already on record. Writes nothing."""
    outcome = scan_mailbox(ctx, services, credential_id, ignore_previous_import)
    ctx.checkpoint()
    ctx.update(60, "Checking for existing records")

    with session_scope(services.session_factory) as session:
        records = list(session.scalars(select(Application).order_by(Application.id)))
        resolved = resolve_candidates(outcome.candidates, records, services.dedup_window)

    existing = sum(1 for c in resolved if c.exists)
    result: Dict[str, Any] = group_candidates(resolved)
    result["stats"] = {"total": len(resolved), "new": len(resolved) - existing, "existing": existing}
    result.update(outcome.summary())
    return result


def _enqueue_pending(services: EngineServices, record_ids: Optional[Sequence[int]] = None) -> List[str]:
    """Queue records flagged for enrichment; returns the queue keys of every such record.

    Nothing is queued while the worker is not running; the records keep their
    ``pending_enrichment`` flag and are picked up by the next reconciliation.
    """
    if not services.worker.running:
        return []
    query = select(Application.id, Application.website).where(
        Application.pending_enrichment.is_(True),
        Application.website.is_not(None),
    )
    if record_ids is not None:
        if not record_ids:
            return []
        query = query.where(Application.id.in_(record_ids))

    with session_scope(services.session_factory) as session:
        rows = session.execute(query.order_by(Application.id)).all()

    keys: List[str] = []
    for record_id, website in rows:
        if not website:
            continue
        services.worker.enqueue_record(record_id, website)
        keys.append(record_key(record_id))
    return keys


def run_import(
    ctx: JobContext,
    services: EngineServices,
    candidates: Sequence[CandidateItem],
    lock_key: str = "manual-import",
) -> Dict[str, Any]:
    """Write caller-supplied candidates, then queue the new records for enrichment."""
    ctx.update(10, f"Importing {len(candidates)} item(s)")
    ctx.checkpoint()

    with services.account_locks.hold(lock_key):
        with session_scope(services.session_factory) as session:
            stats = import_candidates(
                session,
                candidates,
                window=services.dedup_window,
                checkpoint=ctx.checkpoint,
            )

    ctx.update(80, "Queueing enrichment")
    keys = _enqueue_pending(services, stats.created_record_ids)
    return {"stats": stats.to_dict(), "pendingEnrichments": services.worker.pending_count(keys)}


def run_sync(
    ctx: JobContext,
    services: EngineServices,
    credential_id: int,
    ignore_previous_import: bool = False,
) -> Dict[str, Any]:
    """Search, import, record the import time, and queue enrichment for one mailbox."""
    started_at = datetime.now(timezone.utc)
    outcome = scan_mailbox(ctx, services, credential_id, ignore_previous_import)
    ctx.checkpoint()
    ctx.update(60, f"Importing {len(outcome.candidates)} item(s)")

    with services.account_locks.hold(f"credential:{credential_id}"):
        with session_scope(services.session_factory) as session:
            stats = import_candidates(
                session,
                outcome.candidates,
                window=services.dedup_window,
                now=started_at,
                checkpoint=ctx.checkpoint,
            )
            services.credentials.mark_imported(session, credential_id, started_at)

    ctx.update(80, "Queueing enrichment")
    keys = _enqueue_pending(services)
    logger.info(
        "sync_complete",
        credential_id=credential_id,
        added=stats.applications_added,
        pending_enrichments=len(keys),
    )

    result: Dict[str, Any] = {
        "stats": stats.to_dict(),
        "pendingEnrichments": services.worker.pending_count(keys),
    }
    result.update(outcome.summary())
    return result


def run_enrichment(ctx: JobContext, services: EngineServices) -> Dict[str, Any]:
    """Queue every record awaiting enrichment and wait until the worker has drained them."""
    worker = services.worker
    if not worker.running:
        raise RuntimeError("Enrichment worker is not running")

    ctx.update(5, "Collecting records awaiting enrichment")
    keys = _enqueue_pending(services)
    total = len(keys)
    if total == 0:
        return {"queued": 0, "processed": 0, "failed": 0, "remaining": 0, "queueSize": worker.queue_size}

    try:
        while True:
            remaining = worker.pending_count(keys)
            done = total - remaining
            ctx.update(10 + 89 * done / total, f"Finished {done} of {total}")
            if remaining == 0:
                break
            ctx.checkpoint()
            worker.wait_for_change(ENRICHMENT_POLL_SEC)
    except JobCancelled:
        dropped = worker.discard(keys)
        logger.info("enrichment_job_cancelled", discarded=dropped)
        raise

    outcomes = list(worker.outcomes(keys).values())
    processed = outcomes.count(SUCCEEDED)
    failed = outcomes.count(DROPPED)
    logger.info("enrichment_job_finished", queued=total, processed=processed, failed=failed)
    return {
        "queued": total,
        "processed": processed,
        "failed": failed,
        "remaining": total - processed - failed,
        "queueSize": worker.queue_size,
    }


def list_folders_for(services: EngineServices, credential_id: int) -> List[str]:
    """Connect with a stored credential and list its selectable folders."""
    client, _, _ = _open_client(services, credential_id)
    with client:
        return client.list_folders()
