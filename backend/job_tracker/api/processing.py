"""Mailbox search/sync/import, job status, and enrichment endpoints.

Long-running work is handed to the job runner; these endpoints answer with
``202 {jobId}`` and clients poll ``/job/{jobId}``.
"""

from __future__ import annotations

from functools import partial
from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException

from job_tracker.api.dependencies import get_services
from job_tracker.database import session_scope
from job_tracker.errors import CredentialError, CredentialNotFound, JobNotFound, MailboxConnectionError
from job_tracker.ingestion.pipeline import (
    list_folders_for,
    run_enrichment,
    run_import,
    run_search,
    run_sync,
)
from job_tracker.jobs.runner import BackgroundJob
from job_tracker.schemas import (
    BackgroundJobOut,
    EnrichmentStatusOut,
    EnrichUrlOut,
    EnrichUrlRequest,
    FoldersOut,
    FoldersRequest,
    ImportRequest,
    JobAccepted,
    SearchRequest,
)
from job_tracker.services import EngineServices

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/email", tags=["email"])


def _job_out(job: BackgroundJob) -> BackgroundJobOut:
    return BackgroundJobOut(
        id=job.id,
        type=job.type,
        status=job.status,
        progress=job.progress,
        message=job.message,
        result=job.result,
        error=job.error,
        credential_id=job.payload.get("credentialId"),
        created_at=job.created_at,
        started_at=job.started_at,
        ended_at=job.ended_at,
    )


def _require_credential(services: EngineServices, credential_id: int) -> None:
    try:
        with session_scope(services.session_factory) as session:
            services.credentials.get(session, credential_id)
    except CredentialNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))


# ── Mailbox jobs ──────────────────────────────────────────


@router.post("/search", response_model=JobAccepted, status_code=202)
def start_search(body: SearchRequest, services: EngineServices = Depends(get_services)) -> JobAccepted:
    """Search a mailbox for job-related messages without writing anything."""
    _require_credential(services, body.credential_id)
    job_id = services.runner.create(
        "email_search",
        {"credentialId": body.credential_id, "ignorePreviousImport": body.ignore_previous_import},
        partial(
            run_search,
            services=services,
            credential_id=body.credential_id,
            ignore_previous_import=body.ignore_previous_import,
        ),
    )
    return JobAccepted(job_id=job_id)


@router.post("/sync", response_model=JobAccepted, status_code=202)
def start_sync(body: SearchRequest, services: EngineServices = Depends(get_services)) -> JobAccepted:
    """Search a mailbox, import what is new, and queue enrichment."""
    _require_credential(services, body.credential_id)
    job_id = services.runner.create(
        "email_sync",
        {"credentialId": body.credential_id, "ignorePreviousImport": body.ignore_previous_import},
        partial(
            run_sync,
            services=services,
            credential_id=body.credential_id,
            ignore_previous_import=body.ignore_previous_import,
        ),
    )
    return JobAccepted(job_id=job_id)


@router.post("/import", response_model=JobAccepted, status_code=202)
def start_import(body: ImportRequest, services: EngineServices = Depends(get_services)) -> JobAccepted:
    """Import candidates previously returned by a search."""
    try:
        candidates = body.to_candidates()
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    job_id = services.runner.create(
        "email_import",
        {"items": len(candidates)},
        partial(run_import, services=services, candidates=candidates),
    )
    return JobAccepted(job_id=job_id)


@router.post("/get-folders", response_model=FoldersOut)
def get_folders(body: FoldersRequest, services: EngineServices = Depends(get_services)) -> FoldersOut:
    """List the selectable folders of a stored mailbox."""
    try:
        return FoldersOut(folders=list_folders_for(services, body.credential_id))
    except CredentialNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except CredentialError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except MailboxConnectionError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


# ── Job status ────────────────────────────────────────────


@router.get("/job/{job_id}", response_model=BackgroundJobOut)
def get_job(job_id: str, services: EngineServices = Depends(get_services)) -> BackgroundJobOut:
    try:
        return _job_out(services.runner.get_status(job_id))
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/job/{job_id}/cancel", response_model=BackgroundJobOut)
def cancel_job(job_id: str, services: EngineServices = Depends(get_services)) -> BackgroundJobOut:
    """Cancel a job. Running jobs stop at their next checkpoint."""
    try:
        return _job_out(services.runner.cancel(job_id))
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("/active-jobs", response_model=List[BackgroundJobOut])
def active_jobs(services: EngineServices = Depends(get_services)) -> List[BackgroundJobOut]:
    return [_job_out(job) for job in services.runner.list_active()]


# ── Enrichment ────────────────────────────────────────────


@router.post("/enrichment", response_model=JobAccepted, status_code=202)
def start_enrichment(services: EngineServices = Depends(get_services)) -> JobAccepted:
    """Enrich every record still waiting for posting details."""
    if not services.worker.running:
        raise HTTPException(status_code=503, detail="Enrichment is disabled")
    job_id = services.runner.create("job_enrichment", {}, partial(run_enrichment, services=services))
    return JobAccepted(job_id=job_id)


@router.post("/enrich-url", response_model=EnrichUrlOut)
def enrich_url(body: EnrichUrlRequest, services: EngineServices = Depends(get_services)) -> EnrichUrlOut:
    """Queue one posting URL. ``queued`` is false when it is already waiting."""
    if not services.worker.running:
        raise HTTPException(status_code=503, detail="Enrichment is disabled")
    return EnrichUrlOut(queued=services.worker.enqueue_url(body.url))


@router.get("/enrichment-status", response_model=EnrichmentStatusOut)
def enrichment_status(services: EngineServices = Depends(get_services)) -> EnrichmentStatusOut:
    status = services.worker.status()
    return EnrichmentStatusOut(is_processing=status["isProcessing"], queue_size=status["queueSize"])
