"""Background job runner: one thread per job, pollable status, cooperative cancel.

Lifecycle of a job::

    queued ──► processing ──► completed
       │            │
       └────────────┴──────► failed

Terminal states are final. Progress only moves forward while a job is
processing. A job body receives a :class:`JobContext`; it reports progress
through :meth:`JobContext.update` and must call :meth:`JobContext.checkpoint`
between units of work so that a cancellation request can take effect.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from job_tracker.errors import JobCancelled, JobNotFound
from job_tracker.logging_config import bound_job_context

logger = structlog.get_logger(__name__)

QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL_STATES = frozenset({COMPLETED, FAILED})

JOB_TYPES = ("email_search", "email_sync", "email_import", "job_enrichment")

CANCELLED_MESSAGE = "Job cancelled"

_ALLOWED_TRANSITIONS = {
    QUEUED: {PROCESSING, FAILED},
    PROCESSING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BackgroundJob:
    """Status record of one background job, as returned to pollers."""

    id: str
    type: str
    status: str = QUEUED
    progress: int = 0
    message: str = "Queued"
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    # Monotonic timestamp of the terminal transition, for retention checks
    ended_monotonic: Optional[float] = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES


JobBody = Callable[["JobContext"], Optional[Dict[str, Any]]]


class JobContext:
    """Handle passed to a running job body."""

    def __init__(self, runner: "JobRunner", job_id: str) -> None:
        self._runner = runner
        self.job_id = job_id
        self._cancel_event = threading.Event()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def request_cancel(self) -> None:
        self._cancel_event.set()

    def update(self, progress: int | float, message: str | None = None) -> None:
        """Report progress (0-100); lower values than the current one are ignored."""
        self._runner._update_progress(self.job_id, progress, message)

    def checkpoint(self) -> None:
        """Raise :class:`JobCancelled` if cancellation has been requested."""
        if self._cancel_event.is_set():
            raise JobCancelled(CANCELLED_MESSAGE)

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; returns True early if cancelled."""
        return self._cancel_event.wait(timeout)


class JobRunner:
    """Owns every :class:`BackgroundJob` and the threads running them.

    Usage::

        runner = JobRunner(active_window_sec=300, retention_sec=3600)
        job_id = runner.create("email_sync", {"credentialId": 1}, body)
        runner.get_status(job_id)
    """

    def __init__(
        self,
        active_window_sec: float = 300,
        retention_sec: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._active_window = active_window_sec
        self._retention = max(retention_sec, active_window_sec)
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: Dict[str, BackgroundJob] = {}
        self._contexts: Dict[str, JobContext] = {}
        self._threads: Dict[str, threading.Thread] = {}

    # ── Public API ────────────────────────────────────────
    def create(self, job_type: str, payload: Dict[str, Any], body: JobBody) -> str:
        """Register a job and start running it; returns the job id immediately."""
        if job_type not in JOB_TYPES:
            raise ValueError(f"Unknown job type: {job_type}")

        job_id = uuid.uuid4().hex
        job = BackgroundJob(id=job_id, type=job_type, payload=dict(payload))
        context = JobContext(self, job_id)
        thread = threading.Thread(
            target=self._run,
            args=(job_id, body, context),
            name=f"job-{job_type}-{job_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._purge_expired()
            self._jobs[job_id] = job
            self._contexts[job_id] = context
            self._threads[job_id] = thread

        logger.info("job_created", job_id=job_id, job_type=job_type)
        thread.start()
        return job_id

    def get_status(self, job_id: str) -> BackgroundJob:
        """Return a snapshot of the job. Raises :class:`JobNotFound`."""
        with self._lock:
            self._purge_expired()
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(f"Job {job_id} not found")
            return replace(job)

    def list_active(self) -> List[BackgroundJob]:
        """Queued and processing jobs, plus jobs that ended within the active window."""
        now = self._clock()
        with self._lock:
            self._purge_expired()
            visible = [
                replace(job)
                for job in self._jobs.values()
                if not job.is_terminal
                or (job.ended_monotonic is not None and now - job.ended_monotonic <= self._active_window)
            ]
        visible.sort(key=lambda job: job.created_at, reverse=True)
        return visible

    def cancel(self, job_id: str) -> BackgroundJob:
        """Cancel a job: queued jobs fail at once, running jobs stop at their next checkpoint."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(f"Job {job_id} not found")
            context = self._contexts.get(job_id)
            was_queued = job.status == QUEUED
            if was_queued:
                self._transition(job, FAILED, error=CANCELLED_MESSAGE)
            if context is not None and (was_queued or job.status == PROCESSING):
                context.request_cancel()
            snapshot = replace(job)

        logger.info("job_cancel_requested", job_id=job_id, status=snapshot.status)
        return snapshot

    def shutdown(self, timeout: float = 5.0) -> None:
        """Ask every unfinished job to stop, then wait briefly for their threads."""
        with self._lock:
            pending = [
                (self._contexts[job_id], thread)
                for job_id, thread in self._threads.items()
                if not self._jobs[job_id].is_terminal
            ]
        for context, _ in pending:
            context.request_cancel()
        deadline = time.monotonic() + timeout
        for _, thread in pending:
            thread.join(max(0.0, deadline - time.monotonic()))
        logger.info("job_runner_stopped", cancelled=len(pending))

    # ── Internals ─────────────────────────────────────────
    def _run(self, job_id: str, body: JobBody, context: JobContext) -> None:
        with self._lock:
            job = self._jobs[job_id]
            if job.status != QUEUED or context.cancel_requested:
                return
            self._transition(job, PROCESSING, message="Starting")
            job_type = job.type

        with bound_job_context(job_id, job_type):
            try:
                result = body(context)
            except JobCancelled as exc:
                logger.info("job_cancelled")
                self._finish(job_id, FAILED, error=str(exc) or CANCELLED_MESSAGE)
            except Exception as exc:
                logger.error("job_failed", error=str(exc), exc_info=True)
                self._finish(job_id, FAILED, error=str(exc) or exc.__class__.__name__)
            else:
                logger.info("job_completed")
                self._finish(job_id, COMPLETED, result=result or {})

    def _finish(
        self,
        job_id: str,
        status: str,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return
            if status == COMPLETED:
                job.progress = 100
                self._transition(job, COMPLETED, message="Completed", result=result)
            else:
                self._transition(job, FAILED, error=error)

    def _transition(
        self,
        job: BackgroundJob,
        status: str,
        *,
        message: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """The single place a job's status changes. Caller holds ``self._lock``."""
        if status not in _ALLOWED_TRANSITIONS[job.status]:
            raise RuntimeError(f"Illegal job transition {job.status} -> {status}")
        job.status = status
        if status == PROCESSING:
            job.started_at = _utcnow()
        if status in TERMINAL_STATES:
            job.ended_at = _utcnow()
            job.ended_monotonic = self._clock()
        if status == FAILED:
            job.error = error or "Job failed"
            job.message = job.error
        if message is not None:
            job.message = message
        if result is not None:
            job.result = result

    def _update_progress(self, job_id: str, progress: int | float, message: Optional[str]) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != PROCESSING:
                return
            clamped = int(min(100, max(0, progress)))
            if clamped > job.progress:
                job.progress = clamped
            if message:
                job.message = message

    def _purge_expired(self) -> None:
        """Drop terminal jobs older than the retention window. Caller holds the lock."""
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.ended_monotonic is not None and now - job.ended_monotonic > self._retention
        ]
        for job_id in expired:
            self._jobs.pop(job_id, None)
            self._contexts.pop(job_id, None)
            self._threads.pop(job_id, None)
        if expired:
            logger.debug("jobs_purged", count=len(expired))
