"""Single-consumer enrichment worker.

One daemon thread drains a de-duplicated queue of posting URLs, pacing
requests with :class:`SlidingWindowRateLimiter`. After
``max_consecutive_failures`` failed fetches in a row the worker stops
consuming for ``backoff_delay`` seconds, then clears the failure counter
and resumes normal pacing.

The queue, the limiter and the breaker state are guarded by one
``threading.Condition``; enqueue and status calls from request handlers and
job threads go through it.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, Optional, Protocol, Set

import structlog

from job_tracker.enrichment.parser import PostingDetails
from job_tracker.enrichment.rate_limiter import SlidingWindowRateLimiter
from job_tracker.enrichment.settings import EnrichmentSettings
from job_tracker.errors import EnrichmentFetchError

logger = structlog.get_logger(__name__)

SUCCEEDED = "succeeded"
DROPPED = "dropped"


def record_key(record_id: int) -> str:
    return f"record:{record_id}"


def url_key(url: str) -> str:
    return f"url:{url.strip()}"


@dataclass
class EnrichmentQueueItem:
    """One pending enrichment: a job record's website, or a bare URL."""

    key: str
    url: str
    record_id: Optional[int] = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0


class PostingSource(Protocol):
    def fetch(self, url: str) -> PostingDetails:
        ...


class EnrichmentSink(Protocol):
    def apply(self, item: EnrichmentQueueItem, details: PostingDetails) -> bool:
        ...


class EnrichmentWorker:
    """The process-wide enrichment consumer. Create one, ``start()`` it, ``stop()`` it."""

    def __init__(
        self,
        settings: EnrichmentSettings,
        fetcher: PostingSource,
        writer: EnrichmentSink,
    ) -> None:
        self.settings = settings
        self._fetcher = fetcher
        self._writer = writer
        self._cond = threading.Condition()
        self._queue: Deque[EnrichmentQueueItem] = deque()
        self._keys: Set[str] = set()
        # Last outcome per key; cleared when the key is queued again
        self._outcomes: Dict[str, str] = {}
        self._in_flight: Optional[EnrichmentQueueItem] = None
        self._limiter = SlidingWindowRateLimiter(settings.requests_per_minute, settings.standard_delay)
        self._consecutive_failures = 0
        self._backoff_until: Optional[float] = None
        self._stopping = False
        self._thread: Optional[threading.Thread] = None
        self._version = 0
        self.processed_count = 0
        self.failed_count = 0
        self.dropped_count = 0

    # ── Lifecycle ─────────────────────────────────────────
    def start(self) -> None:
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._run, name="enrichment-worker", daemon=True)
            self._thread.start()
        logger.info(
            "enrichment_worker_started",
            requests_per_minute=self.settings.requests_per_minute,
            standard_delay=self.settings.standard_delay,
            backoff_delay=self.settings.backoff_delay,
        )

    def stop(self, timeout: float = 10.0) -> None:
        """Stop after the item in flight (if any) finishes; queued items are abandoned."""
        with self._cond:
            self._stopping = True
            thread = self._thread
            self._cond.notify_all()
        if thread is not None:
            thread.join(timeout)
        with self._cond:
            abandoned = len(self._queue)
        logger.info("enrichment_worker_stopped", abandoned=abandoned)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopping

    # ── Enqueue ───────────────────────────────────────────
    def _enqueue(self, item: EnrichmentQueueItem) -> bool:
        with self._cond:
            if item.key in self._keys:
                return False
            self._keys.add(item.key)
            self._outcomes.pop(item.key, None)
            self._queue.append(item)
            self._changed()
        logger.info("enrichment_queued", key=item.key, url=item.url)
        return True

    def enqueue_record(self, record_id: int, url: str) -> bool:
        """Queue a job record for enrichment; False if it is already queued or in flight."""
        return self._enqueue(EnrichmentQueueItem(key=record_key(record_id), url=url, record_id=record_id))

    def enqueue_url(self, url: str) -> bool:
        """Queue a bare posting URL; False if it is already queued or in flight."""
        return self._enqueue(EnrichmentQueueItem(key=url_key(url), url=url.strip()))

    def discard(self, keys: Iterable[str]) -> int:
        """Remove queued items with these keys; an in-flight one is not retried."""
        keys = set(keys)
        with self._cond:
            before = len(self._queue)
            self._queue = deque(item for item in self._queue if item.key not in keys)
            self._keys -= keys
            removed = before - len(self._queue)
            self._changed()
        return removed

    # ── Status ────────────────────────────────────────────
    def status(self) -> dict[str, object]:
        with self._cond:
            self._maybe_end_backoff(time.monotonic())
            return {"isProcessing": self._in_flight is not None, "queueSize": len(self._queue)}

    @property
    def queue_size(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def consecutive_failures(self) -> int:
        with self._cond:
            self._maybe_end_backoff(time.monotonic())
            return self._consecutive_failures

    @property
    def in_backoff(self) -> bool:
        with self._cond:
            self._maybe_end_backoff(time.monotonic())
            return self._backoff_until is not None

    def is_pending(self, key: str) -> bool:
        with self._cond:
            return key in self._keys

    def pending_count(self, keys: Iterable[str]) -> int:
        with self._cond:
            return sum(1 for key in keys if key in self._keys)

    def outcomes(self, keys: Iterable[str]) -> Dict[str, str]:
        """``succeeded`` or ``dropped`` for each of *keys* that has finished since it was queued."""
        with self._cond:
            return {key: self._outcomes[key] for key in keys if key in self._outcomes}

    def wait_for_change(self, timeout: float) -> None:
        """Block until the queue state changes or *timeout* elapses."""
        with self._cond:
            version = self._version
            self._cond.wait_for(lambda: self._version != version, timeout)

    # ── Consumer loop ─────────────────────────────────────
    def _changed(self) -> None:
        self._version += 1
        self._cond.notify_all()

    def _maybe_end_backoff(self, now: float) -> None:
        if self._backoff_until is not None and now >= self._backoff_until:
            self._backoff_until = None
            self._consecutive_failures = 0
            logger.info("enrichment_backoff_ended")
            self._changed()

    def _next_item(self) -> Optional[EnrichmentQueueItem]:
        """Block until an item may be fetched. Caller holds the condition."""
        while not self._stopping:
            now = time.monotonic()
            self._maybe_end_backoff(now)
            if self._backoff_until is not None:
                self._cond.wait(self._backoff_until - now)
                continue
            if not self._queue:
                self._cond.wait()
                continue
            delay = self._limiter.delay(now)
            if delay > 0:
                self._cond.wait(delay)
                continue
            item = self._queue.popleft()
            self._in_flight = item
            self._limiter.record(now)
            self._changed()
            return item
        return None

    def _run(self) -> None:
        while True:
            with self._cond:
                item = self._next_item()
            if item is None:
                return
            try:
                details = self._fetcher.fetch(item.url)
                if details.is_empty:
                    raise EnrichmentFetchError(f"No posting details found at {item.url}", url=item.url)
                self._writer.apply(item, details)
            except EnrichmentFetchError as exc:
                self._on_failure(item, exc, trips_breaker=True)
            except Exception as exc:
                logger.error("enrichment_write_failed", key=item.key, error=str(exc), exc_info=True)
                self._on_failure(item, exc, trips_breaker=False)
            else:
                self._on_success(item)

    def _on_success(self, item: EnrichmentQueueItem) -> None:
        with self._cond:
            self._in_flight = None
            self._keys.discard(item.key)
            self._outcomes[item.key] = SUCCEEDED
            self._consecutive_failures = 0
            self.processed_count += 1
            self._changed()
        logger.info("enrichment_succeeded", key=item.key)

    def _on_failure(self, item: EnrichmentQueueItem, exc: Exception, *, trips_breaker: bool) -> None:
        with self._cond:
            self._in_flight = None
            self.failed_count += 1
            item.attempts += 1
            if item.key in self._keys and item.attempts < self.settings.max_item_attempts:
                self._queue.append(item)
                outcome = "requeued"
            else:
                if item.key in self._keys:
                    self.dropped_count += 1
                    self._outcomes[item.key] = DROPPED
                self._keys.discard(item.key)
                outcome = "dropped"

            if trips_breaker:
                self._consecutive_failures += 1
                if self._consecutive_failures >= self.settings.max_consecutive_failures:
                    self._backoff_until = time.monotonic() + self.settings.backoff_delay
                    logger.warning(
                        "enrichment_backoff_started",
                        failures=self._consecutive_failures,
                        backoff_delay=self.settings.backoff_delay,
                    )
            failures = self._consecutive_failures
            self._changed()

        logger.warning(
            "enrichment_failed",
            key=item.key,
            attempts=item.attempts,
            outcome=outcome,
            consecutive_failures=failures,
            error=str(exc),
        )
