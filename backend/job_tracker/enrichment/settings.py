"""Tuning parameters for the enrichment worker."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EnrichmentSettings:
    """Pacing, backoff and HTTP limits used by the enrichment worker.

    Delays are in seconds. ``standard_delay`` is the minimum spacing between
    two request starts; ``backoff_delay`` is the pause taken after
    ``max_consecutive_failures`` failures in a row.
    """

    requests_per_minute: int = 5
    max_consecutive_failures: int = 3
    standard_delay: float = 12.0
    backoff_delay: float = 60.0
    request_timeout: float = 15.0
    max_redirects: int = 5
    max_item_attempts: int = 3
