"""Candidate-to-record matching for email ingestion."""

from job_tracker.linking.resolver import (
    DEFAULT_WINDOW,
    LinkResult,
    find_match,
    link_candidate,
    resolve_candidates,
)

__all__ = [
    "DEFAULT_WINDOW",
    "LinkResult",
    "find_match",
    "link_candidate",
    "resolve_candidates",
]
