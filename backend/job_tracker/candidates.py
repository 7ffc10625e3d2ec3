"""Candidate items extracted from email, before they are imported."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

APPLICATION = "application"
STATUS_UPDATE = "statusUpdate"
RESPONSE = "response"
CANDIDATE_TYPES = (APPLICATION, STATUS_UPDATE, RESPONSE)

# Result payload key for each candidate type
RESULT_KEYS = {
    APPLICATION: "applications",
    STATUS_UPDATE: "statusUpdates",
    RESPONSE: "responses",
}

# Name of the date field for each candidate type
EVENT_FIELDS = {
    APPLICATION: "appliedAt",
    STATUS_UPDATE: "statusAt",
    RESPONSE: "respondedAt",
}


@dataclass(frozen=True)
class CandidateItem:
    """One provisional application / status update / response taken from a message.

    ``event_at`` is the applied date for applications, the status date for
    status updates and the response date for responses. ``exists`` and
    ``existing_record_id`` are only ever set by the deduplicator.
    """

    item_type: str
    company: str
    job_title: str
    event_at: datetime
    company_location: Optional[str] = None
    response: Optional[str] = None
    status_type: Optional[str] = None
    external_id: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    source_message_id: Optional[str] = None
    exists: bool = False
    existing_record_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.item_type not in CANDIDATE_TYPES:
            raise ValueError(f"Unknown candidate type: {self.item_type!r}")

    @property
    def is_application(self) -> bool:
        return self.item_type == APPLICATION

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict using the field names of the HTTP interface."""
        payload: dict[str, Any] = {
            "type": self.item_type,
            "jobTitle": self.job_title,
            "company": self.company,
            "companyLocation": self.company_location,
            EVENT_FIELDS[self.item_type]: self.event_at.isoformat(),
            "externalId": self.external_id,
            "website": self.website,
            "notes": self.notes,
            "sourceMessageId": self.source_message_id,
            "exists": self.exists,
            "existingRecordId": self.existing_record_id,
        }
        if self.item_type == RESPONSE:
            payload["response"] = self.response
        if self.item_type == STATUS_UPDATE:
            payload["statusType"] = self.status_type
        return payload
