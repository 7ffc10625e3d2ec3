"""Pydantic schemas for API request/response validation.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from job_tracker.candidates import APPLICATION, RESPONSE, STATUS_UPDATE, CandidateItem
from job_tracker.models import RESPONSE_VALUES


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Credential schemas ────────────────────────────────────


class CredentialCreate(CamelModel):
    """Request body for storing a mailbox credential."""

    address: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)
    host: str = Field(..., min_length=1, max_length=255)
    port: int = Field(993, ge=1, le=65535)
    use_tls: bool = True
    reject_unauthorized: bool = True
    search_timeframe_days: int = Field(90, ge=1, le=365)
    search_folders: List[str] = Field(default_factory=lambda: ["INBOX"])


class CredentialUpdate(CamelModel):
    """Request body for updating a credential (all fields optional)."""

    address: Optional[str] = Field(None, min_length=3, max_length=320)
    password: Optional[str] = Field(None, min_length=1)
    host: Optional[str] = Field(None, min_length=1, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    use_tls: Optional[bool] = None
    reject_unauthorized: Optional[bool] = None
    search_timeframe_days: Optional[int] = Field(None, ge=1, le=365)
    search_folders: Optional[List[str]] = None


class CredentialOut(CamelModel):
    """A stored credential. The password is never included."""

    id: int
    address: str
    host: str
    port: int
    use_tls: bool
    reject_unauthorized: bool
    search_timeframe_days: int
    search_folders: List[str]
    last_import_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Job request schemas ───────────────────────────────────


class SearchRequest(CamelModel):
    """Body of ``/search`` and ``/sync``."""

    credential_id: int
    ignore_previous_import: bool = False


class FoldersRequest(CamelModel):
    credential_id: int


class FoldersOut(BaseModel):
    folders: List[str]


class CandidateIn(CamelModel):
    """One candidate as returned by a search, possibly edited by the user."""

    job_title: str = Field("", max_length=300)
    company: str = Field(..., min_length=1, max_length=200)
    company_location: Optional[str] = None
    applied_at: Optional[datetime] = None
    status_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    response: Optional[str] = None
    status_type: Optional[str] = None
    external_id: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    source_message_id: Optional[str] = None
    exists: bool = False
    existing_record_id: Optional[int] = None

    @field_validator("response")
    @classmethod
    def known_response(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in RESPONSE_VALUES:
            raise ValueError(f"response must be one of {', '.join(RESPONSE_VALUES)}")
        return v

    def to_candidate(self, item_type: str) -> CandidateItem:
        event_at = {
            APPLICATION: self.applied_at,
            STATUS_UPDATE: self.status_at,
            RESPONSE: self.responded_at,
        }[item_type]
        if event_at is None:
            raise ValueError(f"{item_type} for {self.company} has no date")
        # exists / existing_record_id are recomputed at write time
        return CandidateItem(
            item_type=item_type,
            company=self.company,
            job_title=self.job_title,
            event_at=event_at,
            company_location=self.company_location,
            response=self.response,
            status_type=self.status_type,
            external_id=self.external_id,
            website=self.website,
            notes=self.notes,
            source_message_id=self.source_message_id,
        )


class ImportRequest(CamelModel):
    """Body of ``/import``: the three candidate lists of a search result."""

    applications: List[CandidateIn] = Field(default_factory=list)
    status_updates: List[CandidateIn] = Field(default_factory=list)
    responses: List[CandidateIn] = Field(default_factory=list)

    def to_candidates(self) -> List[CandidateItem]:
        return (
            [item.to_candidate(APPLICATION) for item in self.applications]
            + [item.to_candidate(STATUS_UPDATE) for item in self.status_updates]
            + [item.to_candidate(RESPONSE) for item in self.responses]
        )


# ── Job status schemas ────────────────────────────────────


class JobAccepted(CamelModel):
    job_id: str


class BackgroundJobOut(CamelModel):
    """Pollable status of one background job."""

    id: str
    type: str
    status: str
    progress: int
    message: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    credential_id: Optional[int] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


# ── Enrichment schemas ────────────────────────────────────


class EnrichUrlRequest(BaseModel):
    url: str = Field(..., min_length=8, max_length=2000)

    @field_validator("url")
    @classmethod
    def http_url(cls, v: str) -> str:
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v


class EnrichUrlOut(BaseModel):
    queued: bool


class EnrichmentStatusOut(CamelModel):
    is_processing: bool
    queue_size: int
