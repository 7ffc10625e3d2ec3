"""CRUD endpoints for stored mailbox credentials."""

from __future__ import annotations

from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response

from job_tracker.api.dependencies import get_services
from job_tracker.database import session_scope
from job_tracker.errors import CredentialNotFound
from job_tracker.schemas import CredentialCreate, CredentialOut, CredentialUpdate
from job_tracker.services import EngineServices

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/email/credentials", tags=["credentials"])


@router.post("", response_model=CredentialOut, status_code=201)
def create_credential(
    body: CredentialCreate,
    services: EngineServices = Depends(get_services),
) -> CredentialOut:
    """Store a credential. The password is sealed and never returned."""
    try:
        with session_scope(services.session_factory) as session:
            credential = services.credentials.create(session, body.model_dump())
            return CredentialOut.model_validate(credential)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.get("", response_model=List[CredentialOut])
def list_credentials(services: EngineServices = Depends(get_services)) -> List[CredentialOut]:
    with session_scope(services.session_factory) as session:
        return [CredentialOut.model_validate(c) for c in services.credentials.list(session)]


@router.get("/{credential_id}", response_model=CredentialOut)
def get_credential(
    credential_id: int,
    services: EngineServices = Depends(get_services),
) -> CredentialOut:
    try:
        with session_scope(services.session_factory) as session:
            return CredentialOut.model_validate(services.credentials.get(session, credential_id))
    except CredentialNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.patch("/{credential_id}", response_model=CredentialOut)
def update_credential(
    credential_id: int,
    body: CredentialUpdate,
    services: EngineServices = Depends(get_services),
) -> CredentialOut:
    """Update a credential. Omitted fields are left unchanged."""
    try:
        with session_scope(services.session_factory) as session:
            credential = services.credentials.update(
                session, credential_id, body.model_dump(exclude_unset=True)
            )
            return CredentialOut.model_validate(credential)
    except CredentialNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.delete("/{credential_id}", status_code=204)
def delete_credential(
    credential_id: int,
    services: EngineServices = Depends(get_services),
) -> Response:
    try:
        with session_scope(services.session_factory) as session:
            services.credentials.delete(session, credential_id)
    except CredentialNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return Response(status_code=204)
