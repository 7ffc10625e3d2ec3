"""Mailbox credential storage with sealed passwords."""

from __future__ import annotations

import base64
import hashlib
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from job_tracker.errors import CredentialError, CredentialNotFound
from job_tracker.models import EmailCredential

logger = structlog.get_logger(__name__)


class SecretBox:
    """Seals and opens mailbox passwords with a key derived from a configured secret."""

    def __init__(self, secret: str) -> None:
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())
        self._fernet = Fernet(key)

    def seal(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def open(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError) as exc:
            raise CredentialError("Stored mailbox password cannot be decrypted") from exc


def normalize_folders(folders: Optional[Sequence[str]]) -> List[str]:
    """Strip names and drop blanks and duplicates, keeping order; default ``["INBOX"]``."""
    seen: Dict[str, None] = {}
    for folder in folders or []:
        name = folder.strip()
        if name:
            seen.setdefault(name, None)
    return list(seen) or ["INBOX"]


class CredentialStore:
    """CRUD over :class:`EmailCredential` rows; the password is write-only."""

    _UPDATABLE = {
        "address",
        "host",
        "port",
        "use_tls",
        "reject_unauthorized",
        "search_timeframe_days",
        "search_folders",
    }

    def __init__(self, box: SecretBox) -> None:
        self._box = box

    def create(self, session: Session, data: Dict[str, Any]) -> EmailCredential:
        credential = EmailCredential(
            address=data["address"],
            host=data["host"],
            port=data.get("port", 993),
            use_tls=data.get("use_tls", True),
            reject_unauthorized=data.get("reject_unauthorized", True),
            search_timeframe_days=data.get("search_timeframe_days", 90),
            search_folders=normalize_folders(data.get("search_folders")),
            encrypted_password=self._box.seal(data["password"]),
        )
        session.add(credential)
        try:
            session.flush()
        except IntegrityError as exc:
            raise ValueError(f"A credential for {data['address']} already exists") from exc
        logger.info("credential_created", credential_id=credential.id, address=credential.address)
        return credential

    def list(self, session: Session) -> List[EmailCredential]:
        return list(session.scalars(select(EmailCredential).order_by(EmailCredential.id)))

    def get(self, session: Session, credential_id: int) -> EmailCredential:
        credential = session.get(EmailCredential, credential_id)
        if credential is None:
            raise CredentialNotFound(f"Credential {credential_id} not found")
        return credential

    def update(self, session: Session, credential_id: int, data: Dict[str, Any]) -> EmailCredential:
        credential = self.get(session, credential_id)
        for name, value in data.items():
            if value is None:
                continue
            if name == "password":
                credential.encrypted_password = self._box.seal(value)
            elif name == "search_folders":
                credential.search_folders = normalize_folders(value)
            elif name in self._UPDATABLE:
                setattr(credential, name, value)
        try:
            session.flush()
        except IntegrityError as exc:
            raise ValueError(f"A credential for {credential.address} already exists") from exc
        logger.info("credential_updated", credential_id=credential_id)
        return credential

    def delete(self, session: Session, credential_id: int) -> None:
        credential = self.get(session, credential_id)
        session.delete(credential)
        session.flush()
        logger.info("credential_deleted", credential_id=credential_id)

    def get_password(self, credential: EmailCredential) -> str:
        return self._box.open(credential.encrypted_password)

    def mark_imported(self, session: Session, credential_id: int, when: datetime) -> None:
        credential = self.get(session, credential_id)
        credential.last_import_at = when
        session.flush()
