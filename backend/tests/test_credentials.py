"""Tests for credential storage and password sealing."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session

from job_tracker.credentials.store import CredentialStore, SecretBox, normalize_folders
from job_tracker.errors import CredentialError, CredentialNotFound


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore(SecretBox("test-secret"))


def _data(**overrides) -> dict:
    data = {"address": "me@example.com", "password": "hunter2", "host": "imap.example.com"}
    data.update(overrides)
    return data


class TestSecretBox:
    def test_sealed_token_hides_password(self) -> None:
        box = SecretBox("test-secret")
        token = box.seal("hunter2")
        assert "hunter2" not in token
        assert box.open(token) == "hunter2"

    def test_wrong_key(self) -> None:
        token = SecretBox("one").seal("hunter2")
        with pytest.raises(CredentialError):
            SecretBox("two").open(token)


class TestCredentialStore:
    def test_create_with_defaults(self, store: CredentialStore, db_session: Session) -> None:
        credential = store.create(db_session, _data())
        db_session.commit()

        assert credential.port == 993
        assert credential.use_tls is True
        assert credential.search_timeframe_days == 90
        assert credential.search_folders == ["INBOX"]
        assert credential.last_import_at is None
        assert credential.encrypted_password != "hunter2"
        assert store.get_password(credential) == "hunter2"

    def test_duplicate_address(self, store: CredentialStore, db_session: Session) -> None:
        store.create(db_session, _data())
        db_session.commit()
        with pytest.raises(ValueError, match="already exists"):
            store.create(db_session, _data(password="other"))
        db_session.rollback()

    def test_update_reseals_password_and_folders(self, store: CredentialStore, db_session: Session) -> None:
        credential = store.create(db_session, _data())
        db_session.commit()

        store.update(
            db_session,
            credential.id,
            {"password": "new-pass", "search_folders": ["Jobs", " INBOX ", "Jobs"], "port": None},
        )
        db_session.commit()

        updated = store.get(db_session, credential.id)
        assert store.get_password(updated) == "new-pass"
        assert updated.search_folders == ["Jobs", "INBOX"]
        assert updated.port == 993

    def test_list_and_delete(self, store: CredentialStore, db_session: Session) -> None:
        first = store.create(db_session, _data())
        second = store.create(db_session, _data(address="other@example.com"))
        db_session.commit()

        assert [c.id for c in store.list(db_session)] == [first.id, second.id]

        store.delete(db_session, first.id)
        db_session.commit()
        with pytest.raises(CredentialNotFound):
            store.get(db_session, first.id)

    def test_mark_imported(self, store: CredentialStore, db_session: Session) -> None:
        credential = store.create(db_session, _data())
        when = datetime(2025, 1, 20, 8, tzinfo=timezone.utc)

        store.mark_imported(db_session, credential.id, when)
        db_session.commit()

        assert store.get(db_session, credential.id).last_import_at.replace(tzinfo=timezone.utc) == when

    def test_unknown_id(self, store: CredentialStore, db_session: Session) -> None:
        with pytest.raises(CredentialNotFound):
            store.update(db_session, 99, {"host": "x"})


def test_normalize_folders() -> None:
    assert normalize_folders(None) == ["INBOX"]
    assert normalize_folders(["", "  "]) == ["INBOX"]
    assert normalize_folders(["Jobs", "INBOX", "Jobs"]) == ["Jobs", "INBOX"]
