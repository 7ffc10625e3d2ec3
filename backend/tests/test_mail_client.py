"""Tests for the IMAP mailbox client, using an in-memory stand-in for imaplib."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.message import EmailMessage

import pytest

from fake_imap import FakeImap, client_for
from job_tracker.email.client import IMAPMailboxClient, compute_since, imap_date, parse_list_response
from job_tracker.errors import MailboxConnectionError
from job_tracker.models import EmailCredential


def _raw(subject: str, date: str, message_id: str, body: str = "Hello") -> bytes:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = "Acme Careers <careers@acme.com>"
    msg["Date"] = date
    msg["Message-ID"] = f"<{message_id}>"
    msg.set_content(body)
    return msg.as_bytes()


@pytest.fixture
def mailbox() -> FakeImap:
    return FakeImap(
        {
            "INBOX": {
                7: _raw("Second", "Sat, 11 Jan 2025 09:00:00 +0000", "b@acme.com"),
                3: _raw("First", "Fri, 10 Jan 2025 09:00:00 +0000", "a@acme.com"),
            },
            "Jobs": {1: _raw("Third", "Sun, 12 Jan 2025 17:30:00 -0500", "c@acme.com")},
        }
    )


class TestSearch:
    def test_folders_in_order_uids_ascending(self, mailbox: FakeImap) -> None:
        since = datetime(2025, 1, 5, tzinfo=timezone.utc)
        with client_for(mailbox) as client:
            messages = list(client.search(since, ["INBOX", "Jobs"]))

        assert [(m.folder, m.uid, m.subject) for m in messages] == [
            ("INBOX", 3, "First"),
            ("INBOX", 7, "Second"),
            ("Jobs", 1, "Third"),
        ]
        assert messages[2].date == datetime(2025, 1, 12, 22, 30, tzinfo=timezone.utc)
        assert messages[0].message_id == "a@acme.com"
        assert mailbox.searches == ["SINCE 05-Jan-2025", "SINCE 05-Jan-2025"]
        assert mailbox.logged_out

    def test_missing_folder_is_skipped(self, mailbox: FakeImap) -> None:
        since = datetime(2025, 1, 1, tzinfo=timezone.utc)
        with client_for(mailbox) as client:
            messages = list(client.search(since, ["Archive", "Jobs"]))
            skipped = client.skipped_folders

        assert [m.subject for m in messages] == ["Third"]
        assert skipped == ["Archive"]

    def test_folder_callback(self, mailbox: FakeImap) -> None:
        seen = []
        with client_for(mailbox) as client:
            list(client.search(datetime(2025, 1, 1), ["INBOX", "Jobs"], on_folder=lambda *args: seen.append(args)))

        assert seen == [("INBOX", 0, 2), ("Jobs", 1, 2)]

    def test_callback_exception_stops_search(self, mailbox: FakeImap) -> None:
        class _Stop(Exception):
            pass

        def stop(folder: str, index: int, total: int) -> None:
            if index == 1:
                raise _Stop

        with pytest.raises(_Stop):
            with client_for(mailbox) as client:
                for _ in client.search(datetime(2025, 1, 1), ["INBOX", "Jobs"], on_folder=stop):
                    pass
        assert mailbox.logged_out


class TestConnect:
    def test_login_failure(self) -> None:
        fake = FakeImap({}, fail_login=True)
        with pytest.raises(MailboxConnectionError, match="Authentication failed"):
            client_for(fake).connect()
        assert fake.logged_out

    def test_unreachable_host(self) -> None:
        def factory(host, port, ssl_context, timeout):
            raise OSError("Name or service not known")

        client = IMAPMailboxClient("nowhere.invalid", 993, "me@example.com", "pw", imap_factory=factory)
        with pytest.raises(MailboxConnectionError, match="Cannot reach nowhere.invalid:993"):
            client.connect()


class TestListFolders:
    def test_parses_listing(self) -> None:
        lines = [
            b'(\\HasNoChildren) "/" "INBOX"',
            b'(\\HasNoChildren) "/" "Jobs/Applied"',
            b'(\\Noselect \\HasChildren) "/" "[Gmail]"',
            b'(\\HasNoChildren) "/" Archive',
            (b'(\\HasNoChildren) "/" {11}', b"Some Folder"),
        ]
        with client_for(FakeImap({}, list_lines=lines)) as client:
            assert client.list_folders() == ["INBOX", "Jobs/Applied", "Archive", "Some Folder"]

    def test_empty_listing(self) -> None:
        with client_for(FakeImap({})) as client:
            assert client.list_folders() == []

    def test_parse_list_response_skips_garbage(self) -> None:
        assert parse_list_response([b"garbage", None]) == []


class TestComputeSince:
    NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)

    def _credential(self, last_import_at=None) -> EmailCredential:
        return EmailCredential(
            address="me@example.com",
            host="imap.example.com",
            search_timeframe_days=90,
            last_import_at=last_import_at,
            encrypted_password="x",
        )

    def test_timeframe_without_previous_import(self) -> None:
        assert compute_since(self._credential(), now=self.NOW) == self.NOW - timedelta(days=90)

    def test_previous_import_narrows_window(self) -> None:
        last = datetime(2025, 2, 20, tzinfo=timezone.utc)
        assert compute_since(self._credential(last), now=self.NOW) == last

    def test_naive_previous_import_is_utc(self) -> None:
        since = compute_since(self._credential(datetime(2025, 2, 20)), now=self.NOW)
        assert since == datetime(2025, 2, 20, tzinfo=timezone.utc)

    def test_ignore_previous_import(self) -> None:
        last = datetime(2025, 2, 20, tzinfo=timezone.utc)
        assert compute_since(self._credential(last), ignore_previous_import=True, now=self.NOW) == (
            self.NOW - timedelta(days=90)
        )

    def test_old_import_does_not_widen_window(self) -> None:
        last = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert compute_since(self._credential(last), now=self.NOW) == self.NOW - timedelta(days=90)

    def test_imap_date(self) -> None:
        assert imap_date(datetime(2025, 9, 3)) == "03-Sep-2025"
