"""In-memory stand-in for ``imaplib.IMAP4`` used across the mailbox tests."""

from __future__ import annotations

import imaplib
from email.message import EmailMessage
from email.utils import format_datetime
from typing import Dict, List, Optional

from job_tracker.email.client import IMAPMailboxClient
from job_tracker.email.parser import RawMessage


def message_bytes(message: RawMessage) -> bytes:
    """Render a fixture message as the RFC822 bytes a server would return."""
    msg = EmailMessage()
    msg["Subject"] = message.subject
    msg["From"] = message.sender
    if message.date is not None:
        msg["Date"] = format_datetime(message.date)
    if message.message_id:
        msg["Message-ID"] = f"<{message.message_id}>"
    msg.set_content(message.body_text)
    if message.body_html:
        msg.add_alternative(message.body_html, subtype="html")
    return msg.as_bytes()


def mailbox_from(*messages: RawMessage) -> Dict[str, Dict[int, bytes]]:
    """Folder -> uid -> bytes, keeping each fixture's folder and uid."""
    folders: Dict[str, Dict[int, bytes]] = {}
    for message in messages:
        folders.setdefault(message.folder, {})[message.uid] = message_bytes(message)
    return folders


class FakeImap:
    """Just enough of ``imaplib.IMAP4`` for the client."""

    def __init__(
        self,
        folders: Dict[str, Dict[int, bytes]],
        list_lines: Optional[List[object]] = None,
        fail_login: bool = False,
    ) -> None:
        self.folders = folders
        self.list_lines = list_lines if list_lines is not None else [None]
        self.fail_login = fail_login
        self.selected: Optional[str] = None
        self.searches: List[str] = []
        self.logged_out = False

    def login(self, user: str, password: str):
        if self.fail_login:
            raise imaplib.IMAP4.error("[AUTHENTICATIONFAILED] Invalid credentials")
        self.password = password
        return "OK", [b"Logged in"]

    def select(self, mailbox: str, readonly: bool = False):
        name = mailbox.strip('"')
        if name not in self.folders:
            return "NO", [b"Mailbox does not exist"]
        self.selected = name
        return "OK", [str(len(self.folders[name])).encode()]

    def uid(self, command: str, *args):
        messages = self.folders[self.selected]
        if command == "SEARCH":
            self.searches.append(args[-1])
            return "OK", [b" ".join(str(uid).encode() for uid in sorted(messages, reverse=True))]
        if command == "FETCH":
            uid = int(args[0])
            return "OK", [(f"1 (UID {uid} RFC822 {{100}}".encode(), messages[uid]), b")"]
        raise AssertionError(command)

    def list(self):
        return "OK", self.list_lines

    def logout(self):
        self.logged_out = True
        return "BYE", [b"Logging out"]


def client_for(fake: FakeImap, **kwargs) -> IMAPMailboxClient:
    return IMAPMailboxClient(
        "imap.example.com",
        993,
        "me@example.com",
        "secret",
        imap_factory=lambda host, port, ssl_context, timeout: fake,
        **kwargs,
    )


def mailbox_factory(fake: FakeImap):
    """A ``mailbox_factory`` for :func:`build_services` that always talks to *fake*."""

    def factory(credential, password: str) -> IMAPMailboxClient:
        return IMAPMailboxClient.from_credential(
            credential,
            password,
            imap_factory=lambda host, port, ssl_context, timeout: fake,
        )

    return factory
