"""IMAP mailbox client with retry logic and proper resource management."""

from __future__ import annotations

import email as email_lib
import imaplib
import re
import socket
import ssl
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, List, Optional, Sequence

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from job_tracker.email.parser import RawMessage, parse_raw_message
from job_tracker.errors import FolderFetchError, MailboxConnectionError
from job_tracker.models import EmailCredential

logger = structlog.get_logger(__name__)

# Transient network errors worth retrying. TLS and login failures are not.
_RETRYABLE = (
    socket.timeout,
    ConnectionResetError,
    ConnectionRefusedError,
)

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_LIST_LINE = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.+)$')

FolderCallback = Callable[[str, int, int], None]
ImapFactory = Callable[..., imaplib.IMAP4]


def imap_date(value: datetime) -> str:
    """Format a datetime as an IMAP search date (``DD-Mon-YYYY``), locale independent."""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def quote_folder(name: str) -> str:
    """Quote a mailbox name for SELECT; names may contain spaces."""
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def parse_list_response(data: Sequence[object]) -> List[str]:
    """Parse IMAP ``LIST`` response lines into selectable folder names."""
    folders: List[str] = []
    for entry in data:
        if entry is None:
            continue
        if isinstance(entry, tuple):
            # Literal form: (b'(\\HasNoChildren) "/" {11}', b'Some Folder')
            head, literal = entry[0], entry[1]
            head_text = head.decode("utf-8", errors="replace") if isinstance(head, bytes) else str(head)
            name_text = literal.decode("utf-8", errors="replace") if isinstance(literal, bytes) else str(literal)
            line = re.sub(r"\{\d+\}$", quote_folder(name_text), head_text.strip())
        elif isinstance(entry, bytes):
            line = entry.decode("utf-8", errors="replace")
        else:
            line = str(entry)

        matched = _LIST_LINE.match(line.strip())
        if not matched:
            logger.debug("imap_list_line_unparsed", line=line)
            continue
        if "\\noselect" in matched.group("flags").lower():
            continue
        name = matched.group("name").strip()
        if name.startswith('"') and name.endswith('"') and len(name) >= 2:
            name = name[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        folders.append(name)
    return folders


def compute_since(
    credential: EmailCredential,
    ignore_previous_import: bool = False,
    now: Optional[datetime] = None,
) -> datetime:
    """Return the lower bound of a mailbox search for *credential*.

    The window is ``searchTimeframeDays`` back from now, narrowed to the
    last import time unless the caller asks to ignore previous imports.
    """
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=credential.search_timeframe_days)
    last_import = credential.last_import_at
    if last_import is not None and not ignore_previous_import:
        if last_import.tzinfo is None:
            last_import = last_import.replace(tzinfo=timezone.utc)
        since = max(since, last_import)
    return since


def _default_imap_factory(
    host: str,
    port: int,
    ssl_context: Optional[ssl.SSLContext],
    timeout: float,
) -> imaplib.IMAP4:
    if ssl_context is not None:
        return imaplib.IMAP4_SSL(host, port, ssl_context=ssl_context, timeout=timeout)
    return imaplib.IMAP4(host, port, timeout=timeout)


class IMAPMailboxClient:
    """IMAP connection wrapper with retry, timeout, and context-manager support.

    Usage::

        with IMAPMailboxClient("imap.example.com", 993, "me@example.com", pw) as client:
            for message in client.search(since, ["INBOX", "Jobs"]):
                ...

    Folders that cannot be opened are skipped and recorded in
    :attr:`folder_errors`; only connection-level failures raise.
    """

    def __init__(
        self,
        host: str,
        port: int,
        address: str,
        password: str,
        *,
        use_tls: bool = True,
        reject_unauthorized: bool = True,
        timeout: float = 30,
        imap_factory: ImapFactory | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._address = address
        self._password = password
        self._use_tls = use_tls
        self._reject_unauthorized = reject_unauthorized
        self._timeout = timeout
        self._imap_factory = imap_factory or _default_imap_factory
        self._mail: imaplib.IMAP4 | None = None
        self.folder_errors: List[FolderFetchError] = []

    @classmethod
    def from_credential(
        cls,
        credential: EmailCredential,
        password: str,
        timeout: float = 30,
        imap_factory: ImapFactory | None = None,
    ) -> "IMAPMailboxClient":
        return cls(
            credential.host,
            credential.port,
            credential.address,
            password,
            use_tls=credential.use_tls,
            reject_unauthorized=credential.reject_unauthorized,
            timeout=timeout,
            imap_factory=imap_factory,
        )

    # ── Context manager ───────────────────────────────────
    def __enter__(self) -> "IMAPMailboxClient":
        self.connect()
        return self

    def __exit__(self, *exc: object) -> None:
        self.disconnect()

    # ── Connection ────────────────────────────────────────
    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self._use_tls:
            return None
        context = ssl.create_default_context()
        if not self._reject_unauthorized:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=15),
        reraise=True,
    )
    def _open(self) -> imaplib.IMAP4:
        logger.info("imap_connecting", host=self._host, port=self._port, tls=self._use_tls)
        return self._imap_factory(self._host, self._port, self._ssl_context(), self._timeout)

    def connect(self) -> None:
        """Open the connection and log in. Raises :class:`MailboxConnectionError`."""
        try:
            mail = self._open()
        except ssl.SSLError as exc:
            logger.warning("imap_tls_failed", host=self._host, error=str(exc))
            raise MailboxConnectionError(f"TLS handshake with {self._host} failed") from exc
        except OSError as exc:
            logger.warning("imap_unreachable", host=self._host, error=str(exc))
            raise MailboxConnectionError(f"Cannot reach {self._host}:{self._port}") from exc

        try:
            logger.info("imap_logging_in", username=self._address)
            mail.login(self._address, self._password)
        except imaplib.IMAP4.error as exc:
            self._safe_logout(mail)
            logger.warning("imap_login_failed", username=self._address)
            raise MailboxConnectionError(f"Authentication failed for {self._address}") from exc
        except OSError as exc:
            self._safe_logout(mail)
            raise MailboxConnectionError(f"Connection to {self._host} lost during login") from exc

        self._mail = mail

    @staticmethod
    def _safe_logout(mail: imaplib.IMAP4) -> None:
        try:
            mail.logout()
        except (imaplib.IMAP4.error, OSError):
            logger.debug("imap_logout_failed")

    def disconnect(self) -> None:
        """Safely close the IMAP connection."""
        if self._mail is not None:
            self._safe_logout(self._mail)
            self._mail = None
            logger.debug("imap_disconnected")

    def _ensure_connected(self) -> imaplib.IMAP4:
        if self._mail is None:
            raise RuntimeError("IMAP client not connected; call connect() first")
        return self._mail

    # ── Folders ───────────────────────────────────────────
    def list_folders(self) -> List[str]:
        """Return every selectable folder name. An empty mailbox listing is ``[]``."""
        mail = self._ensure_connected()
        try:
            status, data = mail.list()
        except imaplib.IMAP4.abort as exc:
            raise MailboxConnectionError(f"Connection to {self._host} lost") from exc
        except imaplib.IMAP4.error as exc:
            raise MailboxConnectionError(f"Folder listing failed: {exc}") from exc
        if status != "OK":
            raise MailboxConnectionError("Folder listing failed")
        folders = parse_list_response(data or [])
        logger.info("imap_folders_listed", count=len(folders))
        return folders

    # ── Searching ─────────────────────────────────────────
    def _search_folder(self, mail: imaplib.IMAP4, folder: str, since: datetime) -> List[int]:
        status, _ = mail.select(quote_folder(folder), readonly=True)
        if status != "OK":
            raise FolderFetchError(folder, "cannot select folder")
        status, data = mail.uid("SEARCH", None, f"SINCE {imap_date(since)}")
        if status != "OK":
            raise FolderFetchError(folder, "UID SEARCH failed")
        uid_tokens = (data[0] or b"").split() if data else []
        return sorted(int(t) for t in uid_tokens)

    def _fetch_message(self, mail: imaplib.IMAP4, folder: str, uid: int) -> Optional[RawMessage]:
        status, fetched = mail.uid("FETCH", str(uid), "(RFC822)")
        if status != "OK" or not fetched or fetched[0] is None:
            logger.warning("imap_fetch_failed", folder=folder, uid=uid)
            return None

        raw_data = fetched[0]
        raw_email = raw_data[1] if isinstance(raw_data, tuple) and len(raw_data) >= 2 else None
        if not isinstance(raw_email, bytes) or not raw_email:
            logger.warning("imap_empty_payload", folder=folder, uid=uid)
            return None
        return parse_raw_message(uid, folder, email_lib.message_from_bytes(raw_email))

    def search(
        self,
        since: datetime,
        folders: Sequence[str],
        on_folder: FolderCallback | None = None,
    ) -> Iterator[RawMessage]:
        """Yield messages received since *since* from *folders*, in folder order.

        Messages are fetched one at a time. A folder that cannot be opened or
        searched is recorded in :attr:`folder_errors` and skipped.
        ``on_folder(folder, index, total)`` is called before each folder.
        """
        mail = self._ensure_connected()
        total = len(folders)
        for index, folder in enumerate(folders):
            if on_folder is not None:
                on_folder(folder, index, total)
            try:
                uids = self._search_folder(mail, folder, since)
            except imaplib.IMAP4.abort as exc:
                raise MailboxConnectionError(f"Connection to {self._host} lost") from exc
            except imaplib.IMAP4.error as exc:
                self._skip_folder(FolderFetchError(folder, str(exc)))
                continue
            except FolderFetchError as exc:
                self._skip_folder(exc)
                continue
            except OSError as exc:
                raise MailboxConnectionError(f"Connection to {self._host} lost") from exc

            logger.info("imap_folder_searched", folder=folder, count=len(uids), since=imap_date(since))
            for uid in uids:
                try:
                    message = self._fetch_message(mail, folder, uid)
                except imaplib.IMAP4.abort as exc:
                    raise MailboxConnectionError(f"Connection to {self._host} lost") from exc
                except imaplib.IMAP4.error as exc:
                    logger.warning("imap_fetch_error", folder=folder, uid=uid, error=str(exc))
                    continue
                except OSError as exc:
                    raise MailboxConnectionError(f"Connection to {self._host} lost") from exc
                if message is not None:
                    yield message

    def _skip_folder(self, error: FolderFetchError) -> None:
        logger.warning("imap_folder_skipped", folder=error.folder, error=str(error))
        self.folder_errors.append(error)

    @property
    def skipped_folders(self) -> List[str]:
        return [err.folder for err in self.folder_errors]


def open_mailbox(
    credential: EmailCredential,
    password: str,
    timeout: float = 30,
) -> IMAPMailboxClient:
    """Build (but do not connect) a client for a stored credential."""
    return IMAPMailboxClient.from_credential(credential, password, timeout=timeout)
