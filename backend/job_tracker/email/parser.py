"""Email MIME parsing: subject decoding, body extraction, link collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup


@dataclass(frozen=True)
class RawMessage:
    """One message as delivered by the mailbox client."""

    uid: int
    folder: str
    subject: str
    sender: str
    date: Optional[datetime]
    body_text: str
    body_html: str = ""
    message_id: Optional[str] = None
    links: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def source_id(self) -> str:
        """Stable identifier for the message: Message-ID, else folder/uid."""
        return self.message_id or f"{self.folder}/{self.uid}"


# ── Noise detection tokens ────────────────────────────────
_NOISE_TOKENS = [
    "color:",
    "font-",
    "px",
    "{",
    "}",
    "margin",
    "padding",
    "mso-",
    "a:visited",
]


def is_noise_text(text: str, threshold: int = 2) -> bool:
    """Return True if *text* looks like CSS / HTML junk rather than real content."""
    lowered = text.lower()
    hits = sum(1 for tok in _NOISE_TOKENS if tok in lowered)
    return hits >= threshold


# ── MIME helpers ──────────────────────────────────────────


def decode_mime_text(value: Optional[str]) -> str:
    """Decode a MIME-encoded header value to a plain string."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value))).strip()
    except (UnicodeDecodeError, LookupError, ValueError):
        return value.strip()


def parse_date(date_raw: str) -> Optional[datetime]:
    """Parse a raw email date into an aware UTC datetime, or None."""
    if not date_raw:
        return None
    try:
        dt = parsedate_to_datetime(date_raw)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def html_to_text(html: str) -> str:
    """Strip HTML tags and return readable text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def extract_links(html: str) -> Tuple[str, ...]:
    """Return every ``href`` in *html*, in document order, without duplicates."""
    if not html:
        return ()
    soup = BeautifulSoup(html, "html.parser")
    seen: dict[str, None] = {}
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href:
            seen.setdefault(href, None)
    return tuple(seen)


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode(errors="replace")


def extract_bodies(msg: Message) -> Tuple[str, str]:
    """Return ``(plain_text, html)`` for the message, skipping attachments."""
    plain_parts: List[str] = []
    html_parts: List[str] = []

    parts = msg.walk() if msg.is_multipart() else [msg]
    for part in parts:
        ctype = part.get_content_type()
        if ctype not in ("text/plain", "text/html"):
            continue
        if "attachment" in str(part.get("Content-Disposition", "")).lower():
            continue
        text = _decode_part(part)
        if ctype == "text/html":
            html_parts.append(text)
        else:
            plain_parts.append(text)

    return "\n".join(plain_parts), "\n".join(html_parts)


def _extract_message_id(msg: Message) -> Optional[str]:
    """Extract and normalize the Message-ID header."""
    raw = msg.get("Message-ID", "") or msg.get("Message-Id", "")
    if not raw:
        return None
    cleaned = raw.strip().strip("<>").strip()
    return cleaned if cleaned else None


# ── Top-level parser ─────────────────────────────────────


def parse_raw_message(uid: int, folder: str, msg: Message) -> RawMessage:
    """Parse a stdlib ``email.Message`` into a :class:`RawMessage`."""
    plain_text, html = extract_bodies(msg)
    html_text = html_to_text(html) if html else ""

    # Prefer plain text unless it's mostly CSS leftovers
    if plain_text and not is_noise_text(plain_text):
        body_text = plain_text
    else:
        body_text = html_text or plain_text

    return RawMessage(
        uid=uid,
        folder=folder,
        subject=decode_mime_text(msg.get("Subject", "")),
        sender=decode_mime_text(msg.get("From", "")),
        date=parse_date(decode_mime_text(msg.get("Date", ""))),
        body_text=body_text,
        body_html=html,
        message_id=_extract_message_id(msg),
        links=extract_links(html),
    )
