"""Regex-based field extraction for company, job title, job links and responses."""

from __future__ import annotations

import re
from typing import Iterable, Optional

import structlog

from job_tracker.email.parser import is_noise_text

logger = structlog.get_logger(__name__)

# ── Helpers ───────────────────────────────────────────────


def clean_text(text: str, max_len: int = 90) -> str:
    """Collapse whitespace and trim surrounding punctuation."""
    value = re.sub(r"\s+", " ", text).strip(" \t\r\n-:;,.!")
    if len(value) > max_len:
        value = value[:max_len].rstrip()
    return value


def _normalize_space(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


# ── Sender helpers ────────────────────────────────────────

_ADDRESS_RE = re.compile(r"[A-Za-z0-9._%+\-]+@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")
_DISPLAY_NAME_RE = re.compile(r'^\s*"?([^"<]+?)"?\s*<')
_WEBMAIL_DOMAINS = re.compile(r"gmail|hotmail|outlook|yahoo|aol|icloud|protonmail", re.IGNORECASE)
_GENERIC_DISPLAY_NAMES = re.compile(
    r"^(hr|recruiting|recruitment|talent|talent acquisition|careers?|jobs|applications?|"
    r"human resources|notifications?|no[- ]?reply|do ?not ?reply|careers portal|hiring team)$",
    re.IGNORECASE,
)


def sender_domain(sender: str) -> str:
    """Return the lower-cased domain of the sender address, or ``""``."""
    matched = _ADDRESS_RE.search(sender or "")
    return matched.group(1).lower() if matched else ""


def is_linkedin_sender(sender: str) -> bool:
    domain = sender_domain(sender)
    return domain == "linkedin.com" or domain.endswith(".linkedin.com")


def infer_company_from_sender(sender: str) -> str:
    """Fall back to a company name from the sender display name or domain.

    Webmail domains and generic display names ("Recruiting", "No Reply")
    yield ``""``.
    """
    named = _DISPLAY_NAME_RE.match(sender or "")
    if named:
        display = _normalize_space(named.group(1))
        display = re.sub(r"\s+(careers|recruiting|talent acquisition|hiring team|jobs)$", "", display, flags=re.IGNORECASE)
        if display and "@" not in display and not _GENERIC_DISPLAY_NAMES.match(display):
            return display

    domain = sender_domain(sender)
    if not domain or _WEBMAIL_DOMAINS.search(domain):
        return ""
    stripped = re.sub(r"^(mail|email|notifications|notify|jobs?|careers?|talent|hire)\.", "", domain)
    pieces = stripped.split(".")
    if stripped.endswith(".co.uk") and len(pieces) >= 3:
        return pieces[-3].replace("-", " ").title()
    if len(pieces) >= 2:
        return pieces[-2].replace("-", " ").title()
    return stripped.replace("-", " ").title()


# ── LinkedIn notifications ────────────────────────────────

LINKEDIN_APPLICATION_SENT = re.compile(r"application was sent to (?P<rest>.+)$", re.IGNORECASE)
LINKEDIN_TITLE_AT_COMPANY = re.compile(r"^(?P<title>.+?) at (?P<company>.+)$", re.IGNORECASE)

LINKEDIN_STATUS_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"was viewed by (?P<company>.+)$", re.IGNORECASE), "viewed"),
    (re.compile(r"is in review at (?P<company>.+)$", re.IGNORECASE), "in review"),
    (re.compile(r"is being considered at (?P<company>.+)$", re.IGNORECASE), "being considered"),
]

LINKEDIN_RESPONSE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"your application to (?P<title>.+) at (?P<company>.+)$", re.IGNORECASE),
    re.compile(r"update on your application to (?P<company>.+)$", re.IGNORECASE),
    re.compile(r"your update from (?P<company>.+)$", re.IGNORECASE),
    re.compile(r"response to your application (?:to|at|from) (?P<company>.+)$", re.IGNORECASE),
]

_JOB_VIEW_RE = re.compile(r"/jobs/view/(?:[^/?#]*?-)?(?P<id>\d+)")


def extract_job_link(links: Iterable[str]) -> tuple[Optional[str], Optional[str]]:
    """Return ``(url, job_id)`` for the first job-posting link, else ``(None, None)``.

    Tracking segments such as ``/comm/`` are removed and query strings dropped.
    """
    for href in links:
        matched = _JOB_VIEW_RE.search(href)
        if not matched:
            continue
        url = href.split("?", 1)[0].replace("/comm/", "/")
        return url, matched.group("id")
    return None, None


# ── Generic ATS mail ──────────────────────────────────────

GENERIC_APPLICATION_SUBJECT = re.compile(
    r"application received|application (is )?complete|received your application|"
    r"thank you for (your )?appl(y|ication|ying)|we (have )?received your application",
    re.IGNORECASE,
)
GENERIC_UPDATE_SUBJECT = re.compile(
    r"update|status|thank you for your interest|unfortunately|not moving forward|decision",
    re.IGNORECASE,
)
REJECTION_BODY = re.compile(
    r"unfortunately|not (a )?match|not (be )?moving forward|other candidates|regret to inform|"
    r"pursuing other|thank you for your interest",
    re.IGNORECASE,
)
_BODY_COMPANY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(
        r"interest in (?:the\s+)?[A-Za-z0-9 /&+#()\-]{2,90}?\s+(?:position|role|opening)\s+(?:at|with)\s+(?P<company>[^,.!\n]+)",
        re.IGNORECASE,
    ),
    re.compile(
        r"thank you for (?:applying|your application|your interest) (?:to|at|with|in) (?P<company>[^,.!\n]+)",
        re.IGNORECASE,
    ),
]
_SUBJECT_COMPANY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\b(?:at|to|with|from)\s+(?P<company>[A-Z][A-Za-z0-9&.'\- ]{1,50})$"),
    re.compile(r"^(?P<company>[A-Z][A-Za-z0-9&.'\- ]{1,50}?)\s*[-:|]\s"),
]
_GENERIC_COMPANY_NAMES = {"thank you", "application received", "application", "job", "your application", "us"}


def extract_company_from_text(subject: str, body: str) -> str:
    """Pull a company name from "thank you for applying to X" or subject structure."""
    for text in (subject, body):
        for pattern in _BODY_COMPANY_PATTERNS:
            matched = pattern.search(text or "")
            if not matched:
                continue
            company = clean_text(matched.group("company"), max_len=60)
            company = re.sub(r"^the\s+", "", company, flags=re.IGNORECASE)
            if company and company.lower() not in _GENERIC_COMPANY_NAMES:
                return company

    for pattern in _SUBJECT_COMPANY_PATTERNS:
        matched = pattern.search(subject or "")
        if matched:
            company = clean_text(matched.group("company"), max_len=60)
            if company and company.lower() not in _GENERIC_COMPANY_NAMES:
                return company
    return ""


# ── Job title extraction ──────────────────────────────────

JOB_TITLE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(
        r"(?:(?<=^)|(?<=\s))(?:position|role|title)\s*[:\-]\s*([^\n\r]{2,100})",
        re.IGNORECASE,
    ),
    re.compile(
        r"\binterest in\s+(?:the\s+|our\s+)?([A-Za-z0-9 /&+#()\-]{2,90}?)\s+(?:position|role|opening)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"applied (?:for|to) (?:the\s+)?([A-Za-z0-9 /&+#()\-]{2,90}?)\s+(?:position|role|job)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\bfor\s+(?:the\s+|our\s+)?([A-Za-z0-9 /&+#()\-]{2,90}?)\s+(?:position|role|opening)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:application|applying) for\s+(?:the\s+)?([A-Za-z0-9 /&+#()\-]{2,90}?)(?:\s+at\s+|\s*$|[\n\r.,])",
        re.IGNORECASE,
    ),
]


def _clean_title(text: str) -> str:
    """Post-process a raw title match."""
    value = clean_text(text)
    value = re.sub(r"^(the|your|a|an)\s+", "", value, flags=re.IGNORECASE)
    value = re.sub(r"\s*\|\s*.*$", "", value)
    value = re.sub(
        r"\s+(position|role|job|opening|application|received|complete)$",
        "",
        value,
        flags=re.IGNORECASE,
    )
    return value.strip()


def extract_job_title(subject: str, body: str) -> str:
    """Extract a job title from the subject first, then the body, via regex patterns."""
    for text in (subject, body):
        for pattern in JOB_TITLE_PATTERNS:
            matched = pattern.search(text or "")
            if matched:
                title = _clean_title(matched.group(1))
                if title and len(title) > 2 and not is_noise_text(title):
                    return title
    return ""


# ── Response inference ────────────────────────────────────

_RESPONSE_MAP: list[tuple[list[str], str]] = [
    (
        [
            "not moving forward",
            "not be moving forward",
            "unfortunately",
            "other candidates",
            "pursuing other",
            "regret to inform",
        ],
        "Rejected",
    ),
    (["offer letter", "pleased to offer", "congratulations", "welcome to the team"], "Offer"),
    (["phone screen", "phone call", "quick call", "brief call"], "Phone Screen"),
    (
        [
            "interview",
            "schedule a call",
            "would like to speak",
            "next steps",
            "move forward with your application",
        ],
        "Interview",
    ),
]


def infer_response(text: str) -> Optional[str]:
    """Map the wording of a reply to a response value, or None if it is unclear."""
    lowered = (text or "").lower()
    for keywords, response in _RESPONSE_MAP:
        if any(kw in lowered for kw in keywords):
            return response
    return None


def is_generic_rejection(subject: str, body: str) -> bool:
    return bool(GENERIC_UPDATE_SUBJECT.search(subject or "")) and bool(REJECTION_BODY.search(body or ""))
