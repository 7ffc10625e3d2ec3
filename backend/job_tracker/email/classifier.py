"""Message classification: map one email to zero or one candidate item.

Classifiers are pure: they look only at the message they are given and
return the same answer for the same content. Any classifier can be plugged
into the ingestion pipeline as long as it follows :class:`Classifier`.
"""

from __future__ import annotations

import re
from typing import Optional, Protocol

import structlog
from bs4 import BeautifulSoup

from job_tracker.candidates import APPLICATION, RESPONSE, STATUS_UPDATE, CandidateItem
from job_tracker.email.parser import RawMessage
from job_tracker.errors import ClassificationError
from job_tracker.extraction.rules import (
    GENERIC_APPLICATION_SUBJECT,
    LINKEDIN_APPLICATION_SENT,
    LINKEDIN_RESPONSE_PATTERNS,
    LINKEDIN_STATUS_PATTERNS,
    LINKEDIN_TITLE_AT_COMPANY,
    REJECTION_BODY,
    clean_text,
    extract_company_from_text,
    extract_job_link,
    extract_job_title,
    infer_company_from_sender,
    infer_response,
    is_generic_rejection,
    is_linkedin_sender,
)

logger = structlog.get_logger(__name__)

_RESPONSE_SUBJECT = re.compile(r"interview|offer|next steps|phone screen", re.IGNORECASE)


class Classifier(Protocol):
    """Anything that maps a :class:`RawMessage` to a candidate or ``None``."""

    def classify(self, message: RawMessage) -> Optional[CandidateItem]:
        ...


def _job_link_title(html: str) -> str:
    """Text of the first job-posting link in the HTML body."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for anchor in soup.select('a[href*="/jobs/view/"]'):
        text = clean_text(anchor.get_text(" ", strip=True))
        if len(text) > 3:
            return text
    return ""


def _location_after_company(body: str, company: str) -> Optional[str]:
    """LinkedIn cards render ``Company · Location``; return the location part."""
    matched = re.search(rf"{re.escape(company)}\s*[·•]\s*([^\n\r·•]{{2,80}})", body or "")
    return clean_text(matched.group(1), max_len=80) if matched else None


class RuleBasedClassifier:
    """Default classifier built on subject/body patterns.

    LinkedIn notifications are recognised by sender; other mail is treated
    as a generic applicant-tracking-system message. Messages without a date
    or a company, and messages with contradictory response wording, are
    discarded.
    """

    def classify(self, message: RawMessage) -> Optional[CandidateItem]:
        if message.date is None:
            return None
        if is_linkedin_sender(message.sender):
            return self._classify_linkedin(message)
        return self._classify_generic(message)

    # ── LinkedIn ──────────────────────────────────────────
    def _classify_linkedin(self, message: RawMessage) -> Optional[CandidateItem]:
        subject = message.subject.strip()
        website, external_id = extract_job_link(message.links)
        link_title = _job_link_title(message.body_html)

        sent = LINKEDIN_APPLICATION_SENT.search(subject)
        if sent:
            rest = clean_text(sent.group("rest"), max_len=160)
            split = LINKEDIN_TITLE_AT_COMPANY.match(rest)
            if split:
                title, company = clean_text(split.group("title")), clean_text(split.group("company"))
            else:
                title, company = link_title or extract_job_title(subject, message.body_text), rest
            if not company or not title:
                return None
            return CandidateItem(
                item_type=APPLICATION,
                company=company,
                job_title=title,
                event_at=message.date,
                company_location=_location_after_company(message.body_text, company),
                external_id=external_id,
                website=website,
                source_message_id=message.source_id,
            )

        for pattern, status_type in LINKEDIN_STATUS_PATTERNS:
            matched = pattern.search(subject)
            if not matched:
                continue
            company = clean_text(matched.group("company"))
            title = link_title or extract_job_title(subject, message.body_text)
            return self._follow_up(
                message,
                STATUS_UPDATE,
                company,
                title,
                external_id,
                status_type=status_type,
                notes=(
                    f"Your application for {title or 'this position'} was {status_type} "
                    f"by {company} on {message.date:%Y-%m-%d}"
                ),
            )

        for pattern in LINKEDIN_RESPONSE_PATTERNS:
            matched = pattern.search(subject)
            if not matched:
                continue
            groups = matched.groupdict()
            company = clean_text(groups["company"])
            title = clean_text(groups.get("title") or "") or link_title or extract_job_title("", message.body_text)
            if _has_conflicting_wording(message.body_text):
                return None
            return self._follow_up(
                message,
                RESPONSE,
                company,
                title,
                external_id,
                response=infer_response(message.body_text) or "Other",
            )
        return None

    # ── Generic ATS mail ──────────────────────────────────
    def _classify_generic(self, message: RawMessage) -> Optional[CandidateItem]:
        subject = message.subject.strip()
        body = message.body_text
        company = extract_company_from_text(subject, body) or infer_company_from_sender(message.sender)
        if not company:
            return None
        title = extract_job_title(subject, body)
        website, external_id = extract_job_link(message.links)

        if _has_conflicting_wording(body):
            logger.debug("classifier_ambiguous", subject=subject)
            return None

        if GENERIC_APPLICATION_SUBJECT.search(subject):
            if REJECTION_BODY.search(body):
                return self._follow_up(message, RESPONSE, company, title, external_id, response="Rejected")
            if not title:
                return None
            return CandidateItem(
                item_type=APPLICATION,
                company=company,
                job_title=title,
                event_at=message.date,
                external_id=external_id,
                website=website,
                source_message_id=message.source_id,
            )

        if is_generic_rejection(subject, body):
            return self._follow_up(message, RESPONSE, company, title, external_id, response="Rejected")

        if _RESPONSE_SUBJECT.search(subject):
            response = infer_response(f"{subject}\n{body}")
            if response is None:
                return None
            return self._follow_up(message, RESPONSE, company, title, external_id, response=response)
        return None

    @staticmethod
    def _follow_up(
        message: RawMessage,
        item_type: str,
        company: str,
        title: str,
        external_id: Optional[str],
        *,
        response: Optional[str] = None,
        status_type: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[CandidateItem]:
        # Without a title or job id a follow-up can never be matched
        if not company or (not title and not external_id):
            return None
        if notes is None and response is not None:
            notes = f"Received a {response.lower()} response from {company}"
        return CandidateItem(
            item_type=item_type,
            company=company,
            job_title=title,
            event_at=message.date,  # type: ignore[arg-type]
            response=response,
            status_type=status_type,
            external_id=external_id,
            notes=notes,
            source_message_id=message.source_id,
        )


def _has_conflicting_wording(text: str) -> bool:
    """True when a message both rejects and offers (it cannot be read either way)."""
    lowered = (text or "").lower()
    rejects = bool(REJECTION_BODY.search(lowered))
    offers = any(kw in lowered for kw in ("pleased to offer", "offer letter", "welcome to the team"))
    return rejects and offers


def classify_safely(classifier: Classifier, message: RawMessage) -> Optional[CandidateItem]:
    """Run *classifier* on one message; a failure discards the message."""
    try:
        return classifier.classify(message)
    except Exception as exc:
        error = ClassificationError(str(exc))
        logger.warning(
            "classification_failed",
            folder=message.folder,
            uid=message.uid,
            subject=message.subject[:120],
            error=str(error),
        )
        return None
