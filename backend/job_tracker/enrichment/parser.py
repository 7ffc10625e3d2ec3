"""Parse public job-posting pages into enrichment fields."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from bs4 import BeautifulSoup, Tag

_JOB_ID_RE = re.compile(r"/jobs/view/(?:[^/?#]*?-)?(\d+)")
_SALARY_IN_TEXT = re.compile(
    r"\$\s?[0-9][0-9,.]*\s?[Kk]?(?:\s*(?:/|per\s+|an?\s+)\s*\w+)?"
    r"(?:\s*(?:-|–|to)\s*\$?\s?[0-9][0-9,.]*\s?[Kk]?(?:\s*(?:/|per\s+|an?\s+)\s*\w+)?)?"
)

_EMPLOYMENT_TYPES = {
    "full-time": "Full-time",
    "full time": "Full-time",
    "part-time": "Part-time",
    "part time": "Part-time",
    "contract": "Contract",
    "temporary": "Temporary",
    "internship": "Internship",
    "volunteer": "Volunteer",
}


@dataclass(frozen=True)
class SalaryInfo:
    """Parsed pay range; ``wage_type`` is Hourly / Weekly / Monthly / Yearly."""

    minimum: float
    maximum: float
    wage_type: str


@dataclass(frozen=True)
class PostingDetails:
    """Fields scraped from one job posting."""

    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    location_type: Optional[str] = None
    description: Optional[str] = None
    employment_type: Optional[str] = None
    salary_text: Optional[str] = None
    recruiter_name: Optional[str] = None
    recruiter_role: Optional[str] = None

    @property
    def salary(self) -> Optional[SalaryInfo]:
        return parse_salary(self.salary_text) if self.salary_text else None

    @property
    def is_empty(self) -> bool:
        return not any((self.title, self.description, self.employment_type, self.salary_text))


# ── URL helpers ───────────────────────────────────────────


def extract_job_id(url: str) -> Optional[str]:
    """Return the numeric LinkedIn job id from a posting URL, or None."""
    if not url:
        return None
    matched = _JOB_ID_RE.search(url.replace("/comm/", "/"))
    return matched.group(1) if matched else None


def guest_posting_url(url: str) -> str:
    """Rewrite a LinkedIn job URL to the public guest endpoint; other URLs pass through."""
    job_id = extract_job_id(url)
    if job_id and "linkedin.com" in url:
        return f"https://www.linkedin.com/jobs-guest/jobs/api/jobPosting/{job_id}"
    return url


# ── Salary ────────────────────────────────────────────────


def _wage_type(text: str) -> str:
    lowered = text.lower()
    if "hour" in lowered or "/hr" in lowered:
        return "Hourly"
    if "month" in lowered or "/mo" in lowered:
        return "Monthly"
    if "week" in lowered or "/wk" in lowered:
        return "Weekly"
    return "Yearly"


def _number(value: str) -> float:
    return float(value.replace(",", ""))


def parse_salary(text: str) -> Optional[SalaryInfo]:
    """Parse salary text such as ``$120,000.00/yr - $163,000.00/yr`` or ``$120-130K``.

    A single value without a range is widened to ``max = min * 1.2``, except
    for the compact ``$130K`` form, which is taken as an exact figure.
    """
    if not text:
        return None
    wage_type = _wage_type(text)

    structured = re.search(r"\$([0-9,.]+)(?:/\w+)?\s*[-–]\s*\$([0-9,.]+)(?:/\w+)?", text)
    if structured:
        return SalaryInfo(_number(structured.group(1)), _number(structured.group(2)), wage_type)

    compact_range = re.search(r"\$(\d+)\s*[-–]\s*(\d+)K", text, re.IGNORECASE)
    if compact_range:
        return SalaryInfo(
            int(compact_range.group(1)) * 1000.0,
            int(compact_range.group(2)) * 1000.0,
            wage_type,
        )

    single_k = re.search(r"\$(\d+)K", text, re.IGNORECASE)
    if single_k:
        value = int(single_k.group(1)) * 1000.0
        return SalaryInfo(value, value, wage_type)

    general = re.search(r"\$([0-9,.]+)(?:K)?(?:\s*[-–]\s*\$?([0-9,.]+)(?:K)?)?", text, re.IGNORECASE)
    if not general:
        return None
    try:
        minimum = _number(general.group(1))
        maximum = _number(general.group(2)) if general.group(2) else minimum * 1.2
    except ValueError:
        return None
    if "k" in text.lower():
        if minimum < 1000:
            minimum *= 1000
        if maximum < 1000:
            maximum *= 1000
    return SalaryInfo(minimum, maximum, wage_type)


# ── Page parsing ──────────────────────────────────────────


def _first_text(soup: BeautifulSoup, *selectors: str) -> Optional[str]:
    for selector in selectors:
        node = soup.select_one(selector)
        if node is not None:
            text = re.sub(r"\s+", " ", node.get_text(" ", strip=True)).strip()
            if text:
                return text
    return None


def _criteria(soup: BeautifulSoup) -> dict[str, str]:
    criteria: dict[str, str] = {}
    for item in soup.select(".description__job-criteria-item"):
        if not isinstance(item, Tag):
            continue
        header = item.select_one(".description__job-criteria-subheader")
        value = item.select_one(".description__job-criteria-text")
        if header is not None and value is not None:
            criteria[header.get_text(strip=True).lower()] = value.get_text(" ", strip=True)
    return criteria


def normalize_employment_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    lowered = value.lower()
    for key, label in _EMPLOYMENT_TYPES.items():
        if key in lowered:
            return label
    return "Other"


def infer_location_type(location: Optional[str], description: Optional[str] = None) -> Optional[str]:
    """Remote / Hybrid / On-site from the location line (falling back to the description)."""
    for text in (location, description):
        if not text:
            continue
        lowered = text.lower()
        if "remote" in lowered:
            return "Remote"
        if "hybrid" in lowered:
            return "Hybrid"
    return "On-site" if location else None


def parse_posting(html: str) -> PostingDetails:
    """Extract posting fields from a LinkedIn guest posting page (or similar markup)."""
    soup = BeautifulSoup(html or "", "html.parser")

    title = _first_text(soup, ".top-card-layout__title", ".topcard__title", "h1")
    company = _first_text(soup, ".topcard__org-name-link", ".topcard__flavor a")
    location = _first_text(soup, ".topcard__flavor--bullet")
    description = _first_text(
        soup,
        ".description__text--rich",
        ".show-more-less-html__markup",
        ".description__text",
    )

    criteria = _criteria(soup)
    employment_type = normalize_employment_type(criteria.get("employment type"))

    salary_text = _first_text(soup, ".compensation__salary-range", ".salary.compensation__salary")
    if salary_text is None:
        for key, value in criteria.items():
            if "salary" in key or "pay" in key:
                salary_text = value
                break
    if salary_text is None and description:
        found = _SALARY_IN_TEXT.search(description)
        if found:
            salary_text = found.group(0)

    recruiter_name = _first_text(soup, ".message-the-recruiter .base-main-card__title")
    recruiter_role = _first_text(soup, ".message-the-recruiter .base-main-card__subtitle")

    return PostingDetails(
        title=title,
        company=company,
        location=location,
        location_type=infer_location_type(location, description),
        description=description,
        employment_type=employment_type,
        salary_text=salary_text,
        recruiter_name=recruiter_name,
        recruiter_role=recruiter_role,
    )
