"""HTTP fetcher for public job-posting pages."""

from __future__ import annotations

import httpx
import structlog

from job_tracker.enrichment.parser import PostingDetails, guest_posting_url, parse_posting
from job_tracker.enrichment.settings import EnrichmentSettings
from job_tracker.errors import EnrichmentFetchError

logger = structlog.get_logger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


class PostingFetcher:
    """Fetches and parses one posting per call.

    Every failure mode (timeout, transport error, too many redirects,
    non-2xx status) surfaces as :class:`EnrichmentFetchError`.
    """

    def __init__(self, settings: EnrichmentSettings, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(settings.request_timeout),
            follow_redirects=True,
            max_redirects=settings.max_redirects,
            headers=BROWSER_HEADERS,
        )

    def close(self) -> None:
        self._client.close()

    def fetch(self, url: str) -> PostingDetails:
        target = guest_posting_url(url)
        try:
            response = self._client.get(target)
        except httpx.TimeoutException as exc:
            raise EnrichmentFetchError(f"Timed out fetching {target}", url=url) from exc
        except httpx.TooManyRedirects as exc:
            raise EnrichmentFetchError(f"Too many redirects fetching {target}", url=url) from exc
        except httpx.HTTPError as exc:
            raise EnrichmentFetchError(f"Request to {target} failed: {exc}", url=url) from exc

        if not response.is_success:
            raise EnrichmentFetchError(
                f"{target} returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        details = parse_posting(response.text)
        logger.debug(
            "posting_fetched",
            url=target,
            status_code=response.status_code,
            has_description=bool(details.description),
        )
        return details
