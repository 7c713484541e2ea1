from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, List, Optional

from jobflare.core.errors import DecodingError
from jobflare.core.models import Job, JobSource, apply_keyword_filters, now_utc, parse_iso
from jobflare.fetchers.base import FilterParams, JobFetcher, stamp_first_seen

logger = logging.getLogger("fetchers.apple")

SEARCH_URL = "https://jobs.apple.com/api/v1/search"
CSRF_URL = "https://jobs.apple.com/api/v1/CSRFToken"
JOB_BASE_URL = "https://jobs.apple.com/en-us/details"
PAGE_SIZE = 20
CSRF_TTL_S = 600

WASHINGTON_FILTER = "postLocation-state1000"
USA_FILTER = "postLocation-USA"


def location_filters(location: str) -> List[str]:
    low = (location or "").lower()
    if "washington" in low or "seattle" in low:
        return [WASHINGTON_FILTER]
    return [USA_FILTER]


class AppleFetcher(JobFetcher):
    """Built-in source: one keyword query against the jobs.apple.com search API."""

    source = JobSource.APPLE

    def __init__(self, ctx, clock=time.monotonic):
        super().__init__(ctx)
        self.clock = clock
        self._token: Optional[str] = None
        self._token_expires = 0.0
        self._token_lock = threading.Lock()

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        tracking_key = self.source.display_name
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        query = " ".join(params.title_keywords)
        filters = location_filters(params.location)

        def fetch_page(page: int, offset: int) -> List[Job]:
            body = {
                "query": query,
                "filters": {"locations": filters},
                "page": page + 1,
                "locale": "en-us",
                "sort": "newest",
                "format": {"longDate": "MMMM D, YYYY", "mediumDate": "MMM D, YYYY"},
            }
            data = self.ctx.http.post_json(SEARCH_URL, body, headers=self._headers())
            return parse_search_response(data)

        jobs = self.paginate(fetch_page, page_size=PAGE_SIZE, max_pages=params.max_pages)
        stamp_first_seen(jobs, stored, current_date)

        filtered = apply_keyword_filters(jobs, params.title_keywords, params.location_keywords)
        logger.info("[Apple] fetched %s total, %s after filtering", len(jobs), len(filtered))
        self.save_first_seen(filtered, tracking_key, current_date)
        return filtered

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "*/*",
            "browserlocale": "en-us",
            "locale": "en_US",
            "x-apple-csrf-token": self.csrf_token(),
            "origin": "https://jobs.apple.com",
        }

    def csrf_token(self) -> str:
        """Search calls need a CSRF token; one token is reused for ten minutes."""
        with self._token_lock:
            if self._token and self.clock() < self._token_expires:
                return self._token
            r = self.ctx.http.get(CSRF_URL, accept="*/*")
            token = (r.text or "").strip()
            if not token:
                raise DecodingError("Empty CSRF token from Apple")
            self._token = token
            self._token_expires = self.clock() + CSRF_TTL_S
            return token


def _location(raw: Dict[str, Any]) -> str:
    locations = raw.get("locations") or []
    first = locations[0] if locations and isinstance(locations[0], dict) else {}
    parts = [first.get("name") or ""]
    country = first.get("countryName") or ""
    if country and country != "United States of America":
        parts.append(country)
    text = ", ".join(p for p in parts if p)
    return text or "Location not specified"


def parse_search_response(data: Any) -> List[Job]:
    res = data.get("res") if isinstance(data, dict) else None
    if not isinstance(res, dict) or not isinstance(res.get("searchResults"), list):
        raise DecodingError("Missing field 'searchResults' in Apple response")

    jobs: List[Job] = []
    for raw in res["searchResults"]:
        if not isinstance(raw, dict) or not raw.get("postingTitle") or not raw.get("positionId"):
            continue
        posted = parse_iso(raw.get("postDateInGMT"))
        team = (raw.get("team") or {}).get("teamName") if isinstance(raw.get("team"), dict) else None
        jobs.append(
            Job(
                id=f"apple-{raw['positionId']}",
                title=raw["postingTitle"],
                location=_location(raw),
                posting_date=posted,
                url=f"{JOB_BASE_URL}/{raw['positionId']}/{raw.get('transformedPostingTitle') or ''}",
                description=raw.get("jobSummary") or "",
                work_site_flexibility="Remote" if raw.get("homeOffice") else None,
                source=JobSource.APPLE,
                company_name="Apple",
                department=team,
                category=team,
                original_posting_date=posted,
            )
        )
    return jobs
