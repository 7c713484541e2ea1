from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from jobflare.core.errors import DecodingError
from jobflare.core.models import Job, JobSource, classify_work_flexibility, now_utc, parse_iso
from jobflare.fetchers.base import FilterParams, JobFetcher, clean_html, stamp_first_seen
from jobflare.services.dedupe import merge_unique

logger = logging.getLogger("fetchers.amd")

API_URL = "https://careers.amd.com/api/jobs"
JOB_BASE_URL = "https://careers.amd.com/careers-home/jobs"
PAGE_SIZE = 20
MAX_PAGES = 20

_REGION_HINTS = (
    (("usa", "united states", "seattle", "bellevue", "california", "texas"), "US"),
    (("canada", "toronto"), "CA"),
    (("uk", "united kingdom", "london"), "GB"),
)


def region_code(location: str) -> Optional[str]:
    low = (location or "").lower()
    for hints, code in _REGION_HINTS:
        if any(h in low for h in hints):
            return code
    return None


class AMDFetcher(JobFetcher):
    """Built-in source: server-side search, plus a second pass for remote roles."""

    source = JobSource.AMD

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        tracking_key = self.source.display_name
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        keywords = " ".join(params.title_keywords)
        # The search takes one place; the first comma-separated entry wins.
        location = params.location_keywords[0] if params.location_keywords else None
        max_pages = max(1, min(int(params.max_pages), MAX_PAGES))

        jobs = self._search(keywords, location, max_pages)
        if "remote" not in (params.location or "").lower():
            jobs = merge_unique(jobs, self._search(keywords, "remote", max_pages))

        stamp_first_seen(jobs, stored, current_date)
        logger.info("[AMD] %s jobs", len(jobs))
        self.save_first_seen(jobs, tracking_key, current_date)
        return jobs

    def _search(self, keywords: str, location: Optional[str], max_pages: int) -> List[Job]:
        def fetch_page(page: int, offset: int) -> List[Job]:
            query: Dict[str, Any] = {
                "page": page + 1,
                "sortBy": "posted_date",
                "descending": "true",
                "internal": "false",
            }
            if keywords:
                query["keywords"] = keywords
            if location:
                query.update({"location": location, "woe": 7, "stretchUnit": "MILES", "stretch": 50})
                code = region_code(location)
                if code:
                    query["regionCode"] = code
            return parse_jobs_response(self.ctx.http.get_json(API_URL, params=query))

        return self.paginate(fetch_page, page_size=PAGE_SIZE, max_pages=max_pages)


def _location(d: Dict[str, Any]) -> str:
    parts = [p for p in (d.get("city"), d.get("state")) if p]
    if parts:
        return ", ".join(parts)
    name = d.get("location_name") or ""
    if not name:
        return "Location not specified"
    pieces = [p.strip() for p in name.split(",")]
    if len(pieces) >= 3:
        return f"{pieces[2]}, {pieces[1]}"
    return ", ".join(pieces)


def parse_jobs_response(data: Any) -> List[Job]:
    wrappers = data.get("jobs") if isinstance(data, dict) else None
    if not isinstance(wrappers, list):
        raise DecodingError("Missing field 'jobs' in AMD response")

    jobs: List[Job] = []
    for w in wrappers:
        d = w.get("data") if isinstance(w, dict) else None
        if not isinstance(d, dict) or not d.get("title") or not d.get("req_id"):
            continue
        description = clean_html(d.get("description") or "")
        if d.get("responsibilities"):
            description = f"{description}\n\n{clean_html(d['responsibilities'])}".strip()
        categories = d.get("category") or []
        jobs.append(
            Job(
                id=f"amd-{d['req_id']}",
                title=d["title"],
                location=_location(d),
                posting_date=parse_iso(d.get("posted_date")),
                url=f"{JOB_BASE_URL}/{d['req_id']}?lang=en-us",
                description=description,
                work_site_flexibility=classify_work_flexibility(description),
                source=JobSource.AMD,
                company_name="AMD",
                department=categories[0] if categories else None,
            )
        )
    return jobs
