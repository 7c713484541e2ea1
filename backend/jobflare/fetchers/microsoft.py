from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from jobflare.core.errors import APIError, DecodingError
from jobflare.core.models import Job, JobSource, compute_bump, now_utc
from jobflare.fetchers.base import FilterParams, JobFetcher, stamp_first_seen

logger = logging.getLogger("fetchers.microsoft")

SEARCH_URL = "https://apply.careers.microsoft.com/api/pcsx/search"
JOB_BASE_URL = "https://apply.careers.microsoft.com"
PAGE_SIZE = 10
MAX_PAGES_PER_SEARCH = 3
DEFAULT_LOCATION = "United States"

_WORK_OPTION_LABELS = {
    "onsite": "On-site",
    "fully on-site": "On-site",
    "remote": "Remote",
    "hybrid": "Hybrid",
}


def display_location(primary: str, work_option: Optional[str]) -> str:
    if not work_option:
        return primary
    label = _WORK_OPTION_LABELS.get(work_option.lower())
    if label:
        return f"{primary} ({label})"
    if "days" in work_option or "week" in work_option:
        return f"{primary} (Hybrid: {work_option})"
    return primary


class MicrosoftFetcher(JobFetcher):
    """Built-in source: searches run per (title keyword, location) combination."""

    source = JobSource.MICROSOFT

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        tracking_key = self.source.display_name
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        titles = [t for t in params.title_keywords if t] or [""]
        locations = [loc for loc in params.location_keywords if loc] or [DEFAULT_LOCATION]
        max_pages = max(1, min(int(params.max_pages), MAX_PAGES_PER_SEARCH))

        jobs: List[Job] = []
        seen = set()
        for title in titles:
            for location in locations:
                for job in self._search(title, location, max_pages):
                    if job.id in seen:
                        continue
                    seen.add(job.id)
                    jobs.append(job)

        stamp_first_seen(jobs, stored, current_date)
        bumped = sum(1 for j in jobs if j.was_bumped)
        logger.info("[Microsoft] %s jobs across %s searches (%s bumped)", len(jobs), len(titles) * len(locations), bumped)
        self.save_first_seen(jobs, tracking_key, current_date)
        return jobs

    def _search(self, title: str, location: str, max_pages: int) -> List[Job]:
        total: Dict[str, Optional[int]] = {"count": None}

        def fetch_page(page: int, offset: int) -> List[Job]:
            if total["count"] is not None and offset >= total["count"]:
                return []
            query: Dict[str, Any] = {
                "domain": "microsoft.com",
                "start": offset,
                "sort_by": "timestamp",
                "filter_distance": 160,
                "includeRemote": 1,
            }
            if title:
                query["query"] = title
            if location:
                query["location"] = location
            data = self.ctx.http.get_json(SEARCH_URL, params=query)
            page_jobs, count = parse_search_response(data)
            if page == 0:
                total["count"] = count
            return page_jobs

        return self.paginate(fetch_page, page_size=PAGE_SIZE, max_pages=max_pages)


def parse_search_response(data: Any) -> Tuple[List[Job], int]:
    if not isinstance(data, dict):
        raise DecodingError("Microsoft response is not an object")
    if data.get("status") != 200:
        err = data.get("error") or {}
        raise APIError((err.get("message") if isinstance(err, dict) else None) or "Unknown error")

    body = data.get("data")
    if not isinstance(body, dict) or not isinstance(body.get("positions"), list):
        raise DecodingError("Missing field 'positions' in Microsoft response")

    jobs: List[Job] = []
    for pos in body["positions"]:
        if not isinstance(pos, dict) or not pos.get("name") or not pos.get("displayJobId"):
            continue
        if pos.get("postedTs") is None:
            continue

        posting_date, original_date, was_bumped = compute_bump(pos.get("postedTs"), pos.get("creationTs"))
        locations = pos.get("locations") or []
        primary = locations[0] if locations else "Location not specified"
        position_url = pos.get("positionUrl") or ""
        url = f"{JOB_BASE_URL}{position_url}" if position_url else f"{JOB_BASE_URL}/careers/job/{pos.get('id')}"

        jobs.append(
            Job(
                id=f"microsoft-{pos.get('id')}-{pos['displayJobId']}",
                title=pos["name"],
                location=display_location(primary, pos.get("workLocationOption")),
                posting_date=posting_date,
                url=url,
                description="",
                work_site_flexibility=pos.get("workLocationOption") or "",
                source=JobSource.MICROSOFT,
                company_name="Microsoft",
                department=pos.get("department"),
                original_posting_date=original_date,
                was_bumped=was_bumped,
            )
        )
    return jobs, int(body.get("count") or 0)
