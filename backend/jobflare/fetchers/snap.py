from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from jobflare.core.errors import DecodingError
from jobflare.core.models import Job, JobSource, apply_keyword_filters, now_utc
from jobflare.fetchers.base import FilterParams, JobFetcher, clean_html, stamp_first_seen

logger = logging.getLogger("fetchers.snap")

API_URL = "https://careers.snap.com/api/jobs"
JOB_BASE_URL = "https://careers.snap.com/jobs"


class SnapFetcher(JobFetcher):
    """Built-in source: the API returns every opening at once; filters run locally."""

    source = JobSource.SNAP

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        tracking_key = self.source.display_name
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        data = self.ctx.http.get_json(API_URL, params={"location": "", "role": "", "team": "", "type": ""})
        jobs = parse_jobs_response(data)
        stamp_first_seen(jobs, stored, current_date)

        filtered = apply_keyword_filters(jobs, params.title_keywords, params.location_keywords)
        logger.info("[Snap] fetched %s total, %s after filtering", len(jobs), len(filtered))
        self.save_first_seen(filtered, tracking_key, current_date)
        return filtered


def _location(src: Dict[str, Any]) -> str:
    if src.get("primary_location"):
        return src["primary_location"]
    names = [
        o.get("name") or o.get("location")
        for o in (src.get("offices") or [])
        if isinstance(o, dict) and (o.get("name") or o.get("location"))
    ]
    return " / ".join(names) if names else "Location not specified"


def parse_jobs_response(data: Any) -> List[Job]:
    body = data.get("body") if isinstance(data, dict) else None
    if not isinstance(body, list):
        raise DecodingError("Missing field 'body' in Snap response")

    jobs: List[Job] = []
    for hit in body:
        if not isinstance(hit, dict) or not hit.get("_id") or not isinstance(hit.get("_source"), dict):
            continue
        src = hit["_source"]
        title = (src.get("title") or "").strip()
        if not title:
            continue
        offices = [o for o in (src.get("offices") or []) if isinstance(o, dict)]
        remote = any("remote" in (o.get("name") or "").lower() for o in offices)
        jobs.append(
            Job(
                id=f"snap-{hit['_id']}",
                title=title,
                location=_location(src),
                posting_date=None,
                url=src.get("absolute_url") or f"{JOB_BASE_URL}/{hit['_id']}",
                description=clean_html(src.get("jobDescription") or ""),
                work_site_flexibility="Remote" if remote else None,
                source=JobSource.SNAP,
                company_name="Snap Inc.",
                department=src.get("departments"),
                category=src.get("role"),
            )
        )
    return jobs
