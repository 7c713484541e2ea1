from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from jobflare.core.errors import DecodingError, InvalidURLError
from jobflare.core.models import (
    Job,
    JobSource,
    apply_keyword_filters,
    classify_work_flexibility,
    including_remote,
    now_utc,
    parse_iso,
)
from jobflare.fetchers.base import FilterParams, JobFetcher, clean_html, stamp_first_seen, title_case_slug

logger = logging.getLogger("fetchers.greenhouse")

API_URL = "https://boards-api.greenhouse.io/v1/boards/{slug}/jobs"

# Path parts that show up on Greenhouse hosts but are not board slugs.
_RESERVED_SLUGS = {"embed", "jobs", "job", "departments", "department", "board", "boards", "v1", "job_board"}


def board_slug(url: str) -> Optional[str]:
    parsed = urlparse(url or "")
    host = (parsed.hostname or "").lower()
    parts = [p for p in parsed.path.split("/") if p]
    if host.startswith("boards-api.") and "boards" in parts:
        idx = parts.index("boards")
        return parts[idx + 1].lower() if idx + 1 < len(parts) else None
    if host.endswith("greenhouse.io") and host.startswith(("boards.", "job-boards.")):
        # Embed URLs carry the board in ?for=; their path is only the widget.
        for_slug = [v for v in parse_qs(parsed.query).get("for", []) if v.strip()]
        if for_slug:
            return for_slug[0].strip().lower()
        for part in parts:
            if part.lower() not in _RESERVED_SLUGS:
                return part.lower()
        return None
    if host.endswith("greenhouse.io"):
        return host.split(".")[0]
    return parts[0].lower() if parts else None


class GreenhouseFetcher(JobFetcher):
    source = JobSource.GREENHOUSE

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        slug = board_slug(url or "")
        if not slug:
            raise InvalidURLError(url or "")
        return self.fetch_slug(slug, params)

    def fetch_slug(self, slug: str, params: FilterParams) -> List[Job]:
        tracking_key = f"greenhouse_{slug}"
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        data = self.ctx.http.get_json(API_URL.format(slug=slug), params={"content": "true"})
        raw_jobs = data.get("jobs") if isinstance(data, dict) else None
        if not isinstance(raw_jobs, list):
            raise DecodingError("Greenhouse response has no 'jobs' list")

        company = title_case_slug(slug)
        jobs = [j for j in (self._normalize(r, company) for r in raw_jobs) if j]
        stamp_first_seen(jobs, stored, current_date)

        filtered = apply_keyword_filters(
            jobs, params.title_keywords, including_remote(params.location_keywords)
        )
        logger.info("[Greenhouse] %s: fetched %s total, %s after filtering", slug, len(jobs), len(filtered))
        self.save_first_seen(filtered, tracking_key, current_date)
        return filtered

    def _normalize(self, raw: Dict[str, Any], company: str) -> Optional[Job]:
        if not isinstance(raw, dict):
            return None
        title = (raw.get("title") or "").strip()
        url = (raw.get("absolute_url") or "").strip()
        if not title or not url or raw.get("id") is None:
            return None

        loc_obj = raw.get("location")
        location = ""
        if isinstance(loc_obj, dict):
            location = (loc_obj.get("name") or "").strip()
        elif isinstance(loc_obj, str):
            location = loc_obj.strip()

        department = None
        departments = raw.get("departments") or []
        if isinstance(departments, list) and departments and isinstance(departments[0], dict):
            department = departments[0].get("name")

        description = clean_html(raw.get("content") or "")
        return Job(
            id=f"gh-{raw['id']}",
            title=title,
            location=location or "Not specified",
            posting_date=parse_iso(raw.get("updated_at")) or now_utc(),
            url=url,
            description=description,
            work_site_flexibility=classify_work_flexibility(description),
            source=JobSource.GREENHOUSE,
            company_name=company,
            department=department,
        )
