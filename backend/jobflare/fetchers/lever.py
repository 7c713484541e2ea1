from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from jobflare.core.errors import DecodingError, InvalidURLError, NoJobsError
from jobflare.core.models import (
    Job,
    JobSource,
    apply_keyword_filters,
    classify_work_flexibility,
    from_epoch,
    including_remote,
    now_utc,
)
from jobflare.fetchers.base import FilterParams, JobFetcher, stamp_first_seen, title_case_slug

logger = logging.getLogger("fetchers.lever")

API_URL = "https://api.lever.co/v0/postings/{slug}"


def lever_slug(url: str) -> Optional[str]:
    parsed = urlparse(url or "")
    parts = [p for p in parsed.path.split("/") if p]
    host = (parsed.hostname or "").lower()
    if host.startswith("api.") and len(parts) >= 3 and parts[:2] == ["v0", "postings"]:
        return parts[2].lower()
    return parts[0].lower() if parts else None


class LeverFetcher(JobFetcher):
    source = JobSource.LEVER

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        slug = lever_slug(url or "")
        if not slug:
            raise InvalidURLError(url or "")
        return self.fetch_slug(slug, params)

    def fetch_slug(self, slug: str, params: FilterParams) -> List[Job]:
        tracking_key = f"lever_{slug}"
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        data = self.ctx.http.get_json(API_URL.format(slug=slug), params={"mode": "json"})
        if not isinstance(data, list):
            raise DecodingError("Lever response is not a list")
        if not data:
            raise NoJobsError(f"lever/{slug}")

        company = title_case_slug(slug)
        jobs = [j for j in (self._normalize(r, company) for r in data) if j]
        stamp_first_seen(jobs, stored, current_date)

        filtered = apply_keyword_filters(
            jobs, params.title_keywords, including_remote(params.location_keywords)
        )
        logger.info("[Lever] %s: fetched %s total, %s after filtering", slug, len(jobs), len(filtered))
        self.save_first_seen(filtered, tracking_key, current_date)
        return filtered

    def _normalize(self, raw: Dict[str, Any], company: str) -> Optional[Job]:
        if not isinstance(raw, dict):
            return None
        job_id = str(raw.get("id") or "").strip()
        title = (raw.get("text") or "").strip()
        hosted = (raw.get("hostedUrl") or "").strip()
        if not job_id or not title or not hosted:
            return None

        categories = raw.get("categories") or {}
        description = raw.get("descriptionPlain") or ""
        commitment = categories.get("commitment")
        return Job(
            id=f"lever-{job_id}",
            title=title,
            location=categories.get("location") or "Location not specified",
            posting_date=from_epoch(raw.get("createdAt")),
            url=hosted,
            description=description,
            work_site_flexibility=raw.get("workplaceType") or classify_work_flexibility(description),
            source=JobSource.LEVER,
            company_name=company,
            department=categories.get("team"),
            category=commitment,
        )
