from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from jobflare.core.errors import APIError, DecodingError
from jobflare.core.models import Job, JobSource, apply_keyword_filters, classify_work_flexibility, now_utc
from jobflare.fetchers.base import FilterParams, JobFetcher, stamp_first_seen
from jobflare.services.dedupe import merge_unique

logger = logging.getLogger("fetchers.tiktok")

SEARCH_URL = "https://api.lifeattiktok.com/api/v1/public/supplier/search/job/posts"
JOB_BASE_URL = "https://lifeattiktok.com/search"
PAGE_SIZE = 12
REMOTE_MAX_PAGES = 5

_HEADERS = {
    "Accept": "*/*",
    "origin": "https://lifeattiktok.com",
    "referer": "https://lifeattiktok.com/",
    "website-path": "tiktok",
}


class TikTokFetcher(JobFetcher):
    """Built-in source: keyword search with offset paging, plus a remote-keyword pass.

    The API filters places by internal location codes, so the location filter
    is applied to the returned postings instead.
    """

    source = JobSource.TIKTOK

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        tracking_key = self.source.display_name
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        keywords = params.title_keywords
        jobs = apply_keyword_filters(self._search(keywords, params.max_pages), [], params.location_keywords)

        wants_remote = "remote" in params.location.lower() or any("remote" in k for k in keywords)
        if not wants_remote:
            remote = self._search(keywords + ["remote"], min(params.max_pages, REMOTE_MAX_PAGES))
            jobs = merge_unique(jobs, remote)

        stamp_first_seen(jobs, stored, current_date)
        logger.info("[TikTok] %s jobs", len(jobs))
        self.save_first_seen(jobs, tracking_key, current_date)
        return jobs

    def _search(self, keywords: List[str], max_pages: int) -> List[Job]:
        def fetch_page(page: int, offset: int) -> List[Job]:
            body = {
                "recruitment_id_list": ["1"],
                "job_category_id_list": [],
                "subject_id_list": [],
                "location_code_list": [],
                "keyword": " ".join(keywords),
                "limit": PAGE_SIZE,
                "offset": offset,
            }
            return parse_search_response(self.ctx.http.post_json(SEARCH_URL, body, headers=_HEADERS))

        return self.paginate(fetch_page, page_size=PAGE_SIZE, max_pages=max_pages)


def _location(city: Any) -> str:
    parts: List[str] = []
    while isinstance(city, dict):
        if city.get("en_name"):
            parts.append(city["en_name"])
        city = city.get("parent")
    return ", ".join(parts) or "Location not specified"


def parse_search_response(data: Any) -> List[Job]:
    if not isinstance(data, dict):
        raise DecodingError("TikTok response is not an object")
    if data.get("code") != 0:
        raise APIError(f"TikTok API returned error code {data.get('code')}")
    posts = (data.get("data") or {}).get("job_post_list")
    if not isinstance(posts, list):
        raise DecodingError("Missing field 'job_post_list' in TikTok response")

    jobs: List[Job] = []
    for raw in posts:
        if not isinstance(raw, dict) or not raw.get("id") or not raw.get("title"):
            continue
        description = raw.get("description") or ""
        if raw.get("requirement"):
            description = f"{description}\n\nRequirements:\n{raw['requirement']}"
        category: Dict[str, Any] = raw.get("job_category") or {}
        jobs.append(
            Job(
                id=f"tiktok-{raw['id']}",
                title=raw["title"],
                location=_location(raw.get("city_info")),
                posting_date=None,
                url=f"{JOB_BASE_URL}/{raw['id']}",
                description=description,
                work_site_flexibility=classify_work_flexibility(raw.get("description") or ""),
                source=JobSource.TIKTOK,
                company_name="TikTok",
                department=category.get("en_name"),
                category=category.get("i18n_name"),
            )
        )
    return jobs
