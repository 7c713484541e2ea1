"""
Fetcher contract and shared helpers.

A fetcher turns filter parameters (and, for hosted boards, a board URL) into
normalized Job records or raises a FetchError. Pagination is strictly
sequential; any page error aborts the whole fetch so a partial result never
reaches the orchestrator.
"""

from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from bs4 import BeautifulSoup

from jobflare.core.errors import NotImplementedSourceError
from jobflare.core.http import HttpClient
from jobflare.core.models import Job, JobSource, now_utc, parse_filter_keywords
from jobflare.services.tracking import JobTrackingStore

logger = logging.getLogger("fetchers")

ENGINE_RESULT_CAP = 5000


@dataclass
class FilterParams:
    title: str = ""
    location: str = ""
    max_pages: int = 5

    @property
    def title_keywords(self) -> List[str]:
        return parse_filter_keywords(self.title)

    @property
    def location_keywords(self) -> List[str]:
        return parse_filter_keywords(self.location)


@dataclass
class FetchContext:
    """Collaborators every fetcher shares."""

    http: HttpClient
    tracking: Optional[JobTrackingStore] = None
    page_delay_s: float = 0.3
    max_results_cap: int = ENGINE_RESULT_CAP
    tracking_retention_days: int = 30
    sleep: Callable[[float], None] = field(default=time.sleep)


class JobFetcher:
    source: JobSource = JobSource.UNKNOWN

    def __init__(self, ctx: FetchContext):
        self.ctx = ctx

    @property
    def name(self) -> str:
        return self.source.display_name

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        raise NotImplementedError

    # -------------------------
    # Tracking
    # -------------------------

    def load_first_seen(self, tracking_key: str) -> Dict[str, datetime]:
        if self.ctx.tracking is None:
            return {}
        return self.ctx.tracking.load(tracking_key)

    def save_first_seen(self, jobs: List[Job], tracking_key: str, current_date: datetime) -> None:
        if self.ctx.tracking is None:
            return
        self.ctx.tracking.save(
            jobs,
            tracking_key,
            current_date=current_date,
            retention_days=self.ctx.tracking_retention_days,
        )

    # -------------------------
    # Pagination
    # -------------------------

    def paginate(
        self,
        fetch_page: Callable[[int, int], List[Any]],
        *,
        page_size: int,
        max_pages: int,
    ) -> List[Any]:
        """Call fetch_page(page_index, offset) until a short page, max_pages or the cap."""
        cap = max(1, int(self.ctx.max_results_cap))
        out: List[Any] = []
        for page in range(max(1, int(max_pages))):
            items = fetch_page(page, page * page_size)
            out.extend(items)
            logger.debug("[%s] page %s -> %s items (total %s)", self.name, page + 1, len(items), len(out))
            if len(items) < page_size:
                break
            if len(out) >= cap:
                logger.info("[%s] result cap %s reached", self.name, cap)
                break
            if page + 1 < max_pages:
                self.ctx.sleep(self.ctx.page_delay_s)
        return out[:cap]


class UnsupportedFetcher(JobFetcher):
    """Recognised source without a dedicated fetcher."""

    def __init__(self, ctx: FetchContext, source: JobSource):
        super().__init__(ctx)
        self.source = source

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        raise NotImplementedSourceError(self.source.display_name)


def clean_html(raw: str) -> str:
    if not raw:
        return ""
    text = BeautifulSoup(html.unescape(raw), "html.parser").get_text(" ")
    return " ".join(text.split())


def stamp_first_seen(jobs: List[Job], stored: Dict[str, datetime], current_date: Optional[datetime] = None) -> List[Job]:
    current_date = current_date or now_utc()
    for job in jobs:
        job.first_seen_date = stored.get(job.id, current_date)
    return jobs


def title_case_slug(slug: str) -> str:
    return " ".join(p.capitalize() for p in (slug or "").replace("_", "-").split("-") if p)
