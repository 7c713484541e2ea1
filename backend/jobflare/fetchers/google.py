from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from jobflare.core.models import Job, JobSource, normalize_whitespace, now_utc
from jobflare.fetchers.base import FilterParams, JobFetcher, stamp_first_seen

logger = logging.getLogger("fetchers.google")

SEARCH_URL = "https://www.google.com/about/careers/applications/jobs/results"
APPLICATIONS_BASE_URL = "https://www.google.com/about/careers/applications/"
MAX_JOBS = 100

_LEVELS = ("Advanced", "Entry", "Mid")


class GoogleFetcher(JobFetcher):
    """Built-in source: scrapes the server-rendered results page (first page only)."""

    source = JobSource.GOOGLE

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        tracking_key = self.source.display_name
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        query: Dict[str, Any] = {"sort_by": "date"}
        if params.title.strip():
            query["q"] = params.title.strip()
        if params.location.strip():
            query["location"] = params.location.strip()

        r = self.ctx.http.get(SEARCH_URL, params=query)
        jobs = parse_results_page(r.text or "")
        stamp_first_seen(jobs, stored, current_date)

        logger.info("[Google] %s jobs on the results page", len(jobs))
        self.save_first_seen(jobs, tracking_key, current_date)
        return jobs


def _text(node: Any) -> Optional[str]:
    if node is None:
        return None
    text = normalize_whitespace(node.get_text(" "))
    return text or None


def parse_results_page(html: str) -> List[Job]:
    soup = BeautifulSoup(html or "", "html.parser")
    jobs: List[Job] = []
    for li in soup.select("li.lLd3Je[ssk]")[:MAX_JOBS]:
        title = _text(li.select_one("h3.QJPWVe"))
        if not title:
            continue

        href = ""
        link = li.select_one("a.WpHeLc[href]")
        if link is not None:
            href = str(link.get("href") or "")
        if href.startswith("http"):
            url = href
        elif href:
            url = APPLICATIONS_BASE_URL + href.lstrip("/")
        else:
            url = "https://careers.google.com"

        level = next((lv for lv in _LEVELS if li.find("span", class_="wVSTAb", string=lv)), None)

        description = ""
        heading = li.find("h4", string="Minimum qualifications")
        if heading is not None:
            quals = heading.find_next_sibling("ul")
            description = _text(quals) or ""

        jobs.append(
            Job(
                id=f"google-{li['ssk']}",
                title=title,
                location=_text(li.select_one("span.r0wTof")) or "Location not specified",
                posting_date=None,
                url=url,
                description=description,
                source=JobSource.GOOGLE,
                company_name="Google",
                category=level,
            )
        )
    return jobs
