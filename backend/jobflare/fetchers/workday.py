"""
Workday "cxs" job search.

Workday boards live at {company}.{wdN}.myworkdayjobs.com/{site}. The JSON
endpoint wants the session cookies and CSRF token from a plain page load, so
a session is established once per board and reused.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from jobflare.core.errors import DecodingError, InvalidURLError
from jobflare.core.models import Job, JobSource, apply_keyword_filters, now_utc
from jobflare.fetchers.base import FilterParams, JobFetcher, stamp_first_seen, title_case_slug

logger = logging.getLogger("fetchers.workday")

PAGE_SIZE = 20
MAX_PAGES = 5

_RE_POSTED_DAYS = re.compile(r"posted\s+(\d+)\+?\s+days?", re.I)


@dataclass(frozen=True)
class WorkdayBoard:
    company: str
    instance: str
    site: str

    @property
    def base_url(self) -> str:
        return f"https://{self.company}.{self.instance}.myworkdayjobs.com"

    @property
    def page_url(self) -> str:
        return f"{self.base_url}/{self.site}"

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/wday/cxs/{self.company}/{self.site}/jobs"

    @property
    def cache_key(self) -> str:
        return f"{self.company}/{self.instance}/{self.site}"


@dataclass
class WorkdaySession:
    cookies: str
    csrf_token: str


_LOCALE = re.compile(r"^[a-z]{2}-[A-Z]{2}$")


def parse_board(url: str) -> WorkdayBoard:
    parsed = urlparse(url or "")
    host_parts = (parsed.hostname or "").split(".")
    if len(host_parts) < 3 or not host_parts[1].startswith("wd"):
        raise InvalidURLError(url)

    company, instance = host_parts[0], host_parts[1]
    parts = [p for p in parsed.path.split("/") if p]
    if "cxs" in parts:
        idx = parts.index("cxs")
        if idx + 2 < len(parts):
            return WorkdayBoard(company, instance, parts[idx + 2])
    parts = [p for p in parts if not _LOCALE.match(p)]
    if not parts:
        raise InvalidURLError(url)
    return WorkdayBoard(company, instance, parts[0])


def parse_posted_on(text: str, now=None):
    now = now or now_utc()
    low = (text or "").lower()
    if "today" in low:
        return now
    if "yesterday" in low:
        return now - timedelta(days=1)
    m = _RE_POSTED_DAYS.search(low)
    if m:
        return now - timedelta(days=int(m.group(1)))
    return None


def _facet_values(values: List[Any]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for v in values or []:
        if not isinstance(v, dict):
            continue
        if isinstance(v.get("values"), list):
            out.extend(_facet_values(v["values"]))
        elif v.get("id") and v.get("descriptor"):
            out.append(v)
    return out


class WorkdayFetcher(JobFetcher):
    source = JobSource.WORKDAY

    def __init__(self, ctx):
        super().__init__(ctx)
        self._lock = threading.Lock()
        self._sessions: Dict[str, WorkdaySession] = {}
        self._locations: Dict[str, List[Dict[str, Any]]] = {}

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        board = parse_board(url or "")
        tracking_key = f"workday_{board.company}"
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        session = self._establish_session(board)
        initial = self._fetch_page(board, session, 0, "", [])
        self._cache_locations(board, initial)

        location_ids = self._location_ids(board, params.location_keywords)
        search_text = " ".join(params.title_keywords)

        def fetch_page(page: int, offset: int) -> List[Any]:
            if page == 0 and not search_text and not location_ids:
                data = initial
            else:
                data = self._fetch_page(board, session, offset, search_text, location_ids)
            return data.get("jobPostings") or []

        postings = self.paginate(fetch_page, page_size=PAGE_SIZE, max_pages=MAX_PAGES)
        jobs = [j for j in (self._normalize(p, board) for p in postings) if j]
        stamp_first_seen(jobs, stored, current_date)

        # Facet filtering happened upstream when ids were found.
        if params.location_keywords and not location_ids:
            jobs = apply_keyword_filters(jobs, [], params.location_keywords)

        logger.info("[Workday] %s: %s jobs", board.cache_key, len(jobs))
        self.save_first_seen(jobs, tracking_key, current_date)
        return jobs

    def _establish_session(self, board: WorkdayBoard) -> WorkdaySession:
        with self._lock:
            cached = self._sessions.get(board.cache_key)
        if cached:
            return cached

        r = self.ctx.http.get(board.page_url)
        jar = getattr(r, "cookies", None) or {}
        items = jar.items() if hasattr(jar, "items") else []
        pairs = [f"{k}={v}" for k, v in items]
        session = WorkdaySession(cookies="; ".join(pairs), csrf_token=jar.get("CALYPSO_CSRF_TOKEN") or "")
        with self._lock:
            self._sessions[board.cache_key] = session
        return session

    def _fetch_page(
        self,
        board: WorkdayBoard,
        session: WorkdaySession,
        offset: int,
        search_text: str,
        location_ids: List[str],
    ) -> Dict[str, Any]:
        body = {
            "appliedFacets": {"locations": location_ids} if location_ids else {},
            "limit": PAGE_SIZE,
            "offset": offset,
            "searchText": search_text,
        }
        headers = {"Origin": board.base_url, "Referer": board.page_url}
        if session.cookies:
            headers["Cookie"] = session.cookies
        if session.csrf_token:
            headers["X-CALYPSO-CSRF-TOKEN"] = session.csrf_token

        data = self.ctx.http.post_json(board.api_url, body, headers=headers)
        if not isinstance(data, dict) or not isinstance(data.get("jobPostings", []), list):
            raise DecodingError("Unexpected Workday response shape")
        return data

    def _cache_locations(self, board: WorkdayBoard, data: Dict[str, Any]) -> None:
        for facet in data.get("facets") or []:
            if not isinstance(facet, dict):
                continue
            if facet.get("facetParameter") in ("locations", "locationMainGroup"):
                values = _facet_values(facet.get("values") or [])
                if values:
                    with self._lock:
                        self._locations[board.cache_key] = values
                    logger.debug("[Workday] cached %s locations for %s", len(values), board.company)
                return

    def _location_ids(self, board: WorkdayBoard, keywords: List[str]) -> List[str]:
        if not keywords:
            return []
        with self._lock:
            cached = list(self._locations.get(board.cache_key) or [])
        ids: List[str] = []
        for kw in keywords:
            for loc in cached:
                if kw in str(loc.get("descriptor", "")).lower() and loc["id"] not in ids:
                    ids.append(loc["id"])
        return ids

    def _normalize(self, raw: Dict[str, Any], board: WorkdayBoard) -> Optional[Job]:
        if not isinstance(raw, dict):
            return None
        title = (raw.get("title") or "").strip()
        path = raw.get("externalPath") or ""
        bullets = raw.get("bulletFields") or []
        if not title or not path:
            return None
        native_id = bullets[0] if bullets else path.rstrip("/").rsplit("_", 1)[-1]

        return Job(
            id=f"workday-{native_id}",
            title=title,
            location=raw.get("locationsText") or "",
            posting_date=parse_posted_on(raw.get("postedOn") or ""),
            url=f"{board.base_url}/en-US/{board.site}{path}",
            description="",
            work_site_flexibility=raw.get("remoteType"),
            source=JobSource.WORKDAY,
            company_name=title_case_slug(board.company),
            category=bullets[1] if len(bullets) > 1 else None,
        )
