"""
HTML and JSON extraction helpers for the detection cascade.

Everything here is a pure function of the fetched document: embedded ATS link
discovery, schema.org JobPosting parsing, __NEXT_DATA__ walking and anchor
pattern scanning. Nothing performs network I/O.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup

from jobflare.core.models import (
    Job,
    JobSource,
    classify_work_flexibility,
    normalize_whitespace,
    now_utc,
    parse_iso,
    synthetic_id,
)
from jobflare.fetchers.base import clean_html

logger = logging.getLogger("detection.extract")

# Regex scans do not need the full document.
_MAX_SCAN_CHARS = 400_000

# -------------------------
# Embedded ATS links
# -------------------------

_URL_TAIL = r"[^\s\"'<>\\)]*"

_ATS_PATTERNS = [
    ("workday", re.compile(r"https?://[a-z0-9-]+\.wd\d+\.myworkdayjobs\.com/" + _URL_TAIL, re.I)),
    ("greenhouse", re.compile(r"https?://boards-api\.greenhouse\.io/v1/boards/[a-z0-9-]+", re.I)),
    ("greenhouse", re.compile(r"https?://(?:boards|job-boards)\.greenhouse\.io/" + _URL_TAIL, re.I)),
    ("lever", re.compile(r"https?://(?:jobs|api)\.lever\.co/" + _URL_TAIL, re.I)),
    ("ashby", re.compile(r"https?://jobs\.ashbyhq\.com/" + _URL_TAIL, re.I)),
    ("workable", re.compile(r"https?://apply\.workable\.com/[a-z0-9-]+", re.I)),
    ("smartrecruiters", re.compile(r"https?://(?:jobs|careers)\.smartrecruiters\.com/[a-z0-9-]+", re.I)),
    ("jobvite", re.compile(r"https?://jobs\.jobvite\.com/[a-z0-9-]+", re.I)),
]

_RE_UUID_TAIL = re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}/?$", re.I)
_RE_WORKDAY_TAIL = re.compile(r"/(?:job|details)/.*$|/apply/?$", re.I)
_GH_RESERVED = {"embed", "jobs", "job", "job_board", "departments", "department", "v1", "boards"}


def normalize_ats_url(url: str) -> Optional[str]:
    """Reduce a discovered ATS link to its board root; None when it is not a board."""
    url = (url or "").strip().rstrip(".,;")
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    parts = [p for p in parsed.path.split("/") if p]

    if "myworkdayjobs.com" in host:
        path = _RE_WORKDAY_TAIL.sub("", parsed.path).rstrip("/")
        return f"https://{host}{path}" if path else None

    if "greenhouse.io" in host:
        slug = (parse_qs(parsed.query).get("for") or [None])[0]
        if not slug and host.startswith("boards-api.") and "boards" in parts:
            idx = parts.index("boards")
            slug = parts[idx + 1] if idx + 1 < len(parts) else None
        if not slug:
            slug = next((p for p in parts if p.lower() not in _GH_RESERVED), None)
        return f"https://boards.greenhouse.io/{slug.lower()}" if slug else None

    if "lever.co" in host:
        if host.startswith("api.") and len(parts) >= 3:
            return f"https://jobs.lever.co/{parts[2].lower()}"
        return f"https://jobs.lever.co/{parts[0].lower()}" if parts else None

    if "ashbyhq.com" in host:
        path = _RE_UUID_TAIL.sub("", parsed.path).rstrip("/")
        slug = [p for p in path.split("/") if p]
        return f"https://jobs.ashbyhq.com/{slug[0]}" if slug else None

    if parts:
        return f"https://{host}/{parts[0]}"
    return None


def find_embedded_ats_urls(html: str, base_url: str = "") -> List[str]:
    """Ordered, de-duplicated board URLs for supported ATS platforms found in the page."""
    blob = f"{base_url}\n{html or ''}"[:_MAX_SCAN_CHARS].replace("\\/", "/")
    found: List[str] = []
    seen = set()

    greenhouse_embed = re.search(r"greenhouse\.io/[^\s\"']*\bfor=([a-z0-9-]+)", blob, re.I)
    if greenhouse_embed:
        found.append(f"https://boards.greenhouse.io/{greenhouse_embed.group(1).lower()}")
        seen.add(found[-1])

    for _, pattern in _ATS_PATTERNS:
        for m in pattern.finditer(blob):
            normalized = normalize_ats_url(m.group(0))
            if normalized and normalized not in seen:
                seen.add(normalized)
                found.append(normalized)
    return found


_RE_META_REFRESH = re.compile(r"url\s*=\s*['\"]?([^'\";>]+)", re.I)
_RE_JS_REDIRECT = re.compile(
    r"(?:window\.)?location(?:\.href)?\s*=\s*['\"]([^'\"]+)['\"]|location\.replace\(\s*['\"]([^'\"]+)['\"]",
    re.I,
)


def find_redirect_urls(html: str, base_url: str) -> List[str]:
    """meta refresh, window.location and iframe targets, resolved against base_url."""
    out: List[str] = []
    soup = BeautifulSoup(html or "", "html.parser")
    for meta in soup.find_all("meta"):
        if str(meta.get("http-equiv") or "").lower() == "refresh":
            m = _RE_META_REFRESH.search(str(meta.get("content") or ""))
            if m:
                out.append(urljoin(base_url, m.group(1).strip()))
    for frame in soup.find_all("iframe"):
        src = frame.get("src")
        if src:
            out.append(urljoin(base_url, str(src)))
    for script in soup.find_all("script"):
        body = script.string or ""
        for m in _RE_JS_REDIRECT.finditer(body):
            target = m.group(1) or m.group(2)
            if target and not target.startswith("#"):
                out.append(urljoin(base_url, target))
    return _dedupe(out)


def find_tag_manager_scripts(html: str, base_url: str) -> List[str]:
    soup = BeautifulSoup(html or "", "html.parser")
    urls = []
    for script in soup.find_all("script", src=True):
        src = str(script.get("src"))
        if "googletagmanager.com" in src or "gtm.js" in src:
            urls.append(urljoin(base_url, src))
    return _dedupe(urls)[:3]


# -------------------------
# Page evidence
# -------------------------

# Markers an ATS leaves in pages that host its widget.
_ATS_INDICATORS = {
    JobSource.GREENHOUSE: ("greenhouse.io", "boards.greenhouse", "grnhse", "data-gh"),
    JobSource.LEVER: ("lever.co", "data-lever", "lever-application", "lever ats", "levercareers"),
    JobSource.ASHBY: ("ashbyhq", "ashby.com", "ashby_embed"),
    JobSource.WORKDAY: ("myworkdayjobs", "myworkdaysite", "workday.com/careers"),
}
_CAREERS_URL_WORDS = ("career", "job", "hiring", "join", "positions")
_CAREERS_PAGE_PHRASES = (
    "open position",
    "job opening",
    "join our team",
    "we're hiring",
    "we are hiring",
    "apply now",
    "view all jobs",
    "current opening",
)


def ats_indicators(html: str) -> Dict[JobSource, int]:
    """Number of distinct markers per ATS, most evidence first."""
    low = (html or "")[:_MAX_SCAN_CHARS].lower()
    counts = {
        source: sum(1 for marker in markers if marker in low)
        for source, markers in _ATS_INDICATORS.items()
    }
    ranked = sorted(((s, n) for s, n in counts.items() if n), key=lambda sn: -sn[1])
    return dict(ranked)


def is_careers_page(url: str, html: str) -> bool:
    low_url = (url or "").lower()
    if any(w in low_url for w in _CAREERS_URL_WORDS):
        return True
    low = (html or "")[:_MAX_SCAN_CHARS].lower()
    return any(p in low for p in _CAREERS_PAGE_PHRASES)


# -------------------------
# Structured data
# -------------------------


def _jsonld_nodes(soup: BeautifulSoup) -> Iterable[Dict[str, Any]]:
    for s in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(s.get_text(strip=True) or "{}")
        except ValueError:
            continue
        stack = list(data) if isinstance(data, list) else [data]
        while stack:
            node = stack.pop(0)
            if not isinstance(node, dict):
                continue
            graph = node.get("@graph")
            if isinstance(graph, list):
                stack.extend(graph)
            yield node


def _is_job_posting(node: Dict[str, Any]) -> bool:
    t = node.get("@type")
    if isinstance(t, list):
        return "JobPosting" in t
    return t == "JobPosting"


def _schema_location(job_loc: Any) -> str:
    if isinstance(job_loc, list):
        parts = [_schema_location(x) for x in job_loc]
        return " / ".join(p for p in parts if p)
    if not isinstance(job_loc, dict):
        return ""
    addr = job_loc.get("address") or {}
    if isinstance(addr, str):
        return normalize_whitespace(addr)
    if not isinstance(addr, dict):
        return ""
    country = addr.get("addressCountry")
    if isinstance(country, dict):
        country = country.get("name")
    pieces = [addr.get("addressLocality"), addr.get("addressRegion"), country]
    return ", ".join(normalize_whitespace(str(p)) for p in pieces if p)


def extract_schema_org_jobs(html: str, base_url: str, company_name: Optional[str] = None) -> List[Job]:
    soup = BeautifulSoup(html or "", "html.parser")
    jobs: List[Job] = []
    seen_now = now_utc()

    for node in _jsonld_nodes(soup):
        if not _is_job_posting(node):
            continue
        title = normalize_whitespace(str(node.get("title") or node.get("name") or ""))
        if not title:
            continue

        url = node.get("url") or ""
        if isinstance(url, dict):
            url = url.get("@id") or ""
        org = node.get("hiringOrganization")
        org_name = org.get("name") if isinstance(org, dict) else None
        location = _schema_location(node.get("jobLocation"))
        if not location and str(node.get("jobLocationType") or "").upper() == "TELECOMMUTE":
            location = "Remote"

        description = clean_html(str(node.get("description") or ""))
        jobs.append(
            Job(
                id=synthetic_id("schema"),
                title=title,
                location=location or "Location not specified",
                posting_date=parse_iso(node.get("datePosted")),
                url=urljoin(base_url, str(url)) if url else base_url,
                description=description,
                work_site_flexibility=classify_work_flexibility(f"{location} {description[:500]}"),
                source=JobSource.UNKNOWN,
                company_name=org_name or company_name,
                category=node.get("employmentType") if isinstance(node.get("employmentType"), str) else None,
                first_seen_date=seen_now,
            )
        )
    return jobs


def find_jobs_in_json(data: Any, base_url: str, company_name: Optional[str] = None, id_prefix: str = "schema") -> List[Job]:
    """Walk arbitrary JSON and collect objects that look like postings (title + url)."""
    out: List[Job] = []
    seen_urls = set()

    def walk(node: Any) -> None:
        if isinstance(node, dict):
            title = node.get("title") or node.get("text") or node.get("name")
            url = node.get("url") or node.get("absolute_url") or node.get("applyUrl") or node.get("hostedUrl")
            if isinstance(title, str) and isinstance(url, str) and title.strip() and url.strip():
                abs_url = urljoin(base_url, url)
                if abs_url not in seen_urls:
                    seen_urls.add(abs_url)
                    loc = node.get("location") or node.get("jobLocation") or node.get("city") or ""
                    if isinstance(loc, dict):
                        loc = loc.get("name") or ""
                    out.append(
                        Job(
                            id=synthetic_id(id_prefix),
                            title=normalize_whitespace(title),
                            location=normalize_whitespace(str(loc)) or "Location not specified",
                            posting_date=parse_iso(node.get("datePosted") or node.get("postedDate")),
                            url=abs_url,
                            description=clean_html(str(node.get("description") or node.get("content") or "")),
                            source=JobSource.UNKNOWN,
                            company_name=company_name,
                        )
                    )
            for v in node.values():
                walk(v)
        elif isinstance(node, list):
            for item in node:
                walk(item)

    walk(data)
    return out


def extract_next_data_jobs(html: str, base_url: str, company_name: Optional[str] = None) -> List[Job]:
    soup = BeautifulSoup(html or "", "html.parser")
    tag = soup.find("script", attrs={"id": "__NEXT_DATA__"})
    if not tag:
        return []
    try:
        data = json.loads(tag.get_text(strip=True) or "{}")
    except ValueError:
        logger.debug("[extract] unparsable __NEXT_DATA__ at %s", base_url)
        return []
    return find_jobs_in_json(data, base_url, company_name)


# -------------------------
# Anchor patterns
# -------------------------

_RE_JOB_HREF = re.compile(r"/(?:jobs?|careers?|positions?|openings?)/", re.I)
# Whole words only: "Next.js Engineer" and "Pages Platform Lead" are postings.
_RE_NAV_TEXT = re.compile(
    r"(?<![\w.])(?:next|prev|previous|page|load more|view all|see all|apply)(?!\w|\.\w)", re.I
)
MIN_LINK_TEXT = 5
MAX_LINK_TEXT = 150


def _class_text(tag: Any) -> str:
    cls = tag.get("class") or []
    return " ".join(cls) if isinstance(cls, list) else str(cls)


def extract_html_link_jobs(html: str, base_url: str, company_name: Optional[str] = None) -> List[Job]:
    soup = BeautifulSoup(html or "", "html.parser")
    jobs: List[Job] = []
    seen_urls = set()
    seen_now = now_utc()

    for a in soup.find_all("a", href=True):
        href = str(a.get("href") or "").strip()
        if not href or href.startswith(("#", "mailto:", "javascript:")):
            continue
        matches = (
            _RE_JOB_HREF.search(href)
            or "job" in _class_text(a).lower()
            or "job" in str(a.get("id") or "").lower()
        )
        if not matches:
            continue

        text = normalize_whitespace(a.get_text(" "))
        if not MIN_LINK_TEXT <= len(text) <= MAX_LINK_TEXT:
            continue
        if _RE_NAV_TEXT.search(text):
            continue

        abs_url = urljoin(base_url, href)
        if abs_url in seen_urls:
            continue
        seen_urls.add(abs_url)

        jobs.append(
            Job(
                id=synthetic_id("html"),
                title=text,
                location="Location not specified",
                posting_date=None,
                url=abs_url,
                source=JobSource.UNKNOWN,
                company_name=company_name,
                first_seen_date=seen_now,
            )
        )
    return jobs


def _dedupe(urls: List[str]) -> List[str]:
    out: List[str] = []
    for u in urls:
        if u and u not in out:
            out.append(u)
    return out
