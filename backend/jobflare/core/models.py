"""
Canonical job and board records.

A Job is the normalized form every fetcher produces. Identity is the `id`
string ("{source-tag}-{native-id}" for API sources, "schema-{uuid}" /
"html-{uuid}" for best-effort extraction). Timestamps are timezone-aware UTC.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

# A refresh more than 48h after creation counts as a repost.
BUMP_THRESHOLD_S = 48 * 3600
# Bumped postings resurface while the bump is inside this window.
BUMP_DISPLAY_WINDOW_S = 48 * 3600


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def parse_iso(raw: Any) -> Optional[datetime]:
    if not raw or not isinstance(raw, str):
        return None
    s = raw.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def from_epoch(ts: Any) -> Optional[datetime]:
    """Epoch seconds (or milliseconds, auto-detected) to UTC datetime."""
    if ts is None:
        return None
    try:
        value = float(ts)
    except (TypeError, ValueError):
        return None
    if value > 1e11:
        value = value / 1000.0
    return datetime.fromtimestamp(value, tz=timezone.utc)


# -------------------------
# Sources
# -------------------------


class JobSource(str, Enum):
    MICROSOFT = "microsoft"
    APPLE = "apple"
    GOOGLE = "google"
    AMAZON = "amazon"
    TIKTOK = "tiktok"
    SNAP = "snap"
    AMD = "amd"
    META = "meta"
    WORKDAY = "workday"
    GREENHOUSE = "greenhouse"
    WORKABLE = "workable"
    JOBVITE = "jobvite"
    LEVER = "lever"
    BAMBOOHR = "bamboohr"
    SMARTRECRUITERS = "smartrecruiters"
    ASHBY = "ashby"
    JAZZHR = "jazzhr"
    RECRUITEE = "recruitee"
    BREEZY = "breezy"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def is_supported(self) -> bool:
        return self in _SUPPORTED

    @classmethod
    def parse(cls, raw: Any) -> "JobSource":
        """Accepts either the tag ("breezy") or the display name ("Breezy HR")."""
        if isinstance(raw, JobSource):
            return raw
        s = str(raw or "").strip()
        for src in cls:
            if s.lower() == src.value or s == src.display_name:
                return src
        return cls.UNKNOWN

    @classmethod
    def detect_from_url(cls, url: str) -> "JobSource":
        low = (url or "").lower()
        for needles, src in _URL_RULES:
            if any(n in low for n in needles):
                return src
        if _RE_WD_HOST.search(low):
            return cls.WORKDAY
        return cls.UNKNOWN


_DISPLAY_NAMES = {
    JobSource.MICROSOFT: "Microsoft",
    JobSource.APPLE: "Apple",
    JobSource.GOOGLE: "Google",
    JobSource.AMAZON: "Amazon",
    JobSource.TIKTOK: "TikTok",
    JobSource.SNAP: "Snap",
    JobSource.AMD: "AMD",
    JobSource.META: "Meta",
    JobSource.WORKDAY: "Workday",
    JobSource.GREENHOUSE: "Greenhouse",
    JobSource.WORKABLE: "Workable",
    JobSource.JOBVITE: "Jobvite",
    JobSource.LEVER: "Lever",
    JobSource.BAMBOOHR: "BambooHR",
    JobSource.SMARTRECRUITERS: "SmartRecruiters",
    JobSource.ASHBY: "Ashby",
    JobSource.JAZZHR: "JazzHR",
    JobSource.RECRUITEE: "Recruitee",
    JobSource.BREEZY: "Breezy HR",
    JobSource.UNKNOWN: "Custom",
}

_SUPPORTED = {
    JobSource.MICROSOFT,
    JobSource.APPLE,
    JobSource.GOOGLE,
    JobSource.AMD,
    JobSource.SNAP,
    JobSource.TIKTOK,
    JobSource.WORKDAY,
    JobSource.GREENHOUSE,
    JobSource.LEVER,
    JobSource.ASHBY,
    JobSource.UNKNOWN,
}

_URL_RULES: List[Tuple[Tuple[str, ...], JobSource]] = [
    (("myworkdayjobs.com", "myworkdaysite.com"), JobSource.WORKDAY),
    (("greenhouse.io",), JobSource.GREENHOUSE),
    (("lever.co",), JobSource.LEVER),
    (("ashbyhq.com",), JobSource.ASHBY),
    (("workable.com",), JobSource.WORKABLE),
    (("jobvite.com",), JobSource.JOBVITE),
    (("bamboohr.com",), JobSource.BAMBOOHR),
    (("smartrecruiters.com",), JobSource.SMARTRECRUITERS),
    (("applytojob.com", "jazzhr.com"), JobSource.JAZZHR),
    (("recruitee.com",), JobSource.RECRUITEE),
    (("breezy.hr",), JobSource.BREEZY),
    (("careers.microsoft.com", "jobs.careers.microsoft.com"), JobSource.MICROSOFT),
]

_RE_WD_HOST = re.compile(r"\.wd\d+\.")


class ParsingMethod(str, Enum):
    DIRECT_ATS = "directATS"
    API_PROBE = "apiProbe"
    EMBEDDED_ATS = "embeddedATS"
    SCHEMA_ORG = "schemaOrg"
    HTML_PATTERN = "htmlPattern"
    AI_EXTRACTION = "aiExtraction"
    CACHED = "cached"
    CACHED_SCHEMA = "cachedSchema"
    NONE = "none"


# -------------------------
# Job
# -------------------------


@dataclass
class Job:
    id: str
    title: str
    location: str
    posting_date: Optional[datetime]
    url: str
    description: str = ""
    work_site_flexibility: Optional[str] = None
    source: JobSource = JobSource.UNKNOWN
    company_name: Optional[str] = None
    department: Optional[str] = None
    category: Optional[str] = None
    first_seen_date: datetime = field(default_factory=now_utc)
    original_posting_date: Optional[datetime] = None
    was_bumped: bool = False

    @property
    def reference_date(self) -> datetime:
        return self.posting_date or self.first_seen_date

    def is_recently_bumped(
        self, now: Optional[datetime] = None, window_s: float = BUMP_DISPLAY_WINDOW_S
    ) -> bool:
        if not self.was_bumped or self.posting_date is None:
            return False
        now = now or now_utc()
        return (now - self.posting_date).total_seconds() <= window_s

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "location": self.location,
            "posting_date": to_iso(self.posting_date),
            "url": self.url,
            "description": self.description,
            "work_site_flexibility": self.work_site_flexibility,
            "source": self.source.value,
            "company_name": self.company_name,
            "department": self.department,
            "category": self.category,
            "first_seen_date": to_iso(self.first_seen_date),
            "original_posting_date": to_iso(self.original_posting_date),
            "was_bumped": bool(self.was_bumped),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Job":
        return cls(
            id=str(d["id"]),
            title=d.get("title") or "",
            location=d.get("location") or "",
            posting_date=parse_iso(d.get("posting_date")),
            url=d.get("url") or "",
            description=d.get("description") or "",
            work_site_flexibility=d.get("work_site_flexibility"),
            source=JobSource.parse(d.get("source")),
            company_name=d.get("company_name"),
            department=d.get("department"),
            category=d.get("category"),
            first_seen_date=parse_iso(d.get("first_seen_date")) or now_utc(),
            original_posting_date=parse_iso(d.get("original_posting_date")),
            was_bumped=bool(d.get("was_bumped")),
        )


def compute_bump(
    posted_ts: Any, creation_ts: Any = None
) -> Tuple[Optional[datetime], Optional[datetime], bool]:
    """Return (posting_date, original_posting_date, was_bumped).

    posted_ts is the last refresh, creation_ts the true creation.
    """
    posted = from_epoch(posted_ts)
    created = from_epoch(creation_ts)
    original = created or posted
    if posted is None or created is None:
        return posted, original, False
    gap = (posted - created).total_seconds()
    return posted, original, gap > BUMP_THRESHOLD_S


def synthetic_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


# -------------------------
# Keyword helpers
# -------------------------


_REMOTE_WORDS = ("remote", "work from home", "distributed", "anywhere")
_FLEX_WORDS = ("remote", "hybrid", "flexible", "work from home", "onsite", "on-site", "in-office")
_WS = re.compile(r"\s+")


def parse_filter_keywords(text: Optional[str]) -> List[str]:
    """Comma-separated keyword list, trimmed and lowercased; empties dropped."""
    if not text:
        return []
    return [k.strip().lower() for k in str(text).split(",") if k.strip()]


def including_remote(keywords: List[str]) -> List[str]:
    if not keywords:
        return keywords
    if any(r in k for k in keywords for r in _REMOTE_WORDS):
        return keywords
    return keywords + ["remote"]


def classify_work_flexibility(text: str) -> Optional[str]:
    low = (text or "").lower()
    for kw in _FLEX_WORDS:
        if kw in low:
            return kw.title()
    return None


def normalize_whitespace(s: str) -> str:
    return _WS.sub(" ", (s or "").strip())


def apply_keyword_filters(
    jobs: Iterable[Job], title_keywords: List[str], location_keywords: List[str]
) -> List[Job]:
    """Fetch-side filtering. Title keywords also match department and category."""
    out: List[Job] = []
    for job in jobs:
        if title_keywords:
            fields = " ".join(
                x.lower() for x in (job.title, job.department or "", job.category or "")
            )
            if not any(k in fields for k in title_keywords):
                continue
        if location_keywords:
            loc = (job.location or "").lower()
            if not any(k in loc for k in location_keywords):
                continue
        out.append(job)
    return out


# -------------------------
# Boards
# -------------------------


def domain_of(url: str) -> str:
    try:
        return (urlparse(url or "").hostname or "").lower()
    except ValueError:
        return ""


def is_valid_board_url(url: str) -> bool:
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname) and "." in (parsed.hostname or "")


@dataclass
class BoardConfig:
    name: str
    url: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source: JobSource = JobSource.UNKNOWN
    is_enabled: bool = True
    last_fetched: Optional[datetime] = None
    detected_ats_url: Optional[str] = None
    detected_ats_type: Optional[str] = None
    parsing_method: Optional[ParsingMethod] = None
    created_at: datetime = field(default_factory=now_utc)

    @classmethod
    def create(cls, name: str, url: str, is_enabled: bool = True) -> Optional["BoardConfig"]:
        url = (url or "").strip()
        if not is_valid_board_url(url):
            return None
        return cls(
            name=(name or "").strip() or domain_of(url),
            url=url,
            source=JobSource.detect_from_url(url),
            is_enabled=is_enabled,
        )

    @property
    def domain(self) -> str:
        return domain_of(self.url)

    @property
    def effective_url(self) -> str:
        return self.detected_ats_url or self.url

    @property
    def is_supported(self) -> bool:
        return self.source.is_supported

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "source": self.source.value,
            "is_enabled": bool(self.is_enabled),
            "last_fetched": to_iso(self.last_fetched),
            "detected_ats_url": self.detected_ats_url,
            "detected_ats_type": self.detected_ats_type,
            "parsing_method": self.parsing_method.value if self.parsing_method else None,
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BoardConfig":
        method = d.get("parsing_method")
        return cls(
            id=str(d.get("id") or uuid.uuid4()),
            name=d.get("name") or "",
            url=d.get("url") or "",
            source=JobSource.parse(d.get("source")),
            is_enabled=bool(d.get("is_enabled", True)),
            last_fetched=parse_iso(d.get("last_fetched")),
            detected_ats_url=d.get("detected_ats_url"),
            detected_ats_type=d.get("detected_ats_type"),
            parsing_method=ParsingMethod(method) if method else None,
            created_at=parse_iso(d.get("created_at")) or now_utc(),
        )


def age_seconds(dt: datetime, now: Optional[datetime] = None) -> float:
    return ((now or now_utc()) - dt).total_seconds()


def days_ago(days: float, now: Optional[datetime] = None) -> datetime:
    return (now or now_utc()) - timedelta(days=days)
