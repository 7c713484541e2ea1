"""
ATS auto-detection cascade (bounded, production-safe).

Given an arbitrary careers URL, try extraction strategies in strict priority
order and stop at the first one that yields a usable result:

  0. Detection cache hit        -> cached ATS fetcher, nothing else runs
  1. Direct ATS URL             -> dedicated fetcher
  2. Indicated API probe        -> hosted-board probes for ATS markers found in the page
  3. Embedded ATS link scan     -> links, iframes, redirects, tag-manager payloads
  4. Structured data            -> schema.org JobPosting / __NEXT_DATA__ (>= 3 postings)
  5. Guessed API probe          -> host-name slugs on marker-less careers pages (never cached),
                                   then same-origin JSON paths
  6. Anchor pattern scan        -> job/career/position/opening links
  7. Cached schema              -> JSON endpoint an earlier AI run discovered
  8. AI extraction (flagged)    -> external collaborator, negatively cached per domain

Only evidence from the page itself is cached against the domain. A failing
step means "try the next one". Progress goes to a StatusReporter; whether
anyone listens never changes the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from jobflare.core.errors import FetchError
from jobflare.core.http import HttpClient
from jobflare.core.models import (
    Job,
    JobSource,
    ParsingMethod,
    apply_keyword_filters,
    domain_of,
)
from jobflare.detection.caches import DetectionCache, SchemaCache
from jobflare.detection.extractors import (
    ats_indicators,
    extract_html_link_jobs,
    extract_next_data_jobs,
    extract_schema_org_jobs,
    find_embedded_ats_urls,
    find_jobs_in_json,
    find_redirect_urls,
    find_tag_manager_scripts,
    is_careers_page,
)
from jobflare.detection.schema_fetcher import SchemaFetcher
from jobflare.detection.status import AIExtraction, AIJobExtractor, StatusListener, StatusReporter
from jobflare.fetchers.base import FilterParams, JobFetcher
from jobflare.fetchers.registry import URL_FETCHER_SOURCES

logger = logging.getLogger("detection.cascade")

SCHEMA_ORG_THRESHOLD = 3

_PROBE_PATHS = ("/api/jobs", "/api/careers", "/jobs.json", "/api/v1/jobs")
_PROBE_URLS: Dict[JobSource, Tuple[Optional[str], str]] = {
    JobSource.GREENHOUSE: ("https://boards-api.greenhouse.io/v1/boards/{slug}/jobs", "https://boards.greenhouse.io/{slug}"),
    JobSource.LEVER: ("https://api.lever.co/v0/postings/{slug}?mode=json", "https://jobs.lever.co/{slug}"),
    # Ashby has no cheap list endpoint; the fetcher itself is the probe.
    JobSource.ASHBY: (None, "https://jobs.ashbyhq.com/{slug}"),
}
_HOST_NOISE = {"www", "careers", "career", "jobs", "job", "boards", "apply", "work", "join", "talent"}


@dataclass
class DetectionResult:
    jobs: List[Job]
    method: ParsingMethod
    detected_ats_url: Optional[str] = None
    detected_ats_type: Optional[str] = None
    events: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "job_count": len(self.jobs),
            "detected_ats_url": self.detected_ats_url,
            "detected_ats_type": self.detected_ats_type,
            "events": self.events,
        }


def slug_candidates(url: str) -> List[str]:
    """Registrable label of the host plus the first path segment."""
    parsed = urlparse(url or "")
    labels = [p for p in (parsed.hostname or "").lower().split(".") if p]
    out: List[str] = []
    if len(labels) >= 2:
        core = [p for p in labels[:-1] if p not in _HOST_NOISE]
        if core:
            out.append(core[-1])
    parts = [p.lower() for p in parsed.path.split("/") if p]
    if parts and parts[0] not in _HOST_NOISE and parts[0].replace("-", "").isalnum():
        out.append(parts[0])
    return list(dict.fromkeys(out))


class DetectionCascade:
    def __init__(
        self,
        fetchers: Dict[JobSource, JobFetcher],
        http: HttpClient,
        detection_cache: DetectionCache,
        schema_cache: SchemaCache,
        ai_extractor: Optional[AIJobExtractor] = None,
        ai_enabled: bool = False,
        ai_retry_days: int = 7,
        schema_fetcher: Optional[SchemaFetcher] = None,
    ):
        self.fetchers = fetchers
        self.http = http
        self.detection_cache = detection_cache
        self.schema_cache = schema_cache
        self.ai_extractor = ai_extractor
        self.ai_enabled = ai_enabled
        self.ai_retry_days = ai_retry_days
        self.schema_fetcher = schema_fetcher

    # =========================
    # Public API
    # =========================

    def detect_and_fetch(
        self,
        url: str,
        params: Optional[FilterParams] = None,
        listener: Optional[StatusListener] = None,
        company_name: Optional[str] = None,
    ) -> DetectionResult:
        params = params or FilterParams()
        status = StatusReporter(listener)
        domain = domain_of(url)

        result = self._run(url, domain, params, status, company_name)
        result.events = [e.to_dict() for e in status.events]
        logger.info("[cascade] %s -> %s (%s jobs)", url, result.method.value, len(result.jobs))
        return result

    # =========================
    # Steps
    # =========================

    def _run(
        self,
        url: str,
        domain: str,
        params: FilterParams,
        status: StatusReporter,
        company_name: Optional[str],
    ) -> DetectionResult:
        cached = self.detection_cache.get(domain)
        if cached:
            source = JobSource.parse(cached.ats_type)
            status("cached", f"Using cached {source.display_name} board for {domain}")
            jobs = self.fetchers[source].fetch(cached.ats_url, params)
            return DetectionResult(jobs, ParsingMethod.CACHED, cached.ats_url, source.value)

        direct = JobSource.detect_from_url(url)
        if direct in URL_FETCHER_SOURCES:
            status("direct", f"Detected {direct.display_name} URL")
            jobs = self.fetchers[direct].fetch(url, params)
            return DetectionResult(jobs, ParsingMethod.DIRECT_ATS, url, direct.value)

        status("page", f"Fetching {url}")
        try:
            final_url, html = self.http.get_text(url)
        except FetchError as e:
            status("page", f"Page fetch failed: {e}")
            fallback = self._try_cached_schema(domain, params, status, company_name) or self._try_ai(
                url, domain, params, status
            )
            if fallback:
                return fallback
            raise

        indicated = self._probe_indicated(url, html, domain, params, status)
        if indicated:
            return indicated

        embedded = self._scan_embedded(final_url, html, domain, params, status)
        if embedded:
            return embedded

        structured = self._structured(final_url, html, domain, params, status, company_name)
        if structured:
            return structured

        guessed = self._probe_guessed(url, html, params, status, company_name)
        if guessed:
            return guessed

        status("html", "Scanning links for job postings")
        link_jobs = extract_html_link_jobs(html, final_url, company_name)
        if link_jobs:
            self.schema_cache.record_html_success(domain)
            status("html", f"Found {len(link_jobs)} job links")
            return DetectionResult(self._filter(link_jobs, params), ParsingMethod.HTML_PATTERN)

        fallback = self._try_cached_schema(domain, params, status, company_name) or self._try_ai(
            url, domain, params, status
        )
        if fallback:
            return fallback

        status("done", "No jobs found")
        return DetectionResult([], ParsingMethod.NONE)

    def _probe_indicated(
        self,
        url: str,
        html: str,
        domain: str,
        params: FilterParams,
        status: StatusReporter,
    ) -> Optional[DetectionResult]:
        """Probe hosted boards only for the ATS the page itself points at."""
        indicators = ats_indicators(html)
        if not indicators:
            return None
        for source, count in indicators.items():
            if source not in _PROBE_URLS:
                status("probe", f"Found {count} {source.display_name} markers, no board to probe")
                continue
            status("probe", f"Found {count} {source.display_name} markers")
            for slug in slug_candidates(url):
                hit = self._probe_board(source, slug, domain, params, status, remember=True)
                if hit:
                    return hit
        return None

    def _probe_guessed(
        self,
        url: str,
        html: str,
        params: FilterParams,
        status: StatusReporter,
        company_name: Optional[str],
    ) -> Optional[DetectionResult]:
        """Last-resort probes on a careers page with no ATS markers.

        A hit here is a guess from the host name, so it is returned for this
        run only and never cached or attached to the board.
        """
        if is_careers_page(url, html) and not ats_indicators(html):
            for slug in slug_candidates(url):
                for source in _PROBE_URLS:
                    hit = self._probe_board(source, slug, "", params, status, remember=False)
                    if hit:
                        return hit

        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        for path in _PROBE_PATHS:
            try:
                data = self.http.get_json(origin + path)
            except FetchError:
                continue
            jobs = find_jobs_in_json(data, origin + path, company_name)
            if jobs:
                status("probe", f"Found {len(jobs)} jobs at {path}")
                return DetectionResult(self._filter(jobs, params), ParsingMethod.API_PROBE)
        return None

    def _probe_board(
        self,
        source: JobSource,
        slug: str,
        domain: str,
        params: FilterParams,
        status: StatusReporter,
        remember: bool,
    ) -> Optional[DetectionResult]:
        api_url, board_url = _PROBE_URLS[source]
        status("probe", f"Checking {source.display_name} for '{slug}'")
        if api_url and not self._probe_json_list(api_url.format(slug=slug), source):
            return None
        hit = self._fetch_discovered(
            board_url.format(slug=slug), source, domain, params, status, quiet=True, remember=remember
        )
        if hit is None:
            return None
        hit.method = ParsingMethod.API_PROBE
        if not remember:
            status("probe", f"Unconfirmed {source.display_name} board '{slug}', not cached")
            hit.detected_ats_url = None
            hit.detected_ats_type = None
        return hit

    def _probe_json_list(self, api_url: str, source: JobSource) -> bool:
        try:
            data = self.http.get_json(api_url)
        except FetchError:
            return False
        if source is JobSource.GREENHOUSE:
            return isinstance(data, dict) and bool(data.get("jobs"))
        return isinstance(data, list) and bool(data)

    def _scan_embedded(
        self,
        final_url: str,
        html: str,
        domain: str,
        params: FilterParams,
        status: StatusReporter,
    ) -> Optional[DetectionResult]:
        status("embedded", "Scanning page for embedded job boards")
        candidates = find_embedded_ats_urls(html, final_url)

        for target in find_redirect_urls(html, final_url):
            if JobSource.detect_from_url(target) in URL_FETCHER_SOURCES:
                candidates.extend(find_embedded_ats_urls("", target) or [target])

        if not candidates:
            for script_url in find_tag_manager_scripts(html, final_url):
                try:
                    _, body = self.http.get_text(script_url)
                except FetchError:
                    continue
                found = find_embedded_ats_urls(body)
                if found:
                    status("embedded", "Found board link in tag manager payload")
                    candidates.extend(found)
                    break

        for candidate in dict.fromkeys(candidates):
            source = JobSource.detect_from_url(candidate)
            if source not in URL_FETCHER_SOURCES:
                status("embedded", f"Found unsupported {source.display_name} board {candidate}")
                continue
            hit = self._fetch_discovered(candidate, source, domain, params, status)
            if hit:
                hit.method = ParsingMethod.EMBEDDED_ATS
                return hit
        return None

    def _fetch_discovered(
        self,
        ats_url: str,
        source: JobSource,
        domain: str,
        params: FilterParams,
        status: StatusReporter,
        quiet: bool = False,
        remember: bool = True,
    ) -> Optional[DetectionResult]:
        try:
            jobs = self.fetchers[source].fetch(ats_url, params)
        except FetchError as e:
            if not quiet:
                status("embedded", f"{source.display_name} board {ats_url} failed: {e}")
            return None
        status("embedded", f"Detected {source.display_name} board {ats_url}")
        if remember:
            self.detection_cache.record(domain, source.value, ats_url)
        return DetectionResult(jobs, ParsingMethod.EMBEDDED_ATS, ats_url, source.value)

    def _structured(
        self,
        final_url: str,
        html: str,
        domain: str,
        params: FilterParams,
        status: StatusReporter,
        company_name: Optional[str],
    ) -> Optional[DetectionResult]:
        status("schema", "Looking for schema.org job postings")
        for label, extractor in (("schema.org", extract_schema_org_jobs), ("__NEXT_DATA__", extract_next_data_jobs)):
            jobs = extractor(html, final_url, company_name)
            if len(jobs) >= SCHEMA_ORG_THRESHOLD:
                status("schema", f"Found {len(jobs)} postings via {label}")
                self.schema_cache.record_html_success(domain)
                return DetectionResult(self._filter(jobs, params), ParsingMethod.SCHEMA_ORG)
            if jobs:
                status("schema", f"Only {len(jobs)} postings via {label}, below threshold")
        return None

    def _try_cached_schema(
        self,
        domain: str,
        params: FilterParams,
        status: StatusReporter,
        company_name: Optional[str],
    ) -> Optional[DetectionResult]:
        schema = self.schema_cache.cached_schema(domain)
        if schema is None or self.schema_fetcher is None:
            return None

        status("schema-cache", f"Calling cached endpoint {schema.endpoint}")
        try:
            jobs = self.schema_fetcher.fetch_schema(schema, params, company_name)
        except FetchError as e:
            status("schema-cache", f"Cached endpoint failed: {e}")
            self.schema_cache.clear_schema(domain)
            return None
        if not jobs:
            status("schema-cache", "Cached endpoint returned no jobs")
            self.schema_cache.clear_schema(domain)
            return None
        status("schema-cache", f"Found {len(jobs)} jobs via cached endpoint")
        return DetectionResult(self._filter(jobs, params), ParsingMethod.CACHED_SCHEMA)

    def _try_ai(
        self, url: str, domain: str, params: FilterParams, status: StatusReporter
    ) -> Optional[DetectionResult]:
        if not self.ai_enabled or self.ai_extractor is None:
            return None
        if self.schema_cache.should_skip_ai(domain, self.ai_retry_days):
            status("ai", f"Skipping AI extraction, {domain} failed recently")
            return None

        status("ai", "Trying AI-assisted extraction")
        try:
            outcome = self.ai_extractor.parse_jobs(url, params.title, params.location, status.child("ai"))
        except Exception as e:
            logger.warning("[cascade] AI extraction failed for %s: %s", domain, e)
            outcome = AIExtraction([])

        if not outcome.jobs:
            self.schema_cache.record_failure(domain)
            status("ai", "AI extraction found nothing")
            return None
        self.schema_cache.record_ai_success(domain, outcome.schema)
        if outcome.schema is not None:
            status("ai", f"Cached endpoint {outcome.schema.endpoint} for later runs")
        return DetectionResult(outcome.jobs, ParsingMethod.AI_EXTRACTION)

    @staticmethod
    def _filter(jobs: List[Job], params: FilterParams) -> List[Job]:
        return apply_keyword_filters(jobs, params.title_keywords, params.location_keywords)

