"""
Replays a JSON endpoint that AI extraction discovered for a domain.

The schema records where the jobs array lives in the response and which
fields carry title, location and link, so later cycles can skip the slow
AI step and call the endpoint directly.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from jobflare.core.errors import DecodingError
from jobflare.core.models import Job, JobSource, normalize_whitespace, now_utc
from jobflare.fetchers.base import FilterParams, JobFetcher, stamp_first_seen, title_case_slug

logger = logging.getLogger("detection.schema")

PAGE_SIZE = 20
DEFAULT_MAX_PAGES = 3

PAGINATION_TYPES = ("none", "offset", "page")


@dataclass
class ApiSchema:
    endpoint: str
    jobs_path: str
    title_field: str
    domain: str = ""
    method: str = "GET"
    location_field: Optional[str] = None
    url_field: Optional[str] = None
    # e.g. "https://example.com/job/{jobId}"; {id} and {jobId} are also replaced.
    url_template: Optional[str] = None
    request_body: Optional[Dict[str, Any]] = None
    request_headers: Dict[str, str] = field(default_factory=dict)
    pagination_type: str = "none"
    page_param: Optional[str] = None
    max_pages: int = DEFAULT_MAX_PAGES
    sort_param: Optional[str] = None
    sort_value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ApiSchema":
        pagination = str(d.get("pagination_type") or "none").lower()
        return cls(
            endpoint=d["endpoint"],
            jobs_path=d.get("jobs_path") or "",
            title_field=d["title_field"],
            domain=d.get("domain") or "",
            method=str(d.get("method") or "GET").upper(),
            location_field=d.get("location_field"),
            url_field=d.get("url_field"),
            url_template=d.get("url_template"),
            request_body=d.get("request_body") if isinstance(d.get("request_body"), dict) else None,
            request_headers=dict(d.get("request_headers") or {}),
            pagination_type=pagination if pagination in PAGINATION_TYPES else "none",
            page_param=d.get("page_param"),
            max_pages=int(d.get("max_pages") or DEFAULT_MAX_PAGES),
            sort_param=d.get("sort_param"),
            sort_value=d.get("sort_value"),
        )


def value_at(data: Any, path: str) -> Any:
    """Walk a dotted path through nested objects; an empty path is the root."""
    current = data
    for part in [p for p in (path or "").split(".") if p]:
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _link_for(item: Dict[str, Any], schema: ApiSchema, base_url: str) -> Optional[str]:
    if not schema.url_field:
        return None
    raw = item.get(schema.url_field)
    if isinstance(raw, bool) or not isinstance(raw, (str, int)):
        return None
    value = str(raw).strip()
    if not value:
        return None
    if value.startswith("http"):
        return value
    if schema.url_template:
        return (
            schema.url_template.replace("{" + schema.url_field + "}", value)
            .replace("{id}", value)
            .replace("{jobId}", value)
        )
    return f"{base_url.rstrip('/')}/{value.lstrip('/')}"


def extract_with_schema(data: Any, schema: ApiSchema, base_url: str) -> List[Dict[str, Optional[str]]]:
    """Rows of {title, location, url} read from one response page."""
    items = value_at(data, schema.jobs_path)
    if not isinstance(items, list):
        raise DecodingError(f"No jobs array at '{schema.jobs_path}' in {schema.endpoint}")

    rows: List[Dict[str, Optional[str]]] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = item.get(schema.title_field)
        if not isinstance(title, str) or not title.strip():
            continue
        location = item.get(schema.location_field) if schema.location_field else None
        rows.append(
            {
                "title": normalize_whitespace(title),
                "location": location.strip() if isinstance(location, str) and location.strip() else None,
                "url": _link_for(item, schema, base_url),
            }
        )
    return rows


def schema_job_id(title: str, url: Optional[str]) -> str:
    digest = hashlib.sha256((url or title).encode("utf-8")).hexdigest()
    return f"api-{digest[:16]}"


class SchemaFetcher(JobFetcher):
    source = JobSource.UNKNOWN

    @property
    def name(self) -> str:
        return "Cached schema"

    def fetch_schema(
        self,
        schema: ApiSchema,
        params: FilterParams,
        company_name: Optional[str] = None,
    ) -> List[Job]:
        """All postings the endpoint returns; keyword filtering is left to the caller."""
        tracking_key = f"schema_{schema.domain}"
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()
        company = company_name or _company_from_domain(schema.domain)

        def fetch_page(page: int, offset: int) -> List[Dict[str, Optional[str]]]:
            data = self._request(schema, page)
            return extract_with_schema(data, schema, schema.endpoint)

        max_pages = max(1, min(int(schema.max_pages), int(params.max_pages)))
        if schema.pagination_type == "none":
            max_pages = 1
        rows = self.paginate(fetch_page, page_size=PAGE_SIZE, max_pages=max_pages)

        jobs: List[Job] = []
        seen = set()
        for row in rows:
            job_id = schema_job_id(row["title"], row["url"])
            if job_id in seen:
                continue
            seen.add(job_id)
            jobs.append(
                Job(
                    id=job_id,
                    title=row["title"],
                    location=row["location"] or "Location not specified",
                    posting_date=None,
                    url=row["url"] or schema.endpoint,
                    source=JobSource.UNKNOWN,
                    company_name=company,
                )
            )

        stamp_first_seen(jobs, stored, current_date)
        logger.info("[schema] %s: %s jobs from %s", schema.domain, len(jobs), schema.endpoint)
        self.save_first_seen(jobs, tracking_key, current_date)
        return jobs

    def _request(self, schema: ApiSchema, page: int) -> Any:
        extra: Dict[str, Any] = {}
        if page > 0 and schema.page_param:
            if schema.pagination_type == "offset":
                extra[schema.page_param] = page * PAGE_SIZE
            elif schema.pagination_type == "page":
                extra[schema.page_param] = page + 1
        if schema.sort_param and schema.sort_value is not None:
            extra[schema.sort_param] = schema.sort_value

        if schema.method == "POST":
            body = dict(schema.request_body or {})
            body.update(extra)
            return self.ctx.http.post_json(schema.endpoint, body, headers=schema.request_headers)
        return self.ctx.http.get_json(schema.endpoint, params=extra or None, headers=schema.request_headers)


def _company_from_domain(domain: str) -> Optional[str]:
    labels = [p for p in (domain or "").split(".") if p and p not in ("www", "careers", "jobs")]
    if len(labels) < 2:
        return None
    return title_case_slug(labels[-2])
