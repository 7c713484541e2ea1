from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from jobflare.core.errors import DecodingError, InvalidURLError
from jobflare.core.models import Job, JobSource, apply_keyword_filters, now_utc
from jobflare.fetchers.base import FilterParams, JobFetcher, stamp_first_seen, title_case_slug

logger = logging.getLogger("fetchers.ashby")

API_URL = "https://jobs.ashbyhq.com/api/non-user-graphql?op=ApiJobBoardWithTeams"

QUERY = """
query ApiJobBoardWithTeams($organizationHostedJobsPageName: String!) {
  jobBoard: jobBoardWithTeams(
    organizationHostedJobsPageName: $organizationHostedJobsPageName
  ) {
    teams { id name parentTeamId }
    jobPostings {
      id
      title
      teamId
      locationId
      locationName
      workplaceType
      employmentType
      secondaryLocations { locationId locationName }
      compensationTierSummary
    }
  }
}
"""


def ashby_slug(url: str) -> Optional[str]:
    parts = [p for p in urlparse(url or "").path.split("/") if p]
    return parts[0] if parts else None


class AshbyFetcher(JobFetcher):
    source = JobSource.ASHBY

    def fetch(self, url: Optional[str], params: FilterParams) -> List[Job]:
        slug = ashby_slug(url or "")
        if not slug:
            raise InvalidURLError(url or "")
        return self.fetch_slug(slug, params)

    def fetch_slug(self, slug: str, params: FilterParams) -> List[Job]:
        tracking_key = f"ashby_{slug}"
        stored = self.load_first_seen(tracking_key)
        current_date = now_utc()

        body = {
            "operationName": "ApiJobBoardWithTeams",
            "query": QUERY,
            "variables": {"organizationHostedJobsPageName": slug},
        }
        data = self.ctx.http.post_json(API_URL, body)
        board = ((data or {}).get("data") or {}).get("jobBoard") if isinstance(data, dict) else None
        postings = board.get("jobPostings") if isinstance(board, dict) else None
        if not isinstance(postings, list):
            raise DecodingError("No job postings found in Ashby response")

        teams = {t.get("id"): t.get("name") for t in (board.get("teams") or []) if isinstance(t, dict)}
        company = title_case_slug(slug)
        jobs = [j for j in (self._normalize(p, slug, company, teams) for p in postings) if j]
        stamp_first_seen(jobs, stored, current_date)

        filtered = apply_keyword_filters(jobs, params.title_keywords, params.location_keywords)
        logger.info("[Ashby] %s: fetched %s total, %s after filtering", slug, len(jobs), len(filtered))
        self.save_first_seen(filtered, tracking_key, current_date)
        return filtered

    def _normalize(
        self, raw: Dict[str, Any], slug: str, company: str, teams: Dict[Any, Any]
    ) -> Optional[Job]:
        if not isinstance(raw, dict) or not raw.get("id") or not raw.get("title"):
            return None

        location = raw.get("locationName") or "Location not specified"
        secondary = [
            s.get("locationName")
            for s in (raw.get("secondaryLocations") or [])
            if isinstance(s, dict) and s.get("locationName")
        ]
        if secondary:
            location = f"{location} (+ {', '.join(secondary)})"

        return Job(
            id=f"ashby-{raw['id']}",
            title=raw["title"],
            location=location,
            posting_date=None,
            url=f"https://jobs.ashbyhq.com/{slug}/{raw['id']}",
            description=raw.get("compensationTierSummary") or "",
            work_site_flexibility=raw.get("workplaceType"),
            source=JobSource.ASHBY,
            company_name=company,
            department=teams.get(raw.get("teamId")),
            category=raw.get("employmentType"),
        )
