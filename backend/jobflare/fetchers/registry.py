from __future__ import annotations

from typing import Dict

from jobflare.core.models import JobSource
from jobflare.fetchers.amd import AMDFetcher
from jobflare.fetchers.apple import AppleFetcher
from jobflare.fetchers.ashby import AshbyFetcher
from jobflare.fetchers.base import FetchContext, JobFetcher, UnsupportedFetcher
from jobflare.fetchers.google import GoogleFetcher
from jobflare.fetchers.greenhouse import GreenhouseFetcher
from jobflare.fetchers.lever import LeverFetcher
from jobflare.fetchers.microsoft import MicrosoftFetcher
from jobflare.fetchers.snap import SnapFetcher
from jobflare.fetchers.tiktok import TikTokFetcher
from jobflare.fetchers.workday import WorkdayFetcher

# Sources with a dedicated fetcher that takes a board URL.
URL_FETCHER_SOURCES = (JobSource.GREENHOUSE, JobSource.LEVER, JobSource.ASHBY, JobSource.WORKDAY)
# Sources fetched on their own timer without a board URL.
BUILTIN_SOURCES = (
    JobSource.MICROSOFT,
    JobSource.APPLE,
    JobSource.GOOGLE,
    JobSource.AMD,
    JobSource.SNAP,
    JobSource.TIKTOK,
)


def build_fetchers(ctx: FetchContext) -> Dict[JobSource, JobFetcher]:
    fetchers: Dict[JobSource, JobFetcher] = {
        JobSource.GREENHOUSE: GreenhouseFetcher(ctx),
        JobSource.LEVER: LeverFetcher(ctx),
        JobSource.ASHBY: AshbyFetcher(ctx),
        JobSource.WORKDAY: WorkdayFetcher(ctx),
        JobSource.MICROSOFT: MicrosoftFetcher(ctx),
        JobSource.APPLE: AppleFetcher(ctx),
        JobSource.GOOGLE: GoogleFetcher(ctx),
        JobSource.AMD: AMDFetcher(ctx),
        JobSource.SNAP: SnapFetcher(ctx),
        JobSource.TIKTOK: TikTokFetcher(ctx),
    }
    for src in JobSource:
        if src is JobSource.UNKNOWN or src in fetchers:
            continue
        fetchers[src] = UnsupportedFetcher(ctx, src)
    return fetchers
