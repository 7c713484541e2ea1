"""
Identity rules across fetch cycles: what counts as new, how per-source
results merge, and which postings survive a cleanup pass.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set, Tuple

from jobflare.core.models import Job, now_utc


def filter_new_jobs(jobs: Iterable[Job], stored_ids: Set[str], now: Optional[datetime] = None) -> List[Job]:
    """An id is new when never stored before, or when it is a recent repost."""
    now = now or now_utc()
    return [j for j in jobs if j.id not in stored_ids or j.is_recently_bumped(now)]


def merge_unique(*groups: Iterable[Job]) -> List[Job]:
    """Concatenate result sets; the first occurrence of an id wins."""
    out: List[Job] = []
    seen: Set[str] = set()
    for group in groups:
        for job in group:
            if job.id in seen:
                continue
            seen.add(job.id)
            out.append(job)
    return out


def cleanup_jobs(
    jobs: Iterable[Job],
    stored_ids: Set[str],
    *,
    starred_ids: Set[str],
    applied_ids: Set[str],
    retention_days: int,
    now: Optional[datetime] = None,
) -> Tuple[List[Job], Set[str]]:
    """Drop postings older than the retention window unless starred or applied.

    Returns (kept jobs, stored ids restricted to the kept jobs).
    """
    cutoff = (now or now_utc()) - timedelta(days=retention_days)
    kept = [
        j
        for j in jobs
        if j.reference_date >= cutoff or j.id in starred_ids or j.id in applied_ids
    ]
    kept_ids = {j.id for j in kept}
    return kept, stored_ids & kept_ids
