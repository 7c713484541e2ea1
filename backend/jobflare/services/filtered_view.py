"""
Memoized filtered view over the authoritative posting set.

The memo is keyed by (title, location, sources) plus the version of the base
set. Every replacement of the base set bumps the version, so a read after a
write never sees a result computed against the old set.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, FrozenSet, Iterable, List, Optional, Set, Tuple

from jobflare.core.models import BUMP_DISPLAY_WINDOW_S, Job, JobSource, now_utc, parse_filter_keywords

logger = logging.getLogger("filtered_view")

DEFAULT_DISPLAY_WINDOW_S = 48 * 3600


def in_display_window(job: Job, now: datetime, window_s: float) -> bool:
    if job.is_recently_bumped(now, BUMP_DISPLAY_WINDOW_S):
        return True
    return (now - job.reference_date).total_seconds() <= window_s


def compute_filtered(
    jobs: Iterable[Job],
    title_keywords: List[str],
    location_keywords: List[str],
    sources: Optional[FrozenSet[JobSource]],
    now: datetime,
    window_s: float,
) -> List[Job]:
    out: List[Job] = []
    for job in jobs:
        if not in_display_window(job, now, window_s):
            continue
        if title_keywords and not any(k in job.title.lower() for k in title_keywords):
            continue
        if location_keywords and not any(k in (job.location or "").lower() for k in location_keywords):
            continue
        if sources and job.source not in sources:
            continue
        out.append(job)
    return out


MemoKey = Tuple[str, str, Optional[FrozenSet[JobSource]], int]


class FilteredViewCache:
    def __init__(
        self,
        display_window_s: float = DEFAULT_DISPLAY_WINDOW_S,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.display_window_s = float(display_window_s)
        self.clock = clock
        self._lock = threading.Lock()
        self._jobs: Tuple[Job, ...] = ()
        self._version = 0
        self._memo_key: Optional[MemoKey] = None
        self._memo: List[Job] = []
        self.compute_count = 0

    @property
    def jobs(self) -> Tuple[Job, ...]:
        return self._jobs

    @property
    def version(self) -> int:
        return self._version

    def set_jobs(self, jobs: Iterable[Job]) -> None:
        snapshot = tuple(jobs)
        with self._lock:
            self._jobs = snapshot
            self._invalidate_locked()

    def invalidate(self) -> None:
        with self._lock:
            self._invalidate_locked()

    def _invalidate_locked(self) -> None:
        self._version += 1
        self._memo_key = None
        self._memo = []

    def filtered(
        self,
        title: str = "",
        location: str = "",
        sources: Optional[Iterable[JobSource]] = None,
        *,
        starred_ids: Optional[Set[str]] = None,
        applied_ids: Optional[Set[str]] = None,
    ) -> List[Job]:
        """Filtered postings. starred_ids / applied_ids restrict to those ids when given."""
        source_key = frozenset(sources) if sources else None
        with self._lock:
            key: MemoKey = (title or "", location or "", source_key, self._version)
            if key != self._memo_key:
                self._memo = compute_filtered(
                    self._jobs,
                    parse_filter_keywords(title),
                    parse_filter_keywords(location),
                    source_key,
                    self.clock(),
                    self.display_window_s,
                )
                self._memo_key = key
                self.compute_count += 1
                logger.debug("[view] recomputed: %s of %s postings", len(self._memo), len(self._jobs))
            result = self._memo

        if starred_ids is not None:
            result = [j for j in result if j.id in starred_ids]
        if applied_ids is not None:
            result = [j for j in result if j.id in applied_ids]
        return result
