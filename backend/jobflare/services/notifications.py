"""
Notification selection and delivery.

Delivery is a collaborator (`Notifier`); the engine only decides which new
postings are worth a notification. A brand-new board shows up with hundreds
of first-seen postings, so only postings that are actually recent pass.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from jobflare.core.models import Job, now_utc

logger = logging.getLogger("notifications")

DEFAULT_WINDOW_S = 2 * 3600
DEFAULT_GROUP_THROTTLE = 10
# Postings without a posting date must have been known this long.
MIN_FIRST_SEEN_AGE_S = 60


class Notifier:
    def send_grouped_notification(self, jobs: List[Job]) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Default delivery: one log line per batch plus one per posting."""

    def send_grouped_notification(self, jobs: List[Job]) -> None:
        if not jobs:
            return
        companies = sorted({j.company_name or j.source.display_name for j in jobs})
        logger.info("[notify] %s new job(s) at %s", len(jobs), ", ".join(companies))
        for job in jobs[:20]:
            logger.info("[notify]   %s | %s | %s", job.title, job.location, job.url)


def _group_key(job: Job) -> Tuple[str, str]:
    return job.source.value, (job.company_name or "").lower()


class NotificationPolicy:
    def __init__(
        self,
        window_s: float = DEFAULT_WINDOW_S,
        group_throttle: int = DEFAULT_GROUP_THROTTLE,
    ):
        self.window_s = float(window_s)
        self.group_throttle = int(group_throttle)
        self.notified_ids: Set[str] = set()

    def select(self, new_jobs: Iterable[Job], now: Optional[datetime] = None) -> List[Job]:
        now = now or now_utc()
        new_jobs = [j for j in new_jobs if j.id not in self.notified_ids]
        group_sizes = Counter(_group_key(j) for j in new_jobs)

        selected: List[Job] = []
        for job in new_jobs:
            if job.posting_date is not None:
                if (now - job.posting_date).total_seconds() <= self.window_s:
                    selected.append(job)
                continue

            # Undated postings: a large batch from one company is a first
            # sighting of an existing board, not a burst of new jobs.
            if group_sizes[_group_key(job)] > self.group_throttle:
                continue
            age = (now - job.first_seen_date).total_seconds()
            if MIN_FIRST_SEEN_AGE_S < age <= self.window_s:
                selected.append(job)

        throttled = len(new_jobs) - len(selected)
        if throttled:
            logger.debug("[notify] %s new postings outside the notification window", throttled)
        return selected

    def mark_notified(self, jobs: Iterable[Job]) -> None:
        self.notified_ids.update(j.id for j in jobs)
