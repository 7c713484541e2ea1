"""
Per-source "first seen" tracking.

Each source gets one JSON file holding [{"id", "firstSeenDate"}]. The store is
the durable authority for how long a posting has been known: an id keeps its
first-seen date until it ages out of the retention window, after which a
rediscovery counts as new.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from jobflare.core.models import Job, now_utc, parse_iso, to_iso
from jobflare.services.output_files import read_json, write_json

logger = logging.getLogger("tracking")

DEFAULT_RETENTION_DAYS = 30


def tracking_filename(source_name: str) -> str:
    return source_name.lower().replace(" ", "") + "JobTracking.json"


class JobTrackingStore:
    def __init__(self, directory: str, retention_days: int = DEFAULT_RETENTION_DAYS):
        self.directory = directory
        self.retention_days = int(retention_days)
        self._lock = threading.Lock()

    def path_for(self, source_name: str) -> str:
        return os.path.join(self.directory, tracking_filename(source_name))

    def load(self, source_name: str) -> Dict[str, datetime]:
        path = self.path_for(source_name)
        try:
            raw = read_json(path, default=[])
        except (OSError, ValueError) as e:
            logger.warning("[tracking] failed to read %s: %s (starting empty)", path, e)
            return {}

        out: Dict[str, datetime] = {}
        for entry in raw or []:
            if not isinstance(entry, dict):
                continue
            job_id = entry.get("id")
            seen = parse_iso(entry.get("firstSeenDate"))
            if job_id and seen:
                out[str(job_id)] = seen
        return out

    def save(
        self,
        jobs: Iterable[Job],
        source_name: str,
        current_date: Optional[datetime] = None,
        retention_days: Optional[int] = None,
    ) -> Dict[str, datetime]:
        """Merge the ids of `jobs` in at `current_date`, prune, and persist.

        Existing first-seen dates are never moved forward. Returns the stored map.
        """
        current_date = current_date or now_utc()
        keep_days = self.retention_days if retention_days is None else int(retention_days)
        cutoff = current_date - timedelta(days=keep_days)

        with self._lock:
            stored = self.load(source_name)
            for job in jobs:
                stored.setdefault(job.id, current_date)

            pruned = {k: v for k, v in stored.items() if v >= cutoff}
            dropped = len(stored) - len(pruned)
            if dropped:
                logger.info("[tracking] %s: pruned %s entries older than %s days", source_name, dropped, keep_days)

            payload = [{"id": k, "firstSeenDate": to_iso(v)} for k, v in pruned.items()]
            path = self.path_for(source_name)
            try:
                write_json(path, payload)
            except OSError as e:
                logger.warning("[tracking] failed to write %s: %s", path, e)
            return pruned

    def clear(self, source_name: str) -> None:
        path = self.path_for(source_name)
        with self._lock:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
