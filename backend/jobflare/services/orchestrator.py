"""
Fetch orchestrator.

Owns the authoritative posting set. Sources (built-in fetchers plus the
composite "boards" source) are fetched with bounded concurrency, each in
isolation; every mutation of the posting set, the stored-id set and the
flag sets happens under one commit lock so readers only ever observe a
fully merged snapshot.

Per-source state: disabled -> idle -> fetching -> idle. A failed fetch keeps
the source's last good result and records an error string for that source.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from jobflare.core.models import Job, JobSource, now_utc, to_iso
from jobflare.fetchers.base import FilterParams, JobFetcher
from jobflare.fetchers.registry import BUILTIN_SOURCES
from jobflare.services.board_monitor import BoardMonitor
from jobflare.services.dedupe import cleanup_jobs, filter_new_jobs, merge_unique
from jobflare.services.filtered_view import FilteredViewCache
from jobflare.services.notifications import LogNotifier, NotificationPolicy, Notifier
from jobflare.services.persistence import Persistence

logger = logging.getLogger("orchestrator")

BOARDS_KEY = "boards"


class SourceState(str, Enum):
    DISABLED = "disabled"
    IDLE = "idle"
    FETCHING = "fetching"


@dataclass
class SourceStatus:
    key: str
    state: SourceState = SourceState.IDLE
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    job_count: int = 0

    @property
    def label(self) -> str:
        if self.key == BOARDS_KEY:
            return "Boards"
        return JobSource.parse(self.key).display_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.key,
            "label": self.label,
            "state": self.state.value,
            "last_success": to_iso(self.last_success),
            "last_error": self.last_error,
            "job_count": self.job_count,
        }


def source_key_for(job: Job) -> str:
    return job.source.value if job.source in BUILTIN_SOURCES else BOARDS_KEY


def filter_params_from_settings(settings: Dict[str, Any]) -> FilterParams:
    try:
        max_pages = max(1, int(settings.get("max_pages") or 5))
    except (TypeError, ValueError):
        max_pages = 5
    return FilterParams(
        title=settings.get("title_filter") or "",
        location=settings.get("location_filter") or "",
        max_pages=max_pages,
    )


class FetchOrchestrator:
    def __init__(
        self,
        persistence: Persistence,
        fetchers: Dict[JobSource, JobFetcher],
        board_monitor: BoardMonitor,
        view: FilteredViewCache,
        notifier: Optional[Notifier] = None,
        policy: Optional[NotificationPolicy] = None,
        *,
        max_concurrency: int = 4,
        source_delay_s: float = 0.5,
        cleanup_retention_days: int = 7,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.persistence = persistence
        self.fetchers = fetchers
        self.board_monitor = board_monitor
        self.view = view
        self.notifier = notifier or LogNotifier()
        self.policy = policy or NotificationPolicy()
        self.source_delay_s = source_delay_s
        self.cleanup_retention_days = cleanup_retention_days
        self.clock = clock

        self._semaphore = asyncio.Semaphore(max(1, int(max_concurrency)))
        self._commit_lock = asyncio.Lock()

        self.results: Dict[str, List[Job]] = {}
        self.statuses: Dict[str, SourceStatus] = {}
        self.stored_ids: Set[str] = set()
        self.starred_ids: Set[str] = set()
        self.applied_ids: Set[str] = set()
        self.last_cycle: Optional[Dict[str, Any]] = None

    # =========================
    # Startup
    # =========================

    def load(self) -> None:
        """Seed in-memory state from persistence; failures start empty."""
        jobs = self.persistence.load_jobs()
        results: Dict[str, List[Job]] = {}
        for job in jobs:
            results.setdefault(source_key_for(job), []).append(job)

        self.results = results
        self.stored_ids = self.persistence.load_seen_ids()
        self.starred_ids = self.persistence.load_starred_job_ids()
        self.applied_ids = self.persistence.load_applied_job_ids()
        for key, group in results.items():
            self._status(key).job_count = len(group)

        self.view.set_jobs(merge_unique(*results.values()))
        logger.info(
            "[orchestrator] loaded %s postings, %s stored ids, %s starred, %s applied",
            len(jobs),
            len(self.stored_ids),
            len(self.starred_ids),
            len(self.applied_ids),
        )

    # =========================
    # Source selection
    # =========================

    def settings(self) -> Dict[str, Any]:
        return self.persistence.get_settings()

    def enabled_source_keys(self, settings: Optional[Dict[str, Any]] = None) -> List[str]:
        settings = settings if settings is not None else self.settings()
        keys: List[str] = []
        for raw in settings.get("enabled_sources") or []:
            source = JobSource.parse(raw)
            if source in BUILTIN_SOURCES and source.value not in keys:
                keys.append(source.value)
        if settings.get("include_boards", True) and any(b.is_enabled for b in self.board_monitor.boards):
            keys.append(BOARDS_KEY)
        return keys

    def known_source_keys(self) -> List[str]:
        return [s.value for s in BUILTIN_SOURCES] + [BOARDS_KEY]

    def _status(self, key: str) -> SourceStatus:
        status = self.statuses.get(key)
        if status is None:
            status = SourceStatus(key=key)
            self.statuses[key] = status
        return status

    def _sync_states(self, enabled: List[str]) -> None:
        for key in self.known_source_keys():
            status = self._status(key)
            if key not in enabled:
                status.state = SourceState.DISABLED
            elif status.state is SourceState.DISABLED:
                status.state = SourceState.IDLE

    # =========================
    # Fetching
    # =========================

    def _fetch_sync(self, key: str, params: FilterParams) -> Tuple[List[Job], Optional[str]]:
        """Blocking fetch for one source. Returns (jobs, partial error)."""
        if key == BOARDS_KEY:
            report = self.board_monitor.fetch_all_boards(params)
            return report.jobs, report.error_message
        fetcher = self.fetchers[JobSource.parse(key)]
        return fetcher.fetch(None, params), None

    async def _fetch_one(self, key: str, params: FilterParams, delay_s: float = 0.0) -> bool:
        if delay_s:
            await asyncio.sleep(delay_s)

        status = self._status(key)
        async with self._semaphore:
            status.state = SourceState.FETCHING
            try:
                jobs, partial_error = await asyncio.to_thread(self._fetch_sync, key, params)
            except Exception as e:
                logger.warning("[orchestrator] %s fetch failed: %s (keeping %s previous postings)",
                               status.label, e, len(self.results.get(key, [])))
                status.last_error = str(e) or e.__class__.__name__
                return False
            finally:
                status.state = SourceState.IDLE

        self.results[key] = list(jobs)
        status.last_success = self.clock()
        status.last_error = partial_error
        status.job_count = len(jobs)
        logger.info("[orchestrator] %s fetched %s postings", status.label, len(jobs))
        return True

    async def run_cycle(self, trigger: str = "manual") -> Dict[str, Any]:
        """Fetch every enabled source, commit the merged set, then clean up."""
        settings = self.settings()
        params = filter_params_from_settings(settings)
        keys = self.enabled_source_keys(settings)
        self._sync_states(keys)

        logger.info("[orchestrator] cycle (%s): sources=%s", trigger, ",".join(keys) or "-")
        outcomes = await asyncio.gather(
            *(self._fetch_one(k, params, i * self.source_delay_s) for i, k in enumerate(keys))
        )

        summary = await self._commit(keys, settings)
        summary.update(
            {
                "trigger": trigger,
                "succeeded": [k for k, ok in zip(keys, outcomes) if ok],
                "failed": [k for k, ok in zip(keys, outcomes) if not ok],
            }
        )
        summary["removed"] = await self.cleanup()
        self.last_cycle = summary
        return summary

    async def fetch_source(self, key: str) -> Dict[str, Any]:
        """Refresh one source on its own cadence and recommit the merged set."""
        if key not in self.known_source_keys():
            raise KeyError(key)

        settings = self.settings()
        keys = self.enabled_source_keys(settings)
        self._sync_states(keys)
        if key not in keys:
            return {"source": key, "skipped": True, "reason": "disabled"}

        ok = await self._fetch_one(key, filter_params_from_settings(settings))
        summary = await self._commit(keys, settings)
        summary.update({"source": key, "ok": ok})
        return summary

    # =========================
    # Commit
    # =========================

    def _persist(self, jobs: List[Job], stored_ids: Set[str]) -> None:
        self.persistence.save_jobs(jobs)
        self.persistence.save_seen_ids(stored_ids)

    async def _commit(self, keys: List[str], settings: Dict[str, Any]) -> Dict[str, Any]:
        async with self._commit_lock:
            now = self.clock()
            merged = merge_unique(*(self.results.get(k, []) for k in keys))
            new_jobs = filter_new_jobs(merged, self.stored_ids, now)

            self.view.set_jobs(merged)
            self.stored_ids |= {j.id for j in new_jobs}
            await asyncio.to_thread(self._persist, list(merged), set(self.stored_ids))

            notified = 0
            if settings.get("notifications_enabled", True) and new_jobs:
                notified = self._notify(new_jobs, now)

        logger.info(
            "[orchestrator] committed %s postings (%s new, %s notified)",
            len(merged),
            len(new_jobs),
            notified,
        )
        return {"total": len(merged), "new": len(new_jobs), "notified": notified}

    def _notify(self, new_jobs: List[Job], now: datetime) -> int:
        selected = self.policy.select(new_jobs, now)
        if not selected:
            return 0
        self.policy.mark_notified(selected)
        try:
            self.notifier.send_grouped_notification(selected)
        except Exception:
            logger.exception("[orchestrator] notification delivery failed")
        return len(selected)

    # =========================
    # Cleanup
    # =========================

    async def cleanup(self, now: Optional[datetime] = None) -> int:
        """Drop aged postings from the set and from per-source results."""
        async with self._commit_lock:
            current = list(self.view.jobs)
            kept, self.stored_ids = cleanup_jobs(
                current,
                self.stored_ids,
                starred_ids=self.starred_ids,
                applied_ids=self.applied_ids,
                retention_days=self.cleanup_retention_days,
                now=now or self.clock(),
            )
            removed = len(current) - len(kept)
            if not removed:
                return 0

            kept_ids = {j.id for j in kept}
            for key, group in self.results.items():
                self.results[key] = [j for j in group if j.id in kept_ids]
                self._status(key).job_count = len(self.results[key])

            self.view.set_jobs(kept)
            await asyncio.to_thread(self._persist, list(kept), set(self.stored_ids))

        logger.info("[orchestrator] cleanup removed %s postings older than %s days",
                    removed, self.cleanup_retention_days)
        return removed

    # =========================
    # Flags
    # =========================

    def set_starred(self, job_id: str, starred: bool) -> bool:
        if starred:
            self.starred_ids.add(job_id)
        else:
            self.starred_ids.discard(job_id)
        return self.persistence.save_starred_job_ids(self.starred_ids)

    def set_applied(self, job_id: str, applied: bool) -> bool:
        if applied:
            self.applied_ids.add(job_id)
        else:
            self.applied_ids.discard(job_id)
        return self.persistence.save_applied_job_ids(self.applied_ids)

    def has_job(self, job_id: str) -> bool:
        return any(j.id == job_id for j in self.view.jobs)

    # =========================
    # Status
    # =========================

    @property
    def error_message(self) -> Optional[str]:
        parts = []
        for key in self.known_source_keys():
            status = self.statuses.get(key)
            if status is None or not status.last_error or status.state is SourceState.DISABLED:
                continue
            # Board errors are already labelled per board.
            if key == BOARDS_KEY:
                parts.append(status.last_error)
            else:
                parts.append(f"{status.label}: {status.last_error}")
        return " | ".join(parts) or None

    def status(self) -> Dict[str, Any]:
        return {
            "job_count": len(self.view.jobs),
            "stored_ids": len(self.stored_ids),
            "sources": [self._status(k).to_dict() for k in self.known_source_keys()],
            "error_message": self.error_message,
            "last_cycle": self.last_cycle,
        }
