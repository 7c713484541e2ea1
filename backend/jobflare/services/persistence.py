"""
Best-effort persistence facade.

Loads that fail return empty defaults; saves that fail are logged and leave
in-memory state untouched. Nothing here raises to the caller.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any, Callable, Dict, Iterable, List, Set, TypeVar

from jobflare.core.models import BoardConfig, Job
from jobflare.db import repo_boards, repo_flags, repo_jobs, repo_settings

logger = logging.getLogger("persistence")

T = TypeVar("T")

DEFAULT_USER_ID = "default"

_ERRORS = (sqlite3.Error, ValueError, KeyError, TypeError, OSError)


class Persistence:
    def __init__(self, con: sqlite3.Connection):
        self.con = con
        self._lock = threading.RLock()

    def _load(self, label: str, fn: Callable[[], T], default: T) -> T:
        with self._lock:
            try:
                return fn()
            except _ERRORS as e:
                logger.warning("[persistence] load %s failed: %s (using defaults)", label, e)
                return default

    def _save(self, label: str, fn: Callable[[], Any]) -> bool:
        with self._lock:
            try:
                fn()
                return True
            except _ERRORS as e:
                logger.error("[persistence] save %s failed: %s", label, e)
                return False

    # -------------------------
    # Jobs
    # -------------------------

    def load_jobs(self) -> List[Job]:
        return self._load("jobs", lambda: repo_jobs.load_jobs(self.con), [])

    def save_jobs(self, jobs: Iterable[Job]) -> bool:
        jobs = list(jobs)
        return self._save("jobs", lambda: repo_jobs.save_jobs(self.con, jobs))

    def load_seen_ids(self) -> Set[str]:
        return self._load("seen ids", lambda: repo_jobs.load_seen_ids(self.con), set())

    def save_seen_ids(self, ids: Iterable[str]) -> bool:
        ids = list(ids)
        return self._save("seen ids", lambda: repo_jobs.save_seen_ids(self.con, ids))

    # -------------------------
    # Boards
    # -------------------------

    def load_board_configs(self) -> List[BoardConfig]:
        return self._load("boards", lambda: repo_boards.list_boards(self.con), [])

    def save_board_configs(self, boards: Iterable[BoardConfig]) -> bool:
        boards = list(boards)
        return self._save("boards", lambda: repo_boards.save_boards(self.con, boards))

    # -------------------------
    # Starred / applied
    # -------------------------

    def load_starred_job_ids(self) -> Set[str]:
        return self._load("starred", lambda: repo_flags.load_flagged(self.con, "starred"), set())

    def save_starred_job_ids(self, ids: Iterable[str]) -> bool:
        ids = list(ids)
        return self._save("starred", lambda: repo_flags.save_flagged(self.con, "starred", ids))

    def load_applied_job_ids(self) -> Set[str]:
        return self._load("applied", lambda: repo_flags.load_flagged(self.con, "applied"), set())

    def save_applied_job_ids(self, ids: Iterable[str]) -> bool:
        ids = list(ids)
        return self._save("applied", lambda: repo_flags.save_flagged(self.con, "applied", ids))

    # -------------------------
    # Settings
    # -------------------------

    def get_settings(self) -> Dict[str, Any]:
        return self._load(
            "settings",
            lambda: repo_settings.get_settings(self.con, DEFAULT_USER_ID),
            dict(repo_settings.DEFAULT_SETTINGS),
        )

    def update_settings(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            try:
                return repo_settings.update_settings(self.con, DEFAULT_USER_ID, changes)
            except _ERRORS as e:
                logger.error("[persistence] save settings failed: %s", e)
                merged = self.get_settings()
                merged.update(changes or {})
                return merged
