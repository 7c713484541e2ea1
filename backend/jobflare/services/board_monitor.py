"""
User-configured job boards.

The board list is owned here and persisted as the single source of truth.
Every enabled board goes through the detection cascade; a board that fails
keeps its last good postings so one broken site never blanks the list.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from jobflare.core.models import BoardConfig, Job, JobSource, now_utc
from jobflare.detection.caches import DetectionCache, SchemaCache
from jobflare.detection.cascade import DetectionCascade, DetectionResult
from jobflare.detection.status import StatusListener
from jobflare.fetchers.base import FilterParams
from jobflare.services.dedupe import merge_unique
from jobflare.services.persistence import Persistence

logger = logging.getLogger("board_monitor")

EXPORT_SEPARATOR = " | "


class BoardError(ValueError):
    pass


@dataclass
class ImportResult:
    added: List[BoardConfig] = field(default_factory=list)
    skipped_duplicates: int = 0
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "added": [b.to_dict() for b in self.added],
            "skipped_duplicates": self.skipped_duplicates,
            "failed": list(self.failed),
        }


@dataclass
class BoardFetchReport:
    jobs: List[Job]
    # board id -> "{board name}: {error}"
    errors: Dict[str, str]

    @property
    def error_message(self) -> Optional[str]:
        if not self.errors:
            return None
        return " | ".join(self.errors.values())


def _url_key(url: str) -> str:
    return (url or "").strip().rstrip("/").lower()


class BoardMonitor:
    def __init__(
        self,
        persistence: Persistence,
        cascade: DetectionCascade,
        detection_cache: DetectionCache,
        schema_cache: SchemaCache,
        board_delay_s: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.persistence = persistence
        self.cascade = cascade
        self.detection_cache = detection_cache
        self.schema_cache = schema_cache
        self.board_delay_s = board_delay_s
        self.sleep = sleep
        self._lock = threading.RLock()
        self._boards: List[BoardConfig] = persistence.load_board_configs()
        self._last_results: Dict[str, List[Job]] = {}

    # -------------------------
    # Board list
    # -------------------------

    @property
    def boards(self) -> List[BoardConfig]:
        with self._lock:
            return list(self._boards)

    def get(self, board_id: str) -> Optional[BoardConfig]:
        with self._lock:
            return next((b for b in self._boards if b.id == board_id), None)

    def _save(self) -> None:
        self.persistence.save_board_configs(self._boards)

    def _has_url(self, url: str) -> bool:
        key = _url_key(url)
        return any(_url_key(b.url) == key for b in self._boards)

    def add_board(self, name: str, url: str, is_enabled: bool = True) -> BoardConfig:
        board = BoardConfig.create(name, url, is_enabled=is_enabled)
        if board is None:
            raise BoardError(f"Invalid URL: {url}")
        with self._lock:
            if self._has_url(board.url):
                raise BoardError(f"Board already exists: {board.url}")
            self._boards.append(board)
            self._save()
        logger.info("[boards] added %s (%s, %s)", board.name, board.url, board.source.display_name)
        return board

    def remove_board(self, board_id: str) -> bool:
        with self._lock:
            board = self.get(board_id)
            if board is None:
                return False
            self._boards = [b for b in self._boards if b.id != board_id]
            self._last_results.pop(board_id, None)
            self._save()

        # Re-adding the domain must start detection from scratch.
        self.detection_cache.clear(board.domain)
        self.schema_cache.clear(board.domain)
        logger.info("[boards] removed %s; cleared caches for %s", board.name, board.domain)
        return True

    def update_board(
        self, board_id: str, name: Optional[str] = None, is_enabled: Optional[bool] = None
    ) -> Optional[BoardConfig]:
        with self._lock:
            board = self.get(board_id)
            if board is None:
                return None
            if name is not None and name.strip():
                board.name = name.strip()
            if is_enabled is not None:
                board.is_enabled = bool(is_enabled)
                if not board.is_enabled:
                    self._last_results.pop(board_id, None)
            self._save()
            return board

    # -------------------------
    # Import / export
    # -------------------------

    def export_boards(self) -> str:
        lines = []
        for b in self.boards:
            status = "enabled" if b.is_enabled else "disabled"
            lines.append(EXPORT_SEPARATOR.join([b.url, b.name, status]))
        return "\n".join(lines)

    def import_boards(self, text: str) -> ImportResult:
        result = ImportResult()
        with self._lock:
            for raw_line in (text or "").splitlines():
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                parts = [p.strip() for p in line.split("|")]
                if len(parts) < 2 or not parts[0]:
                    result.failed.append(line)
                    continue

                url, name = parts[0], parts[1]
                enabled = not (len(parts) > 2 and parts[2].lower() == "disabled")
                board = BoardConfig.create(name, url, is_enabled=enabled)
                if board is None:
                    result.failed.append(line)
                    continue
                if self._has_url(board.url):
                    result.skipped_duplicates += 1
                    continue
                self._boards.append(board)
                result.added.append(board)

            if result.added:
                self._save()

        logger.info(
            "[boards] import: %s added, %s duplicates, %s failed",
            len(result.added),
            result.skipped_duplicates,
            len(result.failed),
        )
        return result

    # -------------------------
    # Fetching
    # -------------------------

    def fetch_board(
        self,
        board: BoardConfig,
        params: FilterParams,
        listener: Optional[StatusListener] = None,
    ) -> DetectionResult:
        result = self.cascade.detect_and_fetch(
            board.effective_url, params, listener=listener, company_name=board.name
        )
        for job in result.jobs:
            if not job.company_name:
                job.company_name = board.name

        with self._lock:
            board.last_fetched = now_utc()
            board.parsing_method = result.method
            if result.detected_ats_url and result.detected_ats_url != board.url:
                board.detected_ats_url = result.detected_ats_url
                board.detected_ats_type = result.detected_ats_type
                if board.source is JobSource.UNKNOWN:
                    logger.info("[boards] %s resolved to %s", board.name, result.detected_ats_url)
            self._last_results[board.id] = list(result.jobs)
            self._save()
        return result

    def fetch_all_boards(self, params: FilterParams) -> BoardFetchReport:
        """Sequential over enabled boards with a polite delay between them."""
        errors: Dict[str, str] = {}
        enabled = [b for b in self.boards if b.is_enabled]

        for index, board in enumerate(enabled):
            if index:
                self.sleep(self.board_delay_s)
            try:
                result = self.fetch_board(board, params)
                logger.info("[boards] %s: %s jobs via %s", board.name, len(result.jobs), result.method.value)
            except Exception as e:
                logger.warning("[boards] %s failed: %s", board.name, e)
                errors[board.id] = f"{board.name}: {e}"

        with self._lock:
            groups = [self._last_results.get(b.id, []) for b in enabled]
        return BoardFetchReport(jobs=merge_unique(*groups), errors=errors)
