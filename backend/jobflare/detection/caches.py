"""
Domain-keyed detection and extraction caches.

Both caches are advisory: a miss only means the cascade runs again. They are
optionally mirrored to JSON so a restart keeps earlier discoveries. Writes are
last-writer-wins upserts, so concurrent detection of one domain is harmless.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Generic, Optional, TypeVar

from jobflare.core.models import now_utc, parse_iso, to_iso
from jobflare.detection.schema_fetcher import ApiSchema
from jobflare.services.output_files import read_json, write_json

logger = logging.getLogger("detection.cache")

T = TypeVar("T")


@dataclass
class DetectionEntry:
    ats_type: str
    ats_url: str
    detected_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"ats_type": self.ats_type, "ats_url": self.ats_url, "detected_at": to_iso(self.detected_at)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DetectionEntry":
        return cls(d["ats_type"], d["ats_url"], parse_iso(d.get("detected_at")) or now_utc())


@dataclass
class SchemaEntry:
    """What extraction has learned about one domain.

    `schema` is the JSON endpoint AI extraction discovered, if any. `ai_failed`
    marks a recent AI attempt that found nothing.
    """

    schema: Optional[ApiSchema]
    last_attempt: datetime
    ai_attempted: bool = False
    ai_failed: bool = False
    html_extraction_works: bool = False

    @property
    def failed(self) -> bool:
        return self.ai_failed and self.schema is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema.to_dict() if self.schema else None,
            "last_attempt": to_iso(self.last_attempt),
            "ai_attempted": self.ai_attempted,
            "ai_failed": self.ai_failed,
            "html_extraction_works": self.html_extraction_works,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SchemaEntry":
        raw = d.get("schema")
        return cls(
            schema=ApiSchema.from_dict(raw) if isinstance(raw, dict) and raw.get("endpoint") else None,
            last_attempt=parse_iso(d.get("last_attempt")) or now_utc(),
            ai_attempted=bool(d.get("ai_attempted")),
            ai_failed=bool(d.get("ai_failed")),
            html_extraction_works=bool(d.get("html_extraction_works")),
        )


class _DomainCache(Generic[T]):
    entry_type: Any = None

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()
        self._entries: Dict[str, T] = {}
        if path:
            self._load()

    def _load(self) -> None:
        try:
            raw = read_json(self.path, default={}) or {}
        except (OSError, ValueError) as e:
            logger.warning("[cache] failed to read %s: %s (starting empty)", self.path, e)
            return
        for domain, d in raw.items():
            try:
                self._entries[domain] = self.entry_type.from_dict(d)
            except (KeyError, TypeError, ValueError):
                logger.debug("[cache] skipping malformed entry for %s", domain)

    def _persist(self) -> None:
        if not self.path:
            return
        snapshot = {k: v.to_dict() for k, v in self._entries.items()}
        try:
            write_json(self.path, snapshot)
        except OSError as e:
            logger.warning("[cache] failed to write %s: %s", self.path, e)

    def get(self, domain: str) -> Optional[T]:
        with self._lock:
            return self._entries.get((domain or "").lower())

    def put(self, domain: str, entry: T) -> None:
        with self._lock:
            self._entries[(domain or "").lower()] = entry
            self._persist()

    def clear(self, domain: str) -> bool:
        with self._lock:
            removed = self._entries.pop((domain or "").lower(), None) is not None
            if removed:
                self._persist()
        return removed

    def __len__(self) -> int:
        return len(self._entries)


class DetectionCache(_DomainCache[DetectionEntry]):
    entry_type = DetectionEntry

    def record(self, domain: str, ats_type: str, ats_url: str) -> None:
        logger.info("[cache] %s -> %s (%s)", domain, ats_type, ats_url)
        self.put(domain, DetectionEntry(ats_type, ats_url, now_utc()))


class SchemaCache(_DomainCache[SchemaEntry]):
    entry_type = SchemaEntry

    def should_skip_ai(self, domain: str, retry_days: int, now: Optional[datetime] = None) -> bool:
        """True while a previous AI failure for the domain is inside the retry window."""
        entry = self.get(domain)
        if entry is None or not entry.failed:
            return False
        return (now or now_utc()) - entry.last_attempt < timedelta(days=retry_days)

    def cached_schema(self, domain: str) -> Optional[ApiSchema]:
        entry = self.get(domain)
        return entry.schema if entry else None

    def _update(self, domain: str, **changes: Any) -> None:
        current = self.get(domain) or SchemaEntry(schema=None, last_attempt=now_utc())
        self.put(domain, replace(current, **changes))

    def record_failure(self, domain: str) -> None:
        self._update(domain, schema=None, last_attempt=now_utc(), ai_attempted=True, ai_failed=True)

    def record_ai_success(self, domain: str, schema: Optional[ApiSchema] = None) -> None:
        if schema is not None and not schema.domain:
            schema = replace(schema, domain=(domain or "").lower())
        self._update(domain, schema=schema, last_attempt=now_utc(), ai_attempted=True, ai_failed=False)

    def clear_schema(self, domain: str) -> None:
        if self.cached_schema(domain) is None:
            return
        logger.info("[cache] dropping stale schema for %s", domain)
        self._update(domain, schema=None)

    def record_html_success(self, domain: str) -> None:
        self._update(domain, html_extraction_works=True)
