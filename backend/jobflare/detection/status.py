from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from jobflare.core.models import Job, now_utc, to_iso
from jobflare.detection.schema_fetcher import ApiSchema

logger = logging.getLogger("detection.status")

StatusListener = Callable[["StatusEvent"], None]


@dataclass
class StatusEvent:
    step: str
    message: str
    at: str = field(default_factory=lambda: to_iso(now_utc()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class StatusReporter:
    """Collects progress events and forwards them to an optional listener.

    Listener failures are logged and dropped; the caller never sees them.
    """

    def __init__(self, listener: Optional[StatusListener] = None):
        self.listener = listener
        self.events: List[StatusEvent] = []

    def __call__(self, step: str, message: str) -> None:
        event = StatusEvent(step=step, message=message)
        self.events.append(event)
        logger.debug("[cascade] %s: %s", step, message)
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception:
            logger.exception("[cascade] status listener failed")

    def child(self, step: str) -> Callable[[str], None]:
        return lambda message: self(step, message)


@dataclass
class AIExtraction:
    jobs: List[Job]
    # JSON endpoint behind the page, when the extractor found one worth replaying.
    schema: Optional[ApiSchema] = None


class AIJobExtractor:
    """Collaborator for AI-assisted extraction.

    Implementations may take much longer than other cascade steps and may call
    `progress` any number of times before returning. Returning a schema lets
    later cycles call the endpoint directly instead of asking again.
    """

    def parse_jobs(
        self,
        url: str,
        title_filter: str,
        location_filter: str,
        progress: Callable[[str], None],
    ) -> AIExtraction:
        raise NotImplementedError
