from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from jobflare.core.http import HttpClient
from jobflare.core.models import Job, JobSource
from jobflare.db.conn import connect
from jobflare.db.schema import init_db
from jobflare.fetchers.base import FetchContext
from jobflare.services.persistence import Persistence
from jobflare.services.tracking import JobTrackingStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text="", url="", cookies=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.url = url
        self.cookies = cookies or {}

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json


class FakeSession:
    """Routes by (method, url without query). Unrouted URLs answer 404."""

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Any]] = None):
        self.routes: Dict[Tuple[str, str], Any] = dict(routes or {})
        self.calls: List[Tuple[str, str, Any]] = []

    def add(self, method: str, url: str, response: Any) -> None:
        self.routes[(method.upper(), url)] = response

    def _respond(self, method: str, url: str, payload: Any) -> FakeResponse:
        self.calls.append((method, url, payload))
        base = url.split("?", 1)[0]
        key = (method, url) if (method, url) in self.routes else (method, base)
        if key not in self.routes:
            return FakeResponse(404, text="not found", url=url)
        handler = self.routes[key]
        if handler is None:
            return FakeResponse(404, text="not found", url=url)
        if callable(handler):
            return handler(url, payload)
        if isinstance(handler, FakeResponse):
            if not handler.url:
                handler.url = url
            return handler
        return FakeResponse(200, json_data=handler, url=url)

    def get(self, url, params=None, headers=None, timeout=None, allow_redirects=True):
        return self._respond("GET", url, params)

    def post(self, url, json=None, headers=None, timeout=None):
        return self._respond("POST", url, json)

    def urls(self, method: Optional[str] = None) -> List[str]:
        return [u for m, u, _ in self.calls if method is None or m == method]


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def http(session) -> HttpClient:
    return HttpClient(session=session, timeout_s=1)


@pytest.fixture
def tracking(tmp_path) -> JobTrackingStore:
    return JobTrackingStore(str(tmp_path / "tracking"))


@pytest.fixture
def ctx(http, tracking) -> FetchContext:
    return FetchContext(http=http, tracking=tracking, page_delay_s=0, sleep=lambda s: None)


@pytest.fixture
def persistence() -> Persistence:
    con = connect(":memory:")
    init_db(con)
    return Persistence(con)


@pytest.fixture
def make_job() -> Callable[..., Job]:
    def _make(
        job_id: str,
        title: str = "Software Engineer",
        location: str = "Seattle, WA",
        posting_date: Optional[datetime] = None,
        first_seen: Optional[datetime] = None,
        source: JobSource = JobSource.GREENHOUSE,
        **kwargs: Any,
    ) -> Job:
        return Job(
            id=job_id,
            title=title,
            location=location,
            posting_date=posting_date,
            url=f"https://example.com/jobs/{job_id}",
            source=source,
            first_seen_date=first_seen or NOW,
            **kwargs,
        )

    return _make


def hours_ago(hours: float, now: datetime = NOW) -> datetime:
    return now - timedelta(hours=hours)
