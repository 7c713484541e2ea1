"""
Thin requests wrapper shared by every fetcher and the detection cascade.

Converts transport failures into the FetchError taxonomy and applies the
per-request deadline. A `requests.Session` (or anything with the same
get/post signature) can be injected; tests pass fakes here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import requests

from jobflare.core.errors import DecodingError, HTTPStatusError, NetworkError

logger = logging.getLogger("http")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT_S = 15.0


class HttpClient:
    def __init__(self, session: Any = None, timeout_s: float = DEFAULT_TIMEOUT_S):
        self.session = session if session is not None else requests.Session()
        self.timeout_s = float(timeout_s)

    def _headers(self, extra: Optional[Dict[str, str]], accept: str) -> Dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Accept": accept, "Accept-Language": "en-US,en;q=0.9"}
        if extra:
            headers.update(extra)
        return headers

    def _check(self, r: Any, url: str) -> Any:
        status = int(getattr(r, "status_code", 0) or 0)
        if not 200 <= status < 300:
            logger.debug("[http] %s -> HTTP %s", url, status)
            raise HTTPStatusError(status)
        return r

    def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        accept: str = "text/html,application/json",
    ) -> Any:
        try:
            r = self.session.get(
                url,
                params=params,
                headers=self._headers(headers, accept),
                timeout=self.timeout_s,
                allow_redirects=True,
            )
        except requests.RequestException as e:
            raise NetworkError(e) from e
        return self._check(r, url)

    def post(
        self,
        url: str,
        body: Any,
        headers: Optional[Dict[str, str]] = None,
        accept: str = "application/json",
    ) -> Any:
        merged = {"Content-Type": "application/json"}
        merged.update(headers or {})
        try:
            r = self.session.post(
                url,
                json=body,
                headers=self._headers(merged, accept),
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise NetworkError(e) from e
        return self._check(r, url)

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        r = self.get(url, params=params, headers=headers, accept="application/json")
        return _decode_json(r, url)

    def post_json(self, url: str, body: Any, headers: Optional[Dict[str, str]] = None) -> Any:
        r = self.post(url, body, headers=headers)
        return _decode_json(r, url)

    def get_text(self, url: str, headers: Optional[Dict[str, str]] = None) -> Tuple[str, str]:
        """Return (final_url, body text)."""
        r = self.get(url, headers=headers)
        return str(getattr(r, "url", "") or url), r.text or ""


def _decode_json(r: Any, url: str) -> Any:
    try:
        return r.json()
    except ValueError as e:
        preview = (getattr(r, "text", "") or "")[:200]
        logger.debug("[http] %s returned non-JSON body: %r", url, preview)
        raise DecodingError(f"{url}: {e}") from e
