"""
Fetch error taxonomy.

Every fetcher and the HTTP helper raise subclasses of FetchError. The
orchestrator converts them into per-source strings; nothing here is fatal.
"""

from __future__ import annotations

from typing import Optional


class FetchError(Exception):
    """Base class for all source fetch failures."""


class InvalidURLError(FetchError):
    def __init__(self, url: str = ""):
        self.url = url
        super().__init__(f"Invalid URL: {url}" if url else "Invalid URL")


class InvalidResponseError(FetchError):
    def __init__(self, details: str = ""):
        self.details = details
        super().__init__(f"Invalid response from server{': ' + details if details else ''}")


class HTTPStatusError(FetchError):
    def __init__(self, status: int):
        self.status = int(status)
        super().__init__(f"HTTP error {self.status}")


class DecodingError(FetchError):
    def __init__(self, details: str):
        self.details = details
        super().__init__(f"Failed to decode response: {details}")


class APIError(FetchError):
    """Upstream answered 200 but the payload reports an error."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"API error: {message}")


class NetworkError(FetchError):
    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"Network error: {cause}" if cause else "Network error")


class NotImplementedSourceError(FetchError):
    def __init__(self, source_name: str):
        self.source_name = source_name
        super().__init__(f"{source_name} fetcher not implemented yet")


class NoJobsError(FetchError):
    def __init__(self, source_name: str = ""):
        self.source_name = source_name
        super().__init__(f"No jobs found{' for ' + source_name if source_name else ''}")
