"""
HTTP utilities for the data pipeline.

Provides HTTP fetching with retry on transient network failures, conditional
requests for cached archives, and proper error handling.
"""

from pathlib import Path
from typing import Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)
from loguru import logger

from georesolver.config import settings


DEFAULT_HEADERS = {
    "User-Agent": "GeoResolver-DataUpdater/1.0",
    "Accept": "application/zip, application/json, application/geo+json, */*",
}


class HTTPError(Exception):
    """Custom HTTP error with status code."""

    def __init__(self, message: str, status_code: int = None, response: httpx.Response = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RateLimitError(HTTPError):
    """Raised when rate limited by a mirror."""
    pass


@retry(
    stop=stop_after_attempt(settings.pipeline.http_max_retries),
    wait=wait_exponential(multiplier=settings.pipeline.http_retry_delay, min=1, max=60),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
    reraise=True,
)
def fetch_with_retry(
    url: str,
    headers: Optional[dict] = None,
    timeout: Optional[int] = None,
    client: Optional[httpx.Client] = None,
) -> httpx.Response:
    """
    GET a URL with automatic retry on transient failures.

    A 304 Not Modified is returned as-is so callers doing conditional
    requests can reuse their cached copy.

    Args:
        url: URL to fetch
        headers: Additional headers to include
        timeout: Request timeout in seconds
        client: Optional pre-built client (tests inject a MockTransport here)

    Returns:
        httpx.Response object

    Raises:
        HTTPError: For HTTP errors (4xx, 5xx)
        RateLimitError: When rate limited (429)
        httpx.TimeoutException: On timeout after retries
    """
    request_headers = {**DEFAULT_HEADERS, **(headers or {})}
    timeout = timeout or settings.pipeline.http_timeout

    logger.debug(f"Fetching GET {url}")

    if client is not None:
        response = client.get(url, headers=request_headers)
    else:
        with httpx.Client(timeout=timeout, follow_redirects=True) as owned:
            response = owned.get(url, headers=request_headers)

    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After", "60")
        raise RateLimitError(
            f"Rate limited by {url}. Retry after {retry_after}s",
            status_code=429,
            response=response,
        )

    if response.status_code >= 400:
        raise HTTPError(
            f"HTTP {response.status_code} for {url}: {response.text[:200]}",
            status_code=response.status_code,
            response=response,
        )

    logger.debug(f"Fetched {url} ({response.status_code}, {len(response.content)} bytes)")
    return response


def atomic_write_bytes(dest_path: Path, content: bytes) -> Path:
    """
    Write bytes to file atomically.

    Args:
        dest_path: Final destination path
        content: Bytes to write

    Returns:
        Path to written file
    """
    dest_path = Path(dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    temp_path = dest_path.with_suffix(dest_path.suffix + ".tmp")

    try:
        temp_path.write_bytes(content)
        temp_path.replace(dest_path)
        return dest_path
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise
