"""
HTTP Retry - Single fetch step shared by the manifest, key and segment stages.

Every HTTP GET the downloader performs goes through fetch_bytes(), which turns
transport failures and non-success statuses into stream errors. Retrying is
opt-in: pass a RetryPolicy to wrap the same fetch in tenacity's exponential
backoff. Without one, a single failed attempt is fatal.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from stream_errors import StreamNetworkError, StreamStatusError

logger = logging.getLogger(__name__)

# Upper bound for a single backoff sleep
MAX_BACKOFF = 30.0


def is_retryable(exc: BaseException) -> bool:
    """Network errors and 5xx responses are transient; everything else is not."""
    if isinstance(exc, StreamNetworkError):
        return True
    if isinstance(exc, StreamStatusError):
        return exc.status_code >= 500
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff around one fetch step."""
    max_attempts: int = 3
    backoff: float = 2.0

    def attempts(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=MAX_BACKOFF),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )


async def _fetch_once(
    client: httpx.AsyncClient,
    url: str,
    stage: str,
    segment_index: Optional[int],
) -> bytes:
    try:
        resp = await client.get(url)
    except httpx.TransportError as e:
        raise StreamNetworkError(f"GET {url} failed: {e}", stage, segment_index) from e

    if not resp.is_success:
        raise StreamStatusError(resp.status_code, resp.reason_phrase, stage, segment_index)
    return resp.content


async def fetch_bytes(
    client: httpx.AsyncClient,
    url: str,
    stage: str,
    segment_index: Optional[int] = None,
    retry: Optional[RetryPolicy] = None,
) -> bytes:
    """
    GET a URL and return the response body.

    Args:
        client: Shared HTTP client (carries timeout and proxy settings)
        url: Absolute URL to fetch
        stage: Stage name recorded on any raised error
        segment_index: Position of the segment in the manifest, if any
        retry: Optional retry policy; None means a single attempt

    Raises:
        StreamNetworkError: connection failure or timeout
        StreamStatusError: non-2xx response
    """
    if retry is None or retry.max_attempts <= 1:
        return await _fetch_once(client, url, stage, segment_index)

    async for attempt in retry.attempts():
        with attempt:
            return await _fetch_once(client, url, stage, segment_index)
