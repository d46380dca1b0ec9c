"""HTTP fetcher with retries and browser-like identity rotation."""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from urllib.parse import urlparse

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)
from tenacity.wait import wait_base

from sitekb.config import get_settings
from sitekb.core.errors import FetchError, PermanentFetchError, TransientFetchError

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
]

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Referer": "https://www.google.com/",
    "Upgrade-Insecure-Requests": "1",
}

RATE_LIMITED = 429
FORBIDDEN = 403


@dataclass
class FetchResult:
    """A successfully fetched page."""

    url: str
    body: str
    status_code: int
    content_type: str = ""
    last_modified: datetime | None = None

    @property
    def is_html(self) -> bool:
        return not self.content_type or "html" in self.content_type


def _parse_last_modified(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


class _WaitForbiddenCooldown(wait_base):
    """Backoff that adds a fixed cooldown when the last attempt was refused with 403."""

    def __init__(self, backoff: wait_base, cooldown: float):
        self.backoff = backoff
        self.cooldown = cooldown

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.backoff(retry_state)
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, FetchError) and error.status_code == FORBIDDEN:
            delay += self.cooldown
        return delay


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception()
    logger.warning(
        f"Attempt {retry_state.attempt_number} failed for {error.url}: {error}; "
        f"retrying in {retry_state.next_action.sleep:.1f}s"
    )


class Fetcher:
    """Fetch pages with retry, linear backoff and a cooldown after 403s."""

    def __init__(
        self,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        forbidden_cooldown: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
    ):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
        self.max_attempts = max_attempts or settings.fetch_max_attempts
        self.retry_delay = (
            retry_delay if retry_delay is not None else settings.fetch_retry_delay_seconds
        )
        self.forbidden_cooldown = (
            forbidden_cooldown
            if forbidden_cooldown is not None
            else settings.fetch_forbidden_cooldown_seconds
        )
        self.transport = transport
        self.sleep = sleep

    def build_headers(self) -> dict[str, str]:
        """Browser-like headers with a randomly chosen user agent."""
        return {**BROWSER_HEADERS, "User-Agent": random.choice(USER_AGENTS)}

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: Absolute http(s) URL

        Returns:
            Fetched body and status

        Raises:
            PermanentFetchError: Malformed URL or non-retryable 4xx
            TransientFetchError: All attempts failed with retryable errors
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise PermanentFetchError(url, f"Not an absolute http(s) URL: {url}")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=_WaitForbiddenCooldown(
                wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
                self.forbidden_cooldown,
            ),
            retry=retry_if_exception_type(TransientFetchError),
            sleep=self.sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=self.timeout,
            follow_redirects=True,
            headers=self.build_headers(),
        ) as client:
            try:
                async for attempt in retrying:
                    with attempt:
                        return await self._get(client, url)
            except TransientFetchError:
                logger.error(f"All {self.max_attempts} attempts failed for {url}")
                raise

    async def _get(self, client: httpx.AsyncClient, url: str) -> FetchResult:
        """Single attempt, classifying failures as transient or permanent."""
        try:
            response = await client.get(url)
        except httpx.RequestError as e:
            raise TransientFetchError(
                url, f"Failed to fetch {url}: {type(e).__name__}: {e}"
            ) from e

        status = response.status_code
        if response.is_success:
            return FetchResult(
                url=str(response.url),
                body=response.text,
                status_code=status,
                content_type=response.headers.get("content-type", ""),
                last_modified=_parse_last_modified(response.headers.get("last-modified")),
            )

        message = f"Failed to fetch {url}: HTTP {status}"
        if status == FORBIDDEN or status == RATE_LIMITED or status >= 500:
            raise TransientFetchError(url, message, status)
        raise PermanentFetchError(url, message, status)


def get_fetcher() -> Fetcher:
    """Get fetcher instance."""
    return Fetcher()
