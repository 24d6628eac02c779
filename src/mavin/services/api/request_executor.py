"""API request executor.

Handles HTTP request execution with rate limiting, retries and response
parsing for the provider clients.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
import urllib.parse
from typing import TYPE_CHECKING, Any

import aiohttp

from mavin.core.exceptions import ProviderError
from mavin.core.logger import Loggable

if TYPE_CHECKING:
    from mavin.services.api.api_base import EnhancedRateLimiter

WAIT_TIME_LOG_THRESHOLD = 0.1
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR = 500
API_RESPONSE_LOG_LIMIT = 500
MAX_RETRY_DELAY = 10.0
SECURE_RANDOM = secrets.SystemRandom()

RETRYABLE_ERRORS = (
    aiohttp.ClientConnectorError,
    aiohttp.ServerDisconnectedError,
    asyncio.TimeoutError,
)


class _RetryableStatusError(Exception):
    def __init__(self, status: int, snippet: str) -> None:
        super().__init__(f"HTTP {status}: {snippet[:200]}")
        self.status = status


class ApiRequestExecutor(Loggable):
    """Executes provider HTTP requests.

    - Rate limiting per provider
    - Retry with jittered exponential backoff on 429, 5xx and connection errors
    - 404 and non-JSON bodies are "no result" (None)
    - Anything else that fails raises ``ProviderError`` so the caller can
      tell a transport failure apart from a miss
    """

    def __init__(
        self,
        *,
        rate_limiters: dict[str, EnhancedRateLimiter],
        max_retries: int,
        retry_delay: float,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the request executor.

        Args:
            rate_limiters: Provider name to rate limiter
            max_retries: Retries after the first attempt
            retry_delay: Base delay between retries (seconds)
            console_logger: Logger for debug output
            error_logger: Logger for warnings

        """
        super().__init__(console_logger, error_logger)
        self.rate_limiters = rate_limiters
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session: aiohttp.ClientSession | None = None

        self.request_counts: dict[str, int] = {}
        self.api_call_durations: dict[str, list[float]] = {}

    def set_session(self, session: aiohttp.ClientSession | None) -> None:
        """Set the aiohttp session for making requests."""
        self.session = session

    async def execute_request(
        self,
        provider: str,
        url: str,
        params: dict[str, str] | None = None,
        *,
        headers: dict[str, str] | None = None,
        method: str = "GET",
        data: dict[str, str] | None = None,
    ) -> dict[str, Any] | None:
        """Execute one logical request, retrying transient failures.

        Returns:
            Parsed JSON object, or None for 404 / non-JSON responses.

        Raises:
            ProviderError: On non-retryable HTTP errors or when retries are exhausted.

        """
        if self.session is None or self.session.closed:
            raise ProviderError(provider, "HTTP session not initialized or closed")

        log_url = url + (f"?{urllib.parse.urlencode(params, safe=':/')}" if params else "")
        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                return await self._execute_single_request(
                    provider, url, params, headers=headers, method=method, data=data, attempt=attempt, log_url=log_url
                )
            except (_RetryableStatusError, *RETRYABLE_ERRORS) as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                delay = min(self.retry_delay * (2**attempt) * (0.8 + SECURE_RANDOM.random() * 0.4), MAX_RETRY_DELAY)
                self.console_logger.warning(
                    "[%s] %s, retrying %d/%d in %.2fs",
                    provider,
                    type(e).__name__,
                    attempt + 1,
                    self.max_retries,
                    delay,
                )
                await asyncio.sleep(delay)
            except aiohttp.ClientError as e:
                raise ProviderError(provider, f"Request to {log_url} failed: {e}") from e

        status = last_error.status if isinstance(last_error, _RetryableStatusError) else None
        raise ProviderError(provider, f"Request to {log_url} failed after {self.max_retries + 1} attempts: {last_error}", status)

    async def _execute_single_request(
        self,
        provider: str,
        url: str,
        params: dict[str, str] | None,
        *,
        headers: dict[str, str] | None,
        method: str,
        data: dict[str, str] | None,
        attempt: int,
        log_url: str,
    ) -> dict[str, Any] | None:
        assert self.session is not None
        if limiter := self.rate_limiters.get(provider):
            wait_time = await limiter.acquire()
            if wait_time > WAIT_TIME_LOG_THRESHOLD:
                self.console_logger.debug("[%s] Waited %.3fs for rate limiting", provider, wait_time)

        self.request_counts[provider] = self.request_counts.get(provider, 0) + 1
        start_time = time.monotonic()
        async with self.session.request(method, url, params=params, headers=headers, data=data) as response:
            elapsed = time.monotonic() - start_time
            self.api_call_durations.setdefault(provider, []).append(elapsed)
            return await self._process_response(response, provider, attempt, log_url, elapsed)

    async def _process_response(
        self,
        response: aiohttp.ClientResponse,
        provider: str,
        attempt: int,
        log_url: str,
        elapsed: float,
    ) -> dict[str, Any] | None:
        status = response.status
        snippet = (await response.text(encoding="utf-8", errors="ignore"))[:API_RESPONSE_LOG_LIMIT]
        self.console_logger.debug(
            "[%s] Request (Attempt %d): %s - Status: %d (%.3fs)",
            provider,
            attempt + 1,
            log_url,
            status,
            elapsed,
        )

        if status == HTTP_NOT_FOUND:
            return None
        if status == HTTP_TOO_MANY_REQUESTS or status >= HTTP_SERVER_ERROR:
            raise _RetryableStatusError(status, snippet)
        if not response.ok:
            raise ProviderError(provider, f"HTTP {status} from {log_url}: {snippet[:200]}", status)

        content_type = response.headers.get("Content-Type", "")
        if "json" not in content_type and "javascript" not in content_type:
            self.error_logger.warning("[%s] Received non-JSON response from %s. Content-Type: %s", provider, log_url, content_type)
            return None

        try:
            payload = await response.json(content_type=None)
        except ValueError:
            self.error_logger.warning("[%s] Invalid JSON from %s. Snippet: %s", provider, log_url, snippet[:200])
            return None
        if not isinstance(payload, dict):
            self.error_logger.warning("[%s] JSON response is not an object (type: %s)", provider, type(payload).__name__)
            return None
        return payload

    def get_stats(self) -> dict[str, dict[str, float]]:
        """Request counts and average durations per provider."""
        stats: dict[str, dict[str, float]] = {}
        for provider, count in self.request_counts.items():
            durations = self.api_call_durations.get(provider, [])
            stats[provider] = {
                "requests": count,
                "avg_duration": sum(durations) / len(durations) if durations else 0.0,
            }
        return stats
