"""Graph API client with rate-limit adaptation, retries and proxy failover."""

import asyncio
import random
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from python_socks import ProxyConnectionError, ProxyError, ProxyTimeoutError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from graphsnap.core.exceptions import GraphAPIError, RateLimitedError, TransientNetworkError
from graphsnap.core.proxy_pool import ProxyPool
from graphsnap.core.rate_limiter import RateUsageTracker
from graphsnap.utils.config import (
    ACCESS_TOKEN,
    CONNECT_TIMEOUT,
    GRAPH_API_HOST,
    MAX_RETRIES,
    NETWORK_RETRY_WAIT,
    RATE_LIMIT_WAIT,
    READ_TIMEOUT,
    USER_AGENTS,
)
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)

# Graph API error codes that mean "slow down", not "failed"
RATE_LIMIT_ERROR_CODES = (4, 17, 32)

NETWORK_ERRORS = (httpx.TransportError, ProxyError, ProxyConnectionError, ProxyTimeoutError)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _wait_from_hint(retry_state: RetryCallState) -> float:
    """Wait as long as the raised error asks for."""
    exc = retry_state.outcome.exception()
    return float(getattr(exc, "retry_after", 0.0) or 0.0)


class GraphClient:
    """
    Resilient JSON client for the Facebook Graph API.

    Every call:
    - routes through the proxy pool's current proxy (or directly)
    - feeds the x-app-usage header to the rate usage tracker
    - retries on HTTP 429, rate-limit error codes and network errors
    - sleeps the tracker's recommended delay after success

    Fatal failures (other HTTP errors, error envelopes, bad JSON, or an
    exhausted retry budget) are logged and reported as None.
    """

    def __init__(
        self,
        access_token: str = ACCESS_TOKEN,
        api_host: str = GRAPH_API_HOST,
        rate_tracker: Optional[RateUsageTracker] = None,
        proxy_pool: Optional[ProxyPool] = None,
        max_retries: int = MAX_RETRIES,
        rate_limit_wait: float = RATE_LIMIT_WAIT,
        network_retry_wait: float = NETWORK_RETRY_WAIT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            access_token: Graph API access token
            api_host: API base URL including version
            rate_tracker: Usage tracker (a fresh one if None)
            proxy_pool: Proxy pool (direct connections if None)
            max_retries: Retries per request (attempts = max_retries + 1)
            rate_limit_wait: Wait in seconds for rate-limit error codes
            network_retry_wait: Wait in seconds after a network error
            transport: Transport for direct connections (used in tests)
        """
        self.access_token = access_token
        self.api_host = api_host.rstrip("/")
        self.rate_tracker = rate_tracker or RateUsageTracker()
        self.proxy_pool = proxy_pool
        self.max_retries = max_retries
        self.rate_limit_wait = rate_limit_wait
        self.network_retry_wait = network_retry_wait
        self.transport = transport

        self._clients: Dict[Optional[str], httpx.AsyncClient] = {}
        self.last_retry_count = 0
        self.request_count = 0
        self.failed_requests = 0
        self.total_retries = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        """Close every HTTP client opened so far."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    def _get_headers(self) -> dict:
        """Generate request headers with random user agent."""
        return {
            "User-Agent": random.choice(USER_AGENTS),
            "Accept": "application/json",
        }

    def _redact(self, url: str) -> str:
        if self.access_token:
            return url.replace(self.access_token, "***")
        return url

    def build_url(self, path: str, **params: Any) -> str:
        """
        Build a Graph API URL with the access token.

        Args:
            path: Node path, e.g. "12345/photos"
            **params: Query parameters

        Returns:
            Full URL
        """
        query = {key: value for key, value in params.items() if value is not None}
        query["access_token"] = self.access_token
        return f"{self.api_host}/{path.lstrip('/')}?{urlencode(query, safe=',{}')}"

    def current_client(self) -> httpx.AsyncClient:
        """
        Get the HTTP client for the current proxy.

        Clients are cached per proxy, so the downloader can share the
        same route as API calls.
        """
        agent = self.proxy_pool.current_agent() if self.proxy_pool else None
        key = agent.uri if agent else None

        client = self._clients.get(key)
        if client is None:
            client = httpx.AsyncClient(
                transport=agent.transport if agent else self.transport,
                timeout=httpx.Timeout(CONNECT_TIMEOUT, read=READ_TIMEOUT),
                headers=self._get_headers(),
            )
            self._clients[key] = client
        return client

    async def _attempt(self, url: str, params: Optional[dict]) -> Any:
        """
        Issue one request and classify the outcome.

        Raises:
            RateLimitedError: 429 or a rate-limit error code
            TransientNetworkError: Connection-level failure
            GraphAPIError: Anything else that isn't a JSON payload
        """
        client = self.current_client()
        proxy = self.proxy_pool.current_proxy() if self.proxy_pool else None
        self.request_count += 1

        try:
            response = await client.get(url, params=params)
        except NETWORK_ERRORS as e:
            raise TransientNetworkError(
                f"{type(e).__name__}: {e}",
                retry_after=self.network_retry_wait,
                proxy=ProxyPool.mask(proxy),
            ) from e

        self.rate_tracker.record_usage(response.headers.get("x-app-usage"))

        if response.status_code == 429:
            raise RateLimitedError(
                "HTTP 429 Too Many Requests",
                retry_after=self.rate_tracker.retry_wait_from_headers(response.headers),
            )

        if not response.is_success:
            raise GraphAPIError(
                f"HTTP Error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise GraphAPIError(f"Invalid JSON response: {e}", status_code=response.status_code) from e

        error = payload.get("error") if isinstance(payload, dict) else None
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", error) if isinstance(error, dict) else error
            if code in RATE_LIMIT_ERROR_CODES:
                raise RateLimitedError(f"Rate limit error {code}: {message}", retry_after=self.rate_limit_wait)
            raise GraphAPIError(f"API error {code}: {message}", status_code=response.status_code, code=code)

        return payload

    def _before_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        self.last_retry_count += 1
        self.total_retries += 1
        next_attempt = retry_state.attempt_number + 1

        if isinstance(exc, TransientNetworkError):
            logger.warning(
                f"Network error via {exc.proxy or 'direct'}: {exc}. Rotating proxy and retrying... "
                f"(attempt {next_attempt}/{self.max_retries + 1})"
            )
            if self.proxy_pool:
                self.proxy_pool.rotate(mark_current_failed=True)
        else:
            logger.warning(
                f"{exc}. Waiting {exc.retry_after:.0f}s before retry... "
                f"(attempt {next_attempt}/{self.max_retries + 1})"
            )

    async def get_json(
        self,
        url: str,
        params: Optional[dict] = None,
        skip_rate_limit_delay: bool = False,
    ) -> Optional[Any]:
        """
        Fetch a Graph API URL and return its JSON payload.

        Args:
            url: Full URL (see build_url)
            params: Extra query parameters
            skip_rate_limit_delay: Don't sleep the adaptive delay afterwards

        Returns:
            Parsed JSON, or None on a fatal error or exhausted retries
        """
        self.last_retry_count = 0
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((RateLimitedError, TransientNetworkError)),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=_wait_from_hint,
            before_sleep=self._before_retry,
            sleep=_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    payload = await self._attempt(url, params)
        except (RateLimitedError, TransientNetworkError) as e:
            self.failed_requests += 1
            logger.error(f"Max retries ({self.max_retries}) exceeded for {self._redact(url)}. Giving up: {e}")
            return None
        except GraphAPIError as e:
            self.failed_requests += 1
            logger.error(f"Request failed for {self._redact(url)}: {e}")
            return None

        if not skip_rate_limit_delay:
            delay = self.rate_tracker.recommended_delay()
            if delay > 0:
                logger.debug(f"{self.rate_tracker.format_status()} - waiting {delay:g}s")
                await asyncio.sleep(delay)

        return payload

    async def get_largest_photo_url(self, photo_id: str) -> Optional[str]:
        """
        Look up the best-resolution URL of a photo.

        Returns:
            Image URL or None if unavailable
        """
        payload = await self.get_json(self.build_url(photo_id, fields="largest_image"))
        if not isinstance(payload, dict):
            return None
        largest = payload.get("largest_image") or {}
        return largest.get("source")

    def get_stats(self) -> dict:
        """
        Get client statistics.

        Returns:
            Dictionary with stats
        """
        return {
            "total_requests": self.request_count,
            "failed_requests": self.failed_requests,
            "total_retries": self.total_retries,
            "last_retry_count": self.last_retry_count,
            "rate_limit": self.rate_tracker.get_stats(),
            "proxy": self.proxy_pool.get_stats() if self.proxy_pool else None,
        }
