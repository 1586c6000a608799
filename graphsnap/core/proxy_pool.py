"""Proxy pool with rotation and health checking."""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set
from urllib.parse import urlsplit, urlunsplit

import httpx
from httpx_socks import AsyncProxyTransport

from graphsnap.core.exceptions import ProxyConfigError
from graphsnap.models.data_models import ProxyCheckResult, ProxyHealthReport
from graphsnap.utils.config import (
    PROXY_CHECK_BATCH_SIZE,
    PROXY_CHECK_TIMEOUT,
    PROXY_CHECK_URL,
    PROXY_ENABLED,
    PROXY_LIST_FILE,
    PROXY_URL,
)
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)

HTTP_SCHEMES = ("http", "https")
SOCKS_SCHEMES = ("socks4", "socks5")

TransportFactory = Callable[[str], httpx.AsyncBaseTransport]


@dataclass
class ProxyAgent:
    """A proxy URI together with the transport that routes through it."""
    uri: str
    transport: httpx.AsyncBaseTransport


def mask_proxy_url(uri: str) -> str:
    """
    Hide the password of a proxy URI for logging.

    Args:
        uri: Proxy URI, possibly with credentials

    Returns:
        URI with the password replaced by ***
    """
    try:
        parts = urlsplit(uri)
        if not parts.password:
            return uri
        netloc = f"{parts.username}:***@{parts.hostname}"
        if parts.port:
            netloc += f":{parts.port}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    except ValueError:
        return uri


def normalize_proxy_line(line: str) -> Optional[str]:
    """Turn one proxy list line into a URI, or None for blanks and comments."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if "://" not in line:
        return f"http://{line}"
    return line


def load_proxy_list(path: Path) -> List[str]:
    """
    Load proxies from a text file, one per line.

    Lines may be full URIs or bare host:port (assumed HTTP).
    Blank lines and # comments are skipped.

    Args:
        path: Proxy list file

    Returns:
        List of proxy URIs (empty if the file can't be read)
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Error loading proxy list {path}: {e}")
        return []

    proxies = [uri for uri in (normalize_proxy_line(line) for line in content.splitlines()) if uri]
    logger.info(f"Loaded {len(proxies)} proxies from {path}")
    return proxies


def build_transport(uri: str) -> httpx.AsyncBaseTransport:
    """
    Build an httpx transport routing through a proxy.

    HTTP/HTTPS proxies use httpx's own proxy support; SOCKS4/5 use
    httpx-socks. Credentials are taken from the URI.

    Args:
        uri: Proxy URI

    Returns:
        Async transport

    Raises:
        ProxyConfigError: If the URI can't be used
    """
    try:
        scheme = urlsplit(uri).scheme.lower()
        if scheme in HTTP_SCHEMES:
            return httpx.AsyncHTTPTransport(proxy=uri)
        if scheme in SOCKS_SCHEMES:
            return AsyncProxyTransport.from_url(uri)
    except (ValueError, httpx.InvalidURL) as e:
        raise ProxyConfigError(f"Invalid proxy {mask_proxy_url(uri)}: {e}") from e

    raise ProxyConfigError(f"Unsupported proxy scheme: {mask_proxy_url(uri)}")


async def check_proxy(
    uri: str,
    timeout: float = PROXY_CHECK_TIMEOUT,
    check_url: str = PROXY_CHECK_URL,
    transport_factory: TransportFactory = build_transport,
) -> ProxyCheckResult:
    """
    Probe one proxy by fetching the public IP through it.

    Args:
        uri: Proxy URI
        timeout: Timeout in seconds
        check_url: IP echo endpoint returning {"ip": ...}
        transport_factory: Builds the transport for the URI

    Returns:
        ProxyCheckResult with latency in milliseconds
    """
    start = time.perf_counter()
    try:
        transport = transport_factory(uri)
        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            response = await client.get(check_url)
            if response.status_code != 200:
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}", request=response.request, response=response
                )
            data = response.json()
    except httpx.TimeoutException:
        return ProxyCheckResult(proxy=uri, success=False, error="Timeout")
    except Exception as e:
        # Any failure marks this proxy dead; the others are still probed
        return ProxyCheckResult(proxy=uri, success=False, error=str(e) or type(e).__name__)

    latency = round((time.perf_counter() - start) * 1000, 1)
    return ProxyCheckResult(proxy=uri, success=True, latency=latency, ip=data.get("ip"))


class ProxyPool:
    """
    Ordered list of upstream proxies with a current pointer.

    Features:
    - HTTP, HTTPS, SOCKS4 and SOCKS5 proxies (credentials in the URI)
    - Rotation that skips failed proxies, resetting once all have failed
    - Concurrent health checks and latency reordering
    """

    def __init__(
        self,
        proxies: Optional[Iterable[str]] = None,
        enabled: bool = True,
        transport_factory: TransportFactory = build_transport,
        check_url: str = PROXY_CHECK_URL,
        batch_size: int = PROXY_CHECK_BATCH_SIZE,
    ):
        """
        Initialize pool.

        Args:
            proxies: Proxy URIs in preference order
            enabled: Route traffic through the pool
            transport_factory: Builds a transport for a URI
            check_url: Endpoint used by health checks
            batch_size: Concurrent probes per health check batch
        """
        self.proxies: List[str] = list(proxies or [])
        self.enabled = enabled
        self.current_index = 0
        self.failed: Set[str] = set()
        self.transport_factory = transport_factory
        self.check_url = check_url
        self.batch_size = batch_size
        self._agents: Dict[str, ProxyAgent] = {}

    @classmethod
    def from_config(
        cls,
        enabled: bool = PROXY_ENABLED,
        proxy_url: str = PROXY_URL,
        proxy_list_file: str = PROXY_LIST_FILE,
    ) -> "ProxyPool":
        """
        Build a pool from configuration.

        A proxy list file takes precedence over a single proxy URL.

        Returns:
            ProxyPool (disabled if nothing is configured)
        """
        if not enabled:
            logger.info("Proxy: disabled")
            return cls(enabled=False)

        if proxy_list_file and Path(proxy_list_file).exists():
            proxies = load_proxy_list(Path(proxy_list_file))
        elif proxy_url:
            proxies = [proxy_url.strip()]
            logger.info("Proxy: using single proxy")
        else:
            logger.warning("Proxy: enabled but no PROXY_URL or PROXY_LIST_FILE configured")
            return cls(enabled=False)

        if not proxies:
            logger.warning("Proxy: enabled but the proxy list is empty")
            return cls(enabled=False)

        logger.info(f"Proxy: loaded {len(proxies)} proxy(ies)")
        return cls(proxies, enabled=True)

    @property
    def active(self) -> bool:
        """True if requests should be routed through a proxy."""
        return self.enabled and bool(self.proxies)

    @staticmethod
    def mask(uri: Optional[str]) -> Optional[str]:
        """Mask credentials of a proxy URI for logging."""
        return mask_proxy_url(uri) if uri else uri

    def current_proxy(self) -> Optional[str]:
        """Get the current proxy URI, or None if the pool is inactive."""
        if not self.active:
            return None
        return self.proxies[self.current_index]

    def current_agent(self) -> Optional[ProxyAgent]:
        """
        Get the agent for the current proxy.

        A proxy whose transport can't be built is marked failed and
        skipped.

        Returns:
            ProxyAgent or None if the pool is inactive or nothing is usable
        """
        for _ in range(len(self.proxies) if self.active else 0):
            uri = self.proxies[self.current_index]
            agent = self._agents.get(uri)
            if agent is not None:
                return agent

            try:
                agent = ProxyAgent(uri=uri, transport=self.transport_factory(uri))
            except ProxyConfigError as e:
                logger.warning(f"Skipping unusable proxy: {e}")
                self.rotate(mark_current_failed=True)
                continue

            self._agents[uri] = agent
            return agent

        return None

    def rotate(self, mark_current_failed: bool = False) -> Optional[str]:
        """
        Move to the next proxy not marked as failed.

        If every proxy has failed, the failed set is cleared and the
        pointer restarts at the first proxy.

        Args:
            mark_current_failed: Add the current proxy to the failed set

        Returns:
            New current proxy URI or None if the pool is inactive
        """
        if not self.active:
            return None

        if mark_current_failed:
            failed_uri = self.proxies[self.current_index]
            self.failed.add(failed_uri)
            logger.warning(f"Marking proxy as failed: {self.mask(failed_uri)}")

        total = len(self.proxies)
        for step in range(1, total + 1):
            index = (self.current_index + step) % total
            if self.proxies[index] not in self.failed:
                self.current_index = index
                break
        else:
            logger.warning("All proxies failed. Resetting failed list...")
            self.failed.clear()
            self.current_index = 0

        uri = self.proxies[self.current_index]
        logger.info(f"Switched to proxy: {self.mask(uri)}")
        return uri

    async def health_check_all(
        self,
        timeout: float = PROXY_CHECK_TIMEOUT,
        remove_dead: bool = False,
    ) -> ProxyHealthReport:
        """
        Probe every proxy concurrently in batches.

        Args:
            timeout: Timeout per proxy in seconds
            remove_dead: Drop dead proxies from the pool afterwards

        Returns:
            ProxyHealthReport with results sorted healthy-first by latency
        """
        if not self.active:
            logger.warning("No proxies loaded to check")
            return ProxyHealthReport()

        snapshot = list(self.proxies)
        logger.info(f"Testing {len(snapshot)} proxies (timeout: {timeout:g}s each)...")

        results: List[ProxyCheckResult] = []
        for start in range(0, len(snapshot), self.batch_size):
            batch = snapshot[start:start + self.batch_size]
            results.extend(await asyncio.gather(*(
                check_proxy(uri, timeout, self.check_url, self.transport_factory) for uri in batch
            )))

        results.sort(key=lambda r: (not r.success, r.latency if r.success else 0))
        healthy = [r for r in results if r.success]
        dead = [r for r in results if not r.success]

        for result in healthy:
            logger.info(f"  OK   {self.mask(result.proxy)} | IP: {result.ip} | Latency: {result.latency}ms")
        for result in dead:
            logger.info(f"  DEAD {self.mask(result.proxy)} | Error: {result.error}")

        report = ProxyHealthReport(
            total=len(results),
            healthy=len(healthy),
            dead=len(dead),
            average_latency=round(sum(r.latency for r in healthy) / len(healthy), 1) if healthy else None,
            fastest=healthy[0] if healthy else None,
            results=results,
        )
        logger.info(f"Proxy health: {report.healthy} healthy, {report.dead} dead out of {report.total} total")

        if remove_dead and dead:
            dead_uris = {r.proxy for r in dead}
            before = len(self.proxies)
            self.proxies = [uri for uri in self.proxies if uri not in dead_uris]
            self.current_index = 0
            self.failed.clear()
            logger.info(f"Removed {before - len(self.proxies)} dead proxies. {len(self.proxies)} remaining.")

        return report

    def reorder_by_latency(self, report: ProxyHealthReport) -> None:
        """
        Replace the pool with the healthy proxies, fastest first.

        Does nothing if the report has no healthy proxies.
        """
        fastest_first = sorted((r for r in report.results if r.success), key=lambda r: r.latency)
        if not fastest_first:
            return

        self.proxies = [r.proxy for r in fastest_first]
        self.current_index = 0
        self.failed.clear()
        logger.info(f"Reordered {len(self.proxies)} proxies by latency (fastest first)")

    def healthy_proxies(self) -> List[str]:
        """Get proxies not currently marked as failed."""
        return [uri for uri in self.proxies if uri not in self.failed]

    def get_stats(self) -> dict:
        """
        Get proxy pool statistics.

        Returns:
            Dictionary with stats
        """
        return {
            "enabled": self.enabled,
            "total": len(self.proxies),
            "current_index": self.current_index,
            "failed": len(self.failed),
            "current": self.mask(self.current_proxy()),
        }
