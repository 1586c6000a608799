"""Media downloader with streaming and atomic writes."""

import random
from pathlib import Path
from typing import List

import aiofiles
import httpx
from python_socks import ProxyConnectionError, ProxyError, ProxyTimeoutError

from graphsnap.core.exceptions import DownloadError
from graphsnap.core.graph_client import GraphClient
from graphsnap.utils.config import DOWNLOAD_CHUNK_SIZE, DOWNLOAD_TIMEOUT, MAX_REDIRECTS, USER_AGENTS
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)


class MediaDownloader:
    """
    Streams media files to disk through the API client's current route.

    Data goes to "<destination>.tmp" and is renamed into place only
    after the whole body has arrived, so a file at the destination is
    always complete. Redirects are followed by hand so every hop uses
    the same proxy.
    """

    def __init__(
        self,
        graph_client: GraphClient,
        timeout: float = DOWNLOAD_TIMEOUT,
        max_redirects: int = MAX_REDIRECTS,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ):
        """
        Initialize downloader.

        Args:
            graph_client: Client whose current HTTP route is reused
            timeout: Timeout in seconds per request
            max_redirects: Maximum redirect hops
            chunk_size: Streaming chunk size in bytes
        """
        self.graph_client = graph_client
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.chunk_size = chunk_size
        self.download_count = 0
        self.failed_downloads: List[str] = []

    def _get_headers(self) -> dict:
        """Generate request headers with random user agent."""
        return {
            "User-Agent": random.choice(USER_AGENTS),
            "Accept": "*/*",
        }

    @staticmethod
    def temp_path(destination: Path) -> Path:
        """Temporary path used while a download is in progress."""
        return destination.with_name(destination.name + ".tmp")

    async def download(self, url: str, destination: Path) -> Path:
        """
        Download a single media file.

        Args:
            url: Media URL
            destination: Final file path

        Returns:
            Path to downloaded file

        Raises:
            DownloadError: If download fails (no temp file is left behind)
        """
        destination = Path(destination)
        temp_filepath = self.temp_path(destination)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)

            # Leftover from an interrupted run
            if temp_filepath.exists():
                temp_filepath.unlink()

            logger.debug(f"Downloading: {url} -> {destination}")
            current_url = url

            for _ in range(self.max_redirects + 1):
                client = self.graph_client.current_client()
                async with client.stream(
                    "GET",
                    current_url,
                    headers=self._get_headers(),
                    timeout=self.timeout,
                    follow_redirects=False,
                ) as response:
                    if response.is_redirect:
                        current_url = str(response.url.join(response.headers["location"]))
                        logger.debug(f"Following redirect to {current_url}")
                        continue

                    if response.status_code != 200:
                        raise DownloadError(
                            f"HTTP {response.status_code} {response.reason_phrase} downloading {url}"
                        )

                    downloaded_bytes = 0
                    async with aiofiles.open(temp_filepath, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                            await f.write(chunk)
                            downloaded_bytes += len(chunk)

                    # Content-Length counts encoded bytes, so only plain bodies are checked
                    expected = response.headers.get("content-length")
                    if (
                        expected is not None
                        and not response.headers.get("content-encoding")
                        and downloaded_bytes != int(expected)
                    ):
                        raise DownloadError(
                            f"Incomplete download: {downloaded_bytes}/{expected} bytes"
                        )

                # Atomic rename into place
                temp_filepath.replace(destination)
                self.download_count += 1
                logger.info(f"Downloaded: {destination.name}")
                return destination

            raise DownloadError(f"Too many redirects ({self.max_redirects}) downloading {url}")

        except DownloadError as e:
            logger.error(str(e))
            self.failed_downloads.append(str(destination))
            raise

        except (httpx.HTTPError, ProxyError, ProxyConnectionError, ProxyTimeoutError) as e:
            error_msg = f"Network error downloading {url}: {type(e).__name__}: {e}"
            logger.error(error_msg)
            self.failed_downloads.append(str(destination))
            raise DownloadError(error_msg) from e

        except OSError as e:
            error_msg = f"Failed to write {destination}: {e}"
            logger.error(error_msg)
            self.failed_downloads.append(str(destination))
            raise DownloadError(error_msg) from e

        finally:
            # Clean up temp file if it exists
            if temp_filepath.exists():
                try:
                    temp_filepath.unlink()
                except OSError as e:
                    logger.warning(f"Failed to delete temp file {temp_filepath}: {e}")

    def get_stats(self) -> dict:
        """
        Get downloader statistics.

        Returns:
            Dictionary with stats
        """
        return {
            "total_downloads": self.download_count,
            "failed_downloads": len(self.failed_downloads),
            "failed_files": self.failed_downloads,
        }
