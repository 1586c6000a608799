"""Pagination over Graph API media collections."""

import asyncio
import base64
from typing import Any, AsyncIterator, Callable, List, Optional
from urllib.parse import parse_qs, urlsplit

from graphsnap.core.attachments import extract_feed_media
from graphsnap.core.download_controller import DownloadController
from graphsnap.core.graph_client import GraphClient
from graphsnap.models.data_models import AlbumInfo, MediaItem, MediaKind, Page
from graphsnap.utils.config import WAIT_BEFORE_NEXT_FETCH
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)

ALBUM_PAGE_SIZE = 100
FEED_FIELDS = "attachments{media,type,subattachments,target}"
VIDEO_FEED_FIELDS = "attachments{media,type,subattachments,target,description}"

ItemParser = Callable[[List[Any]], List[MediaItem]]


def encode_photo_cursor(photo_id: str) -> str:
    """Build the cursor that starts an album listing at a given photo."""
    return base64.b64encode(str(photo_id).encode("utf-8")).decode("ascii")


def _after_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    values = parse_qs(urlsplit(url).query).get("after")
    return values[0] if values else None


def _largest_source(photo: dict) -> Optional[str]:
    largest = photo.get("largest_image")
    return largest.get("source") if isinstance(largest, dict) else None


def _parse_album_photos(data: List[Any]) -> List[MediaItem]:
    items = []
    for photo in data:
        if not isinstance(photo, dict):
            continue
        photo_id = photo.get("id")
        url = _largest_source(photo)
        if photo_id and url:
            items.append(MediaItem(media_id=str(photo_id), url=url, kind=MediaKind.PHOTO))
    return items


def _parse_user_uploads(data: List[Any]) -> List[MediaItem]:
    items = []
    for photo in data:
        if not isinstance(photo, dict):
            continue
        photo_id = photo.get("id")
        url = _largest_source(photo)
        if not photo_id or not url:
            continue
        album = photo.get("album")
        items.append(
            MediaItem(
                media_id=str(photo_id),
                url=url,
                kind=MediaKind.PHOTO,
                is_high_quality=True,
                caption=photo.get("name") or None,
                album_name=album.get("name") if isinstance(album, dict) else None,
            )
        )
    return items


def _parse_user_videos(data: List[Any]) -> List[MediaItem]:
    return [item for item in extract_feed_media(data) if item.kind is MediaKind.VIDEO]


class MediaPaginator:
    """
    Walks paginated media collections one page at a time.

    Each collection is an async generator of Page objects. The next page
    is only requested after the consumer has finished with the current
    one, followed by a short pause. Iteration ends when the collection
    is exhausted, the page limit is reached, a page fails to load, or
    the controller is cancelled.
    """

    def __init__(
        self,
        client: GraphClient,
        controller: Optional[DownloadController] = None,
        page_delay: float = WAIT_BEFORE_NEXT_FETCH,
    ):
        """
        Initialize paginator.

        Args:
            client: Graph API client
            controller: Cancellation source, polled before each page
            page_delay: Pause in seconds between pages
        """
        self.client = client
        self.controller = controller
        self.page_delay = page_delay

    def _cancelled(self, number: int) -> bool:
        if self.controller is not None and self.controller.is_cancelled():
            logger.warning(f"Stopping at page {number - 1} (cancelled)")
            return True
        return False

    async def _pause(self) -> None:
        if self.page_delay > 0:
            logger.debug(f"Pausing {self.page_delay:g}s before next page")
            await asyncio.sleep(self.page_delay)

    async def _paginate_cursor(
        self,
        path: str,
        params: dict,
        parse: ItemParser,
        start_cursor: Optional[str],
        page_limit: Optional[int],
    ) -> AsyncIterator[Page]:
        """Follow paging.cursors.after until it runs out or repeats."""
        cursor = start_cursor
        seen = set()
        number = 1

        while page_limit is None or number <= page_limit:
            if self._cancelled(number):
                return

            if cursor:
                seen.add(cursor)
            logger.info(f"Fetching page {number} of {path}")
            payload = await self.client.get_json(self.client.build_url(path, after=cursor, **params))
            if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
                logger.error(f"Failed to load page {number} of {path}, stopping")
                return

            items = parse(payload["data"])
            next_cursor = ((payload.get("paging") or {}).get("cursors") or {}).get("after")
            logger.info(f"Page {number}: found {len(items)} item(s)")

            yield Page(number=number, items=items, next_cursor=next_cursor)

            if not next_cursor:
                return
            if next_cursor in seen:
                logger.warning(f"Cursor repeated on page {number} of {path}, stopping")
                return

            cursor = next_cursor
            number += 1
            if page_limit is None or number <= page_limit:
                await self._pause()

    async def _paginate_links(
        self,
        path: str,
        params: dict,
        parse: ItemParser,
        start_cursor: Optional[str],
        page_limit: Optional[int],
    ) -> AsyncIterator[Page]:
        """Follow paging.next until it disappears."""
        url: Optional[str] = self.client.build_url(path, after=start_cursor, **params)
        number = 1

        while url and (page_limit is None or number <= page_limit):
            if self._cancelled(number):
                return

            logger.info(f"Fetching page {number} of {path}")
            payload = await self.client.get_json(url)
            if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
                logger.error(f"Failed to load page {number} of {path}, stopping")
                return

            items = parse(payload["data"])
            paging = payload.get("paging") or {}
            next_url = paging.get("next")
            next_cursor = (paging.get("cursors") or {}).get("after") or _after_from_url(next_url)
            logger.info(f"Page {number}: found {len(items)} item(s)")

            yield Page(number=number, items=items, next_cursor=next_cursor, next_url=next_url)

            url = next_url
            number += 1
            if url and (page_limit is None or number <= page_limit):
                await self._pause()

    def album_photos(
        self,
        album_id: str,
        from_photo_id: Optional[str] = None,
        start_cursor: Optional[str] = None,
        page_limit: Optional[int] = None,
    ) -> AsyncIterator[Page]:
        """
        Photos of an album, 100 per page.

        Args:
            album_id: Album id
            from_photo_id: Start at this photo instead of the beginning
            start_cursor: Resume from a stored cursor (wins over from_photo_id)
            page_limit: Maximum pages (None for all)
        """
        cursor = start_cursor or (encode_photo_cursor(from_photo_id) if from_photo_id else None)
        return self._paginate_cursor(
            f"{album_id}/photos",
            {"fields": "largest_image", "limit": ALBUM_PAGE_SIZE},
            _parse_album_photos,
            cursor,
            page_limit,
        )

    def user_uploads(
        self,
        user_id: str,
        start_cursor: Optional[str] = None,
        page_limit: Optional[int] = None,
    ) -> AsyncIterator[Page]:
        """Photos uploaded by a user, with caption and album name."""
        return self._paginate_cursor(
            f"{user_id}/photos",
            {"type": "uploaded", "fields": "largest_image,name,album"},
            _parse_user_uploads,
            start_cursor,
            page_limit,
        )

    def user_videos(
        self,
        user_id: str,
        start_cursor: Optional[str] = None,
        page_limit: Optional[int] = None,
    ) -> AsyncIterator[Page]:
        """Videos attached to a user's posts, with descriptions."""
        return self._paginate_links(
            f"{user_id}/feed",
            {"fields": VIDEO_FEED_FIELDS},
            _parse_user_videos,
            start_cursor,
            page_limit,
        )

    def wall_media(
        self,
        target_id: str,
        start_cursor: Optional[str] = None,
        page_limit: Optional[int] = None,
    ) -> AsyncIterator[Page]:
        """Photos and videos attached to posts on a user, page or group wall."""
        return self._paginate_links(
            f"{target_id}/feed",
            {"fields": FEED_FIELDS},
            extract_feed_media,
            start_cursor,
            page_limit,
        )

    async def fetch_album_info(self, album_id: str) -> Optional[AlbumInfo]:
        """
        Fetch album metadata including its owner.

        Returns:
            AlbumInfo or None on error
        """
        payload = await self.client.get_json(
            self.client.build_url(album_id, fields="id,from,name,type,count,link")
        )
        if not isinstance(payload, dict):
            return None

        return AlbumInfo(
            album_id=str(album_id),
            name=payload.get("name"),
            count=payload.get("count"),
            link=payload.get("link"),
            owner_id=(payload.get("from") or {}).get("id"),
        )

    async def find_timeline_album(self, page_id: str) -> Optional[str]:
        """
        Find the timeline album of a Facebook page.

        Timeline albums hold every photo posted to the page and have
        type "wall".

        Returns:
            Album id or None if the page has none
        """
        payload = await self.client.get_json(
            self.client.build_url(f"{page_id}/albums", fields="type", limit=ALBUM_PAGE_SIZE)
        )
        if not isinstance(payload, dict):
            return None

        for album in payload.get("data") or []:
            if isinstance(album, dict) and album.get("type") == "wall":
                return album.get("id")
        return None
