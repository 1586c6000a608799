"""Sync service orchestrating pagination, dedup and download."""

import asyncio
import time
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional, Union

import aiofiles

from graphsnap.core.download_controller import DownloadController
from graphsnap.core.downloader import MediaDownloader
from graphsnap.core.exceptions import ConfigurationError, DownloadError
from graphsnap.core.graph_client import GraphClient
from graphsnap.core.media_tracker import MediaTracker
from graphsnap.core.paginator import MediaPaginator
from graphsnap.core.proxy_pool import ProxyPool
from graphsnap.models.data_models import (
    BatchResult,
    BatchSummary,
    BatchTargetResult,
    CollectionKind,
    LinkExportResult,
    MediaItem,
    MediaKind,
    Page,
    ProgressEvent,
    SyncResult,
    WallSyncResult,
)
from graphsnap.storage.database import Database, get_database
from graphsnap.utils.config import (
    DATABASE_ENABLED,
    DELAY_BETWEEN_TARGETS,
    DOWNLOAD_DIR,
    LINK_SEPARATOR,
    LINKS_DIR,
    PHOTO_FILE_FORMAT,
    VIDEO_FILE_FORMAT,
    WAIT_BEFORE_NEXT_FETCH,
    get_save_folder,
)
from graphsnap.utils.files import parse_target_ids, sanitize_folder_name, save_caption
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)

NO_ALBUM_FOLDER = "(no album)"

ProgressCallback = Optional[Callable[[ProgressEvent], None]]
FolderResolver = Callable[[MediaItem], Path]
Operation = Callable[..., Awaitable[SyncResult]]


class SyncService:
    """
    Mirrors Graph API media collections to local storage.

    Every operation walks its collection page by page, processing each
    item before asking for the next page:
    1. Skip ids already saved (unless an HD upgrade is wanted)
    2. Optionally look up the HD URL of photos
    3. Download atomically
    4. Record the outcome

    Per-item and per-page failures are counted in the returned result;
    only a missing access token raises.
    """

    def __init__(
        self,
        client: GraphClient,
        tracker: MediaTracker,
        downloader: Optional[MediaDownloader] = None,
        controller: Optional[DownloadController] = None,
        download_dir: Path = DOWNLOAD_DIR,
        links_dir: Path = LINKS_DIR,
        page_delay: float = WAIT_BEFORE_NEXT_FETCH,
        delay_between_targets: float = DELAY_BETWEEN_TARGETS,
        progress_callback: ProgressCallback = None,
    ):
        """
        Initialize service.

        Args:
            client: Graph API client
            tracker: Dedup tracker
            downloader: Media downloader (shares the client's route if None)
            controller: Cancellation controller
            download_dir: Root folder for media
            links_dir: Folder for exported link lists
            page_delay: Pause in seconds between pages
            delay_between_targets: Pause in seconds between batch targets
            progress_callback: Receives a ProgressEvent for each step
        """
        self.client = client
        self.tracker = tracker
        self.downloader = downloader or MediaDownloader(client)
        self.controller = controller or DownloadController()
        self.paginator = MediaPaginator(client, self.controller, page_delay)
        self.download_dir = Path(download_dir)
        self.links_dir = Path(links_dir)
        self.delay_between_targets = delay_between_targets
        self.progress_callback = progress_callback
        self._owns_database = False

    @classmethod
    def from_config(
        cls,
        database: Optional[Database] = None,
        progress_callback: ProgressCallback = None,
    ) -> "SyncService":
        """
        Build a service from configuration.

        Args:
            database: Database to track media in (the global one if None)
            progress_callback: Receives a ProgressEvent for each step

        Returns:
            SyncService (use as an async context manager)
        """
        client = GraphClient(proxy_pool=ProxyPool.from_config())
        owns_database = database is None and DATABASE_ENABLED
        if owns_database:
            database = get_database()

        service = cls(client, MediaTracker(database, client), progress_callback=progress_callback)
        service._owns_database = owns_database
        return service

    async def __aenter__(self):
        if self.tracker.enabled:
            await self.tracker.database.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Close HTTP clients (and the database if this service opened it)."""
        await self.client.aclose()
        if self._owns_database:
            await self.tracker.database.close()

    def _emit(
        self,
        stage: str,
        target_id: str,
        page: Optional[int] = None,
        media_id: Optional[str] = None,
        message: str = "",
    ) -> None:
        """Internal progress reporter."""
        if self.progress_callback:
            self.progress_callback(
                ProgressEvent(stage=stage, target_id=target_id, page=page, media_id=media_id, message=message)
            )
        logger.debug(f"{stage} [{target_id}] page={page} media={media_id} {message}")

    def _require_token(self) -> None:
        if not self.client.access_token:
            raise ConfigurationError("No access token configured (set FB_ACCESS_TOKEN)")

    def _begin(self) -> bool:
        """Start the controller unless an outer run already did."""
        if self.controller.is_running():
            return False
        self.controller.start()
        return True

    def _finish(self, owns_run: bool) -> None:
        if owns_run:
            self.controller.complete()

    @staticmethod
    def _file_name(item: MediaItem) -> str:
        extension = PHOTO_FILE_FORMAT if item.kind is MediaKind.PHOTO else VIDEO_FILE_FORMAT
        return f"{item.media_id}.{extension}"

    async def _save_item(
        self,
        result: SyncResult,
        owner: Optional[int],
        item: MediaItem,
        folder: Path,
        want_high_quality: bool,
        page_number: int,
    ) -> None:
        """Dedup, optionally upgrade, download and record one item."""
        destination = folder / self._file_name(item)
        wants_upgrade = want_high_quality and item.kind is MediaKind.PHOTO and not item.is_high_quality

        decision = await self.tracker.should_skip(owner, item.media_id, wants_upgrade)
        if decision.skip:
            logger.info(f"SKIPPING {item.media_id} ({decision.reason})")
            result.record_skipped(item.kind)
            self._emit("skipped", result.target_id, page_number, item.media_id, decision.reason or "")
            return

        if decision.needs_upgrade:
            logger.info(f"UPGRADE {item.media_id} to HD (was SD)")

        url = item.url
        is_high_quality = item.is_high_quality
        if wants_upgrade:
            hq = await self.tracker.fetch_high_quality(item.media_id, decision.needs_upgrade)
            if hq.should_skip:
                logger.info(f"SKIPPING {item.media_id} (HD fetch failed, keeping SD version)")
                result.record_skipped(item.kind)
                self._emit("skipped", result.target_id, page_number, item.media_id, "HD fetch failed")
                return
            if hq.url:
                url = hq.url
                is_high_quality = True

        logger.info(f"Saving {result.saved + 1}: {destination}")
        try:
            await self.downloader.download(url, destination)
        except DownloadError as e:
            logger.error(f"Error saving {item.media_id} to {destination} (page {page_number}): {e}")
            result.record_failed(f"{item.media_id}: {e}")
            self._emit("failed", result.target_id, page_number, item.media_id, str(e))
            return

        if item.caption:
            await save_caption(destination, item.caption)

        await self.tracker.record_outcome(
            owner, item.media_id, is_high_quality, str(destination), decision.needs_upgrade
        )
        result.record_saved(item.kind)
        self._emit("saved", result.target_id, page_number, item.media_id, str(destination))

    async def _process_pages(
        self,
        result: SyncResult,
        owner: Optional[int],
        pages: AsyncIterator[Page],
        folder_for: FolderResolver,
        want_high_quality: bool = False,
        include_video: bool = True,
        cursor_kind: Optional[str] = None,
        pages_before: int = 0,
    ) -> SyncResult:
        """
        Process each page completely before the next one is fetched.

        The stored cursor only moves past pages whose items were all saved
        or skipped. Once a page has failures it stays put for the rest of
        the run, so the next resumed run retries them.
        """
        cursor_held = False
        async for page in pages:
            result.pages += 1
            failed_before = result.failed
            self._emit("page", result.target_id, page.number, message=f"{len(page.items)} item(s)")

            for item in page.items:
                if not include_video and item.kind is MediaKind.VIDEO:
                    logger.debug(f"Skipping video {item.media_id}")
                    continue
                await self._save_item(result, owner, item, folder_for(item), want_high_quality, page.number)

            if result.failed > failed_before and not cursor_held:
                cursor_held = True
                if cursor_kind:
                    logger.info(f"Keeping {cursor_kind} cursor before page {pages_before + page.number} to retry failures")
            if cursor_kind and not cursor_held:
                await self.tracker.save_cursor(owner, cursor_kind, page.next_cursor, pages_before + page.number)

        result.cancelled = self.controller.is_cancelled()
        return result

    async def _resume_position(self, owner: Optional[int], cursor_kind: str, resume: bool):
        """Stored (cursor, pages loaded) for a collection, or (None, 0)."""
        if not resume:
            return None, 0
        stored = await self.tracker.load_cursor(owner, cursor_kind)
        if stored is None:
            return None, 0
        logger.info(f"Resuming {cursor_kind} after page {stored.pages_loaded}")
        return stored.cursor_token, stored.pages_loaded

    def _log_summary(self, result: SyncResult) -> None:
        if isinstance(result, WallSyncResult):
            logger.info(
                f"Summary: {result.saved_photos} photos, {result.saved_videos} videos saved | "
                f"{result.skipped_photos} photos, {result.skipped_videos} videos skipped (duplicates)"
                f" | {result.failed} failed"
            )
        else:
            logger.info(
                f"Summary: {result.saved} saved, {result.skipped} skipped (duplicates), {result.failed} failed"
            )
        self._emit("done", result.target_id, message=f"{result.saved} saved, {result.skipped} skipped")

    async def sync_album(
        self,
        album_id: str,
        from_photo_id: Optional[str] = None,
        want_high_quality: bool = False,
        page_limit: Optional[int] = None,
        resume: bool = False,
    ) -> SyncResult:
        """
        Download every photo of an album into its owner's photos folder.

        Args:
            album_id: Album id
            from_photo_id: Start at this photo instead of the beginning
            want_high_quality: Fetch HD URLs and upgrade SD copies
            page_limit: Maximum pages (None for all)
            resume: Continue from the stored cursor of a previous run

        Returns:
            SyncResult
        """
        self._require_token()
        owns_run = self._begin()
        try:
            logger.info(f"Downloading album {album_id}" + (f" from photo {from_photo_id}" if from_photo_id else ""))
            result = SyncResult(target_id=album_id)

            info = await self.paginator.fetch_album_info(album_id)
            owner_id = info.owner_id if info and info.owner_id else None
            if not owner_id:
                logger.warning(f"Could not determine owner of album {album_id}. Using album id for folder.")
                owner_id = album_id

            owner = await self.tracker.owner_key(owner_id)
            cursor_kind = f"{CollectionKind.ALBUM_PHOTOS.value}:{album_id}"
            start_cursor, pages_before = await self._resume_position(owner, cursor_kind, resume)

            folder = get_save_folder(owner_id, MediaKind.PHOTO.folder, self.download_dir)
            pages = self.paginator.album_photos(album_id, from_photo_id, start_cursor, page_limit)
            await self._process_pages(
                result, owner, pages, lambda item: folder, want_high_quality,
                cursor_kind=cursor_kind, pages_before=pages_before,
            )
            self._log_summary(result)
            return result
        finally:
            self._finish(owns_run)

    async def sync_timeline_album(
        self,
        page_id: str,
        from_photo_id: Optional[str] = None,
        want_high_quality: bool = False,
        page_limit: Optional[int] = None,
        resume: bool = False,
    ) -> SyncResult:
        """
        Download the timeline album (every photo posted) of a Facebook page.

        Returns:
            SyncResult (with an error if the page has no timeline album)
        """
        self._require_token()
        album_id = await self.paginator.find_timeline_album(page_id)
        if not album_id:
            logger.error(f"Page {page_id} doesn't have a timeline album")
            result = SyncResult(target_id=page_id)
            result.errors.append(f"Page {page_id} has no timeline album")
            return result

        logger.info(f"Found timeline album {album_id}")
        return await self.sync_album(album_id, from_photo_id, want_high_quality, page_limit, resume)

    async def sync_user_photos(
        self,
        target_id: str,
        from_cursor: Optional[str] = None,
        page_limit: Optional[int] = None,
        resume: bool = False,
    ) -> SyncResult:
        """
        Download photos uploaded by a user, one folder per album.

        Captions are saved next to each photo as .txt files.

        Returns:
            SyncResult
        """
        self._require_token()
        owns_run = self._begin()
        try:
            logger.info(f"Downloading photos uploaded by {target_id}")
            result = SyncResult(target_id=target_id)
            owner = await self.tracker.owner_key(target_id)
            cursor_kind = CollectionKind.USER_UPLOADS.value

            start_cursor, pages_before = from_cursor, 0
            if not from_cursor:
                start_cursor, pages_before = await self._resume_position(owner, cursor_kind, resume)

            base = get_save_folder(target_id, MediaKind.PHOTO.folder, self.download_dir)

            def album_folder(item: MediaItem) -> Path:
                name = sanitize_folder_name(item.album_name) if item.album_name else NO_ALBUM_FOLDER
                return base / name

            pages = self.paginator.user_uploads(target_id, start_cursor, page_limit)
            await self._process_pages(
                result, owner, pages, album_folder, cursor_kind=cursor_kind, pages_before=pages_before
            )
            self._log_summary(result)
            return result
        finally:
            self._finish(owns_run)

    async def sync_user_videos(
        self,
        target_id: str,
        from_cursor: Optional[str] = None,
        page_limit: Optional[int] = None,
        resume: bool = False,
    ) -> SyncResult:
        """
        Download videos attached to a user's posts.

        Descriptions are saved next to each video as .txt files.

        Returns:
            SyncResult
        """
        self._require_token()
        owns_run = self._begin()
        try:
            logger.info(f"Downloading videos of {target_id}")
            result = SyncResult(target_id=target_id)
            owner = await self.tracker.owner_key(target_id)
            cursor_kind = CollectionKind.USER_VIDEOS.value

            start_cursor, pages_before = from_cursor, 0
            if not from_cursor:
                start_cursor, pages_before = await self._resume_position(owner, cursor_kind, resume)

            folder = get_save_folder(target_id, MediaKind.VIDEO.folder, self.download_dir)
            pages = self.paginator.user_videos(target_id, start_cursor, page_limit)
            await self._process_pages(
                result, owner, pages, lambda item: folder, cursor_kind=cursor_kind, pages_before=pages_before
            )
            self._log_summary(result)
            return result
        finally:
            self._finish(owns_run)

    async def sync_wall_media(
        self,
        target_id: str,
        include_video: bool = True,
        page_limit: Optional[int] = None,
        want_high_quality: bool = False,
        resume: bool = False,
    ) -> WallSyncResult:
        """
        Download photos and videos from the posts on a wall.

        Args:
            target_id: User, page or group id
            include_video: Also download videos
            page_limit: Maximum pages (None for all)
            want_high_quality: Fetch HD URLs for photos and upgrade SD copies
            resume: Continue from the stored cursor of a previous run

        Returns:
            WallSyncResult
        """
        self._require_token()
        owns_run = self._begin()
        try:
            logger.info(f"Downloading wall media of {target_id}")
            result = WallSyncResult(target_id=target_id)
            owner = await self.tracker.owner_key(target_id)
            cursor_kind = CollectionKind.WALL_MEDIA.value
            start_cursor, pages_before = await self._resume_position(owner, cursor_kind, resume)

            def kind_folder(item: MediaItem) -> Path:
                return get_save_folder(target_id, item.kind.folder, self.download_dir)

            pages = self.paginator.wall_media(target_id, start_cursor, page_limit)
            await self._process_pages(
                result, owner, pages, kind_folder, want_high_quality, include_video=include_video,
                cursor_kind=cursor_kind, pages_before=pages_before,
            )
            self._log_summary(result)
            return result
        finally:
            self._finish(owns_run)

    async def _export_links(
        self,
        target_id: str,
        pages: AsyncIterator[Page],
        include_video: bool = True,
    ) -> LinkExportResult:
        """Write id;url lines for every item, page by page."""
        self.links_dir.mkdir(parents=True, exist_ok=True)
        path = self.links_dir / f"{target_id}.txt"
        export = LinkExportResult(target_id=target_id, path=path)

        # Recreate the file on each run
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            async for page in pages:
                export.pages += 1
                lines = [
                    f"{item.media_id}{LINK_SEPARATOR}{item.url}\n"
                    for item in page.items
                    if include_video or item.kind is not MediaKind.VIDEO
                ]
                await f.write("".join(lines))
                await f.flush()
                export.links += len(lines)
                self._emit("links", target_id, page.number, message=f"{len(lines)} link(s)")

        export.cancelled = self.controller.is_cancelled()
        logger.info(f"Saved {export.links} links to {path}")
        return export

    async def export_album_links(self, album_id: str, from_photo_id: Optional[str] = None) -> LinkExportResult:
        """
        Save the id and URL of every photo of an album to LINKS_DIR/<album_id>.txt.

        Returns:
            LinkExportResult
        """
        self._require_token()
        owns_run = self._begin()
        try:
            return await self._export_links(album_id, self.paginator.album_photos(album_id, from_photo_id))
        finally:
            self._finish(owns_run)

    async def export_wall_links(
        self,
        target_id: str,
        include_video: bool = True,
        page_limit: Optional[int] = None,
    ) -> LinkExportResult:
        """
        Save the id and URL of every wall media item to LINKS_DIR/<target_id>.txt.

        Returns:
            LinkExportResult
        """
        self._require_token()
        owns_run = self._begin()
        try:
            pages = self.paginator.wall_media(target_id, page_limit=page_limit)
            return await self._export_links(target_id, pages, include_video)
        finally:
            self._finish(owns_run)

    def _resolve_operation(self, operation: Union[str, Operation]) -> Operation:
        if callable(operation):
            return operation

        operations = {
            "album": self.sync_album,
            "timeline_album": self.sync_timeline_album,
            "user_photos": self.sync_user_photos,
            "user_videos": self.sync_user_videos,
            "wall_media": self.sync_wall_media,
        }
        if operation not in operations:
            raise ValueError(f"Unknown operation: {operation}")
        return operations[operation]

    async def run_batch(
        self,
        target_ids: Union[str, Iterable[str]],
        operation: Union[str, Operation],
        delay_between_targets: Optional[float] = None,
        **options,
    ) -> BatchResult:
        """
        Run one operation for several targets, strictly one after another.

        A failing target is recorded and the batch moves on. Cancellation
        is checked before each target.

        Args:
            target_ids: Target ids in order, or a comma-separated string
            operation: Operation name ("album", "timeline_album",
                "user_photos", "user_videos", "wall_media") or a coroutine
                function taking (target_id, **options)
            delay_between_targets: Pause in seconds between targets
            **options: Passed to the operation

        Returns:
            BatchResult
        """
        if isinstance(target_ids, str):
            target_ids = parse_target_ids(target_ids)
        target_ids = list(target_ids)
        run = self._resolve_operation(operation)
        delay = self.delay_between_targets if delay_between_targets is None else delay_between_targets
        total = len(target_ids)
        batch = BatchResult(summary=BatchSummary(total_targets=total))
        started = time.monotonic()

        logger.info(f"Processing {total} target(s)...")
        owns_run = self._begin()
        try:
            for index, target_id in enumerate(target_ids):
                if self.controller.is_cancelled():
                    logger.warning(f"Batch cancelled before target {index + 1}/{total}")
                    batch.summary.cancelled = True
                    break

                logger.info(f"[{index + 1}/{total}] {target_id}")
                self._emit("target", target_id, message=f"{index + 1}/{total}")
                try:
                    result = await run(target_id, **options)
                except Exception as e:
                    logger.error(f"Target {target_id} failed: {e}")
                    batch.results.append(BatchTargetResult(target_id=target_id, success=False, error=str(e)))
                else:
                    batch.results.append(BatchTargetResult(target_id=target_id, success=True, result=result))
                    logger.info(f"Target {target_id}: {result.saved} saved, {result.skipped} skipped")

                if index < total - 1 and delay > 0 and not self.controller.is_cancelled():
                    await asyncio.sleep(delay)

            batch.summary.cancelled = batch.summary.cancelled or self.controller.is_cancelled()
        finally:
            self._finish(owns_run)

        self._summarize(batch, time.monotonic() - started)
        return batch

    def _summarize(self, batch: BatchResult, elapsed: float) -> None:
        summary = batch.summary
        summary.elapsed = round(elapsed, 1)
        for entry in batch.results:
            if not entry.success:
                summary.failed += 1
                continue
            summary.successful += 1
            summary.total_saved += entry.result.saved
            summary.total_skipped += entry.result.skipped
            summary.saved_photos += entry.result.saved_photos
            summary.saved_videos += entry.result.saved_videos

        logger.info("=" * 50)
        logger.info("BATCH SUMMARY")
        logger.info("=" * 50)
        logger.info(
            f"Targets: {summary.successful} succeeded, {summary.failed} failed of {summary.total_targets}"
            + (" (cancelled)" if summary.cancelled else "")
        )
        logger.info(
            f"Media: {summary.total_saved} saved ({summary.saved_photos} photos, {summary.saved_videos} videos), "
            f"{summary.total_skipped} skipped"
        )
        logger.info(f"Time: {summary.elapsed}s")
        for entry in batch.results:
            if not entry.success:
                logger.info(f"  FAILED {entry.target_id}: {entry.error}")
