"""Dedup and quality tracking for downloaded media."""

import asyncio
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from graphsnap.core.graph_client import GraphClient
from graphsnap.models.data_models import HighQualityResult, SkipDecision
from graphsnap.models.schema import PaginationCursor, SavedMedia
from graphsnap.storage.database import Database
from graphsnap.storage.repository import CursorRepository, MediaRepository, OwnerRepository
from graphsnap.utils.config import (
    DATABASE_ENABLED,
    PLATFORM_FACEBOOK,
    WAIT_BEFORE_NEXT_FETCH_LARGEST_PHOTO,
)
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)


class MediaTracker:
    """
    Remembers which media ids have been saved, and in which quality.

    Records are keyed by (owner, media id). A record is created on the
    first successful save and its quality flag only ever goes from
    standard to high. File existence on disk is never consulted.

    With persistence disabled (or when the database fails) every item
    looks new and every write is a no-op.
    """

    def __init__(
        self,
        database: Optional[Database],
        client: GraphClient,
        enabled: bool = DATABASE_ENABLED,
        platform: str = PLATFORM_FACEBOOK,
        hq_fetch_delay: float = WAIT_BEFORE_NEXT_FETCH_LARGEST_PHOTO,
    ):
        """
        Initialize tracker.

        Args:
            database: Database (None disables tracking)
            client: Graph API client used for HD lookups
            enabled: Use the database at all
            platform: Platform name stored with owners
            hq_fetch_delay: Pause in seconds before each HD lookup
        """
        self.database = database
        self.client = client
        self.enabled = enabled and database is not None
        self.platform = platform
        self.hq_fetch_delay = hq_fetch_delay

    async def owner_key(self, external_id: str) -> Optional[int]:
        """
        Get the database key of an owner, creating the row on first use.

        Returns:
            Owner primary key, or None if tracking is unavailable
        """
        if not self.enabled:
            return None

        try:
            async with self.database.session() as session:
                owner = await OwnerRepository.get_or_create(session, external_id, self.platform)
                return owner.id
        except SQLAlchemyError as e:
            logger.error(f"Failed to get owner {external_id}: {e}")
            return None

    async def should_skip(
        self,
        owner: Optional[int],
        media_id: str,
        want_high_quality: bool = False,
    ) -> SkipDecision:
        """
        Decide whether a media item can be skipped.

        Args:
            owner: Owner key from owner_key()
            media_id: Vendor media id
            want_high_quality: Standard-quality records should be upgraded

        Returns:
            SkipDecision
        """
        if not self.enabled or owner is None:
            return SkipDecision(skip=False)

        try:
            async with self.database.session() as session:
                record = await MediaRepository.get(session, owner, media_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to check media {media_id}: {e}")
            return SkipDecision(skip=False)

        if record is None:
            return SkipDecision(skip=False)

        if want_high_quality and not record.is_high_quality:
            return SkipDecision(skip=False, needs_upgrade=True)

        reason = "already downloaded, HD" if record.is_high_quality else "already downloaded"
        return SkipDecision(skip=True, reason=reason)

    async def fetch_high_quality(self, media_id: str, is_upgrade: bool = False) -> HighQualityResult:
        """
        Look up the best-resolution URL of a photo.

        A failed lookup for an upgrade means the standard copy is kept
        and the item is skipped; for a new item the standard URL is
        downloaded instead.

        Args:
            media_id: Photo id
            is_upgrade: A standard-quality copy already exists

        Returns:
            HighQualityResult
        """
        if self.hq_fetch_delay > 0:
            await asyncio.sleep(self.hq_fetch_delay)

        logger.info(f"Fetching HD photo {media_id}")
        url = await self.client.get_largest_photo_url(media_id)
        if url:
            return HighQualityResult(url=url)

        if is_upgrade:
            return HighQualityResult(url=None, should_skip=True)
        return HighQualityResult(url=None)

    async def record_outcome(
        self,
        owner: Optional[int],
        media_id: str,
        is_high_quality: bool,
        path: str,
        was_upgrade: bool = False,
    ) -> None:
        """
        Record a successful save.

        New ids are inserted. An existing record is only touched when
        the new copy is high quality, in which case it is upgraded.

        Args:
            owner: Owner key from owner_key()
            media_id: Vendor media id
            is_high_quality: The saved copy is best resolution
            path: Where the file was written
            was_upgrade: The save replaced a standard-quality copy
        """
        if not self.enabled or owner is None:
            return

        try:
            async with self.database.session() as session:
                inserted = await MediaRepository.insert_if_absent(
                    session, owner, media_id, is_high_quality, path
                )
                if not inserted and is_high_quality:
                    await MediaRepository.mark_high_quality(session, owner, media_id, path)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record media {media_id} at {path}: {e}")
            return

        if was_upgrade and is_high_quality:
            logger.info(f"Upgraded {media_id} to HD")

    async def load_cursor(self, owner: Optional[int], collection_kind: str) -> Optional[PaginationCursor]:
        """Get the stored pagination cursor for an owner's collection."""
        if not self.enabled or owner is None:
            return None

        try:
            async with self.database.session() as session:
                return await CursorRepository.get(session, owner, collection_kind)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load cursor ({collection_kind}): {e}")
            return None

    async def save_cursor(
        self,
        owner: Optional[int],
        collection_kind: str,
        cursor_token: Optional[str],
        pages_loaded: int,
    ) -> None:
        """Store the position reached in an owner's collection."""
        if not self.enabled or owner is None or not cursor_token:
            return

        try:
            async with self.database.session() as session:
                await CursorRepository.upsert(session, owner, collection_kind, cursor_token, pages_loaded)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save cursor ({collection_kind}): {e}")

    async def media_needing_upgrade(self, owner: Optional[int]) -> List[SavedMedia]:
        """Get an owner's standard-quality records."""
        if not self.enabled or owner is None:
            return []

        try:
            async with self.database.session() as session:
                return await MediaRepository.get_needing_upgrade(session, owner)
        except SQLAlchemyError as e:
            logger.error(f"Failed to list media needing upgrade: {e}")
            return []
