"""Repository layer for database operations."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from graphsnap.models.schema import Owner, PaginationCursor, SavedMedia
from graphsnap.utils.config import PLATFORM_FACEBOOK
from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)


class OwnerRepository:
    """Repository for Owner operations."""

    @staticmethod
    async def get_or_create(
        session: AsyncSession,
        external_id: str,
        platform: str = PLATFORM_FACEBOOK,
    ) -> Owner:
        """
        Get an owner by vendor id, creating it on first use.

        Args:
            session: Database session
            external_id: Stable vendor id (user, page, group)
            platform: Platform name

        Returns:
            Owner instance
        """
        await session.execute(
            insert(Owner)
            .values(platform=platform, external_id=external_id, created_at=datetime.utcnow())
            .on_conflict_do_nothing(index_elements=["platform", "external_id"])
        )
        result = await session.execute(
            select(Owner).where(Owner.platform == platform, Owner.external_id == external_id)
        )
        return result.scalar_one()

    @staticmethod
    async def get_by_external_id(
        session: AsyncSession,
        external_id: str,
        platform: str = PLATFORM_FACEBOOK,
    ) -> Optional[Owner]:
        """Get an owner by vendor id without creating it."""
        result = await session.execute(
            select(Owner).where(Owner.platform == platform, Owner.external_id == external_id)
        )
        return result.scalar_one_or_none()


class MediaRepository:
    """Repository for SavedMedia operations."""

    @staticmethod
    async def get(session: AsyncSession, owner_id: int, media_id: str) -> Optional[SavedMedia]:
        """
        Get the saved record for one media item.

        Args:
            session: Database session
            owner_id: Owner primary key
            media_id: Vendor media id

        Returns:
            SavedMedia instance or None
        """
        result = await session.execute(
            select(SavedMedia).where(SavedMedia.owner_id == owner_id, SavedMedia.media_id == media_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def insert_if_absent(
        session: AsyncSession,
        owner_id: int,
        media_id: str,
        is_high_quality: bool,
        file_path: Optional[str],
    ) -> bool:
        """
        Insert a media record unless one already exists.

        Returns:
            True if a row was inserted
        """
        result = await session.execute(
            insert(SavedMedia)
            .values(
                owner_id=owner_id,
                media_id=media_id,
                is_high_quality=is_high_quality,
                file_path=file_path,
                created_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["owner_id", "media_id"])
        )
        inserted = result.rowcount == 1
        logger.debug(f"Saved media {media_id} (owner={owner_id}, hq={is_high_quality}, inserted={inserted})")
        return inserted

    @staticmethod
    async def mark_high_quality(
        session: AsyncSession,
        owner_id: int,
        media_id: str,
        file_path: Optional[str] = None,
    ) -> None:
        """
        Flag a media record as high quality, optionally moving its path.

        Args:
            session: Database session
            owner_id: Owner primary key
            media_id: Vendor media id
            file_path: New file path (kept as-is when None)
        """
        values = {"is_high_quality": True}
        if file_path:
            values["file_path"] = file_path

        await session.execute(
            update(SavedMedia)
            .where(SavedMedia.owner_id == owner_id, SavedMedia.media_id == media_id)
            .values(**values)
        )
        logger.debug(f"Upgraded media to high quality: {media_id} -> {file_path}")

    @staticmethod
    async def get_needing_upgrade(session: AsyncSession, owner_id: int) -> List[SavedMedia]:
        """Get all standard-quality media for an owner."""
        result = await session.execute(
            select(SavedMedia)
            .where(SavedMedia.owner_id == owner_id)
            .where(SavedMedia.is_high_quality == False)  # noqa: E712
            .order_by(SavedMedia.id)
        )
        return list(result.scalars().all())


class CursorRepository:
    """Repository for PaginationCursor operations."""

    @staticmethod
    async def get(session: AsyncSession, owner_id: int, collection_kind: str) -> Optional[PaginationCursor]:
        """Get the stored cursor for an owner's collection."""
        result = await session.execute(
            select(PaginationCursor).where(
                PaginationCursor.owner_id == owner_id,
                PaginationCursor.collection_kind == collection_kind,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        session: AsyncSession,
        owner_id: int,
        collection_kind: str,
        cursor_token: str,
        pages_loaded: int,
    ) -> None:
        """
        Insert or replace the cursor for an owner's collection.

        Args:
            session: Database session
            owner_id: Owner primary key
            collection_kind: CollectionKind value
            cursor_token: Cursor to resume from
            pages_loaded: Pages processed so far
        """
        now = datetime.utcnow()
        stmt = insert(PaginationCursor).values(
            owner_id=owner_id,
            collection_kind=collection_kind,
            cursor_token=cursor_token,
            pages_loaded=pages_loaded,
            last_updated=now,
        )
        await session.execute(
            stmt.on_conflict_do_update(
                index_elements=["owner_id", "collection_kind"],
                set_={
                    "cursor_token": stmt.excluded.cursor_token,
                    "pages_loaded": stmt.excluded.pages_loaded,
                    "last_updated": now,
                },
            )
        )
        logger.debug(f"Cursor saved: owner={owner_id} kind={collection_kind} pages={pages_loaded}")
