"""SQLAlchemy ORM models for GraphSnap."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Owner(Base):
    """Owner of mirrored media (user, page, group) keyed by vendor id."""

    __tablename__ = "owners"
    __table_args__ = (UniqueConstraint("platform", "external_id", name="uq_owner_platform_external"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[str] = mapped_column(String(20), nullable=False, default="facebook")
    external_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    media: Mapped[List["SavedMedia"]] = relationship(back_populates="owner", cascade="all, delete-orphan")
    cursors: Mapped[List["PaginationCursor"]] = relationship(back_populates="owner", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Owner(id={self.id}, external_id='{self.external_id}')>"


class SavedMedia(Base):
    """A media item that has been written to disk at least once."""

    __tablename__ = "saved_media"
    __table_args__ = (
        UniqueConstraint("owner_id", "media_id", name="uq_saved_media_owner_media"),
        Index("idx_saved_media_hq_status", "owner_id", "is_high_quality"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("owners.id", ondelete="CASCADE"), nullable=False)
    media_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Flips false -> true only
    is_high_quality: Mapped[bool] = mapped_column(Boolean, default=False)
    file_path: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    owner: Mapped["Owner"] = relationship(back_populates="media")

    def __repr__(self) -> str:
        return f"<SavedMedia(owner={self.owner_id}, media='{self.media_id}', hq={self.is_high_quality})>"


class PaginationCursor(Base):
    """Last processed position in a paginated collection."""

    __tablename__ = "pagination_cursors"
    __table_args__ = (UniqueConstraint("owner_id", "collection_kind", name="uq_cursor_owner_kind"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("owners.id", ondelete="CASCADE"), nullable=False)
    collection_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    cursor_token: Mapped[str] = mapped_column(Text, nullable=False)
    pages_loaded: Mapped[int] = mapped_column(Integer, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner: Mapped["Owner"] = relationship(back_populates="cursors")

    def __repr__(self) -> str:
        return f"<PaginationCursor(owner={self.owner_id}, kind='{self.collection_kind}', pages={self.pages_loaded})>"
