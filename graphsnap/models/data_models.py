"""Data models for Graph API media and sync results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional


class MediaKind(str, Enum):
    """Kind of a downloadable media item."""
    PHOTO = "photo"
    VIDEO = "video"

    @property
    def folder(self) -> str:
        return "photos" if self is MediaKind.PHOTO else "videos"


class CollectionKind(str, Enum):
    """Paginated collections a cursor can be stored for."""
    ALBUM_PHOTOS = "album_photos"
    USER_UPLOADS = "user_uploads"
    USER_VIDEOS = "user_videos"
    WALL_MEDIA = "wall_media"


@dataclass
class MediaItem:
    """A single photo or video extracted from a listing."""
    media_id: str
    url: str
    kind: MediaKind
    is_high_quality: bool = False  # listing URL is already best resolution
    caption: Optional[str] = None
    album_name: Optional[str] = None


@dataclass
class Page:
    """One fetched page of a paginated collection."""
    number: int
    items: List[MediaItem] = field(default_factory=list)
    next_cursor: Optional[str] = None
    next_url: Optional[str] = None


@dataclass
class AlbumInfo:
    """Album metadata used to resolve the owner."""
    album_id: str
    name: Optional[str] = None
    count: Optional[int] = None
    link: Optional[str] = None
    owner_id: Optional[str] = None


@dataclass
class UsageSnapshot:
    """Latest x-app-usage values, as percentages of the rolling window."""
    call_count: float = 0
    total_cputime: float = 0
    total_time: float = 0
    observed_at: Optional[datetime] = None

    @property
    def max_percent(self) -> float:
        return max(self.call_count, self.total_cputime, self.total_time)


@dataclass
class ProxyCheckResult:
    """Outcome of probing one proxy."""
    proxy: str
    success: bool
    latency: Optional[float] = None  # Milliseconds
    ip: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProxyHealthReport:
    """Aggregate of a pool-wide health check."""
    total: int = 0
    healthy: int = 0
    dead: int = 0
    average_latency: Optional[float] = None
    fastest: Optional[ProxyCheckResult] = None
    results: List[ProxyCheckResult] = field(default_factory=list)


@dataclass
class SkipDecision:
    """Whether a media item can be skipped, or needs an HD upgrade."""
    skip: bool
    needs_upgrade: bool = False
    reason: Optional[str] = None


@dataclass
class HighQualityResult:
    """Result of asking the API for the best-resolution URL."""
    url: Optional[str]
    should_skip: bool = False

    @property
    def is_high_quality(self) -> bool:
        return self.url is not None


@dataclass
class ProgressEvent:
    """Structured progress notification for the presentation layer."""
    stage: str
    target_id: str
    page: Optional[int] = None
    media_id: Optional[str] = None
    message: str = ""


@dataclass
class SyncResult:
    """Outcome of syncing one target."""
    target_id: str
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    pages: int = 0
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)
    saved_photos: int = 0
    saved_videos: int = 0

    def record_saved(self, kind: MediaKind) -> None:
        self.saved += 1
        if kind is MediaKind.PHOTO:
            self.saved_photos += 1
        else:
            self.saved_videos += 1

    def record_skipped(self, kind: MediaKind) -> None:
        self.skipped += 1

    def record_failed(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)


@dataclass
class WallSyncResult(SyncResult):
    """Wall sync outcome with separate photo and video skip counts."""
    skipped_photos: int = 0
    skipped_videos: int = 0

    def record_skipped(self, kind: MediaKind) -> None:
        super().record_skipped(kind)
        if kind is MediaKind.PHOTO:
            self.skipped_photos += 1
        else:
            self.skipped_videos += 1


@dataclass
class LinkExportResult:
    """Outcome of writing id;url lines for a target."""
    target_id: str
    path: Path
    links: int = 0
    pages: int = 0
    cancelled: bool = False


@dataclass
class BatchTargetResult:
    """Per-target entry of a batch run."""
    target_id: str
    success: bool
    result: Optional[SyncResult] = None
    error: Optional[str] = None


@dataclass
class BatchSummary:
    """Totals across a batch run."""
    total_targets: int = 0
    successful: int = 0
    failed: int = 0
    total_saved: int = 0
    total_skipped: int = 0
    saved_photos: int = 0
    saved_videos: int = 0
    elapsed: float = 0.0  # Seconds
    cancelled: bool = False


@dataclass
class BatchResult:
    """Per-target outcomes plus the aggregate summary."""
    results: List[BatchTargetResult] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)
