"""Extraction of media items from feed post attachments."""

from typing import Any, Iterable, List

from graphsnap.models.data_models import MediaItem, MediaKind

PHOTO_TYPES = ("photo",)
VIDEO_TYPES = ("video", "video_inline", "video_autoplay")
ALBUM_TYPES = ("album",)


def flatten_attachment(attachment: Any) -> List[MediaItem]:
    """
    Flatten one attachment into media items.

    Photos carry their image in media.image.src, videos in media.source.
    Albums hold further attachments in subattachments.data and are
    flattened recursively. Leaves without an id or URL are dropped.

    Example (album):
        {
            "type": "album",
            "target": {"id": "1020873538672374"},
            "subattachments": {"data": [
                {"type": "photo", "target": {"id": "5828"}, "media": {"image": {"src": "https://..."}}},
                {"type": "video_autoplay", "target": {"id": "8432"}, "media": {"source": "https://..."}}
            ]}
        }

    Args:
        attachment: Attachment object from the feed endpoint

    Returns:
        Media items in attachment order
    """
    if not isinstance(attachment, dict):
        return []

    attachment_type = attachment.get("type")
    if not attachment_type:
        return []

    if attachment_type in ALBUM_TYPES:
        items: List[MediaItem] = []
        for sub in (attachment.get("subattachments") or {}).get("data") or []:
            items.extend(flatten_attachment(sub))
        return items

    media_id = (attachment.get("target") or {}).get("id")
    media = attachment.get("media") or {}

    if attachment_type in PHOTO_TYPES:
        url = (media.get("image") or {}).get("src")
        kind = MediaKind.PHOTO
    elif attachment_type in VIDEO_TYPES:
        url = media.get("source")
        kind = MediaKind.VIDEO
    else:
        return []

    if not media_id or not url:
        return []

    return [
        MediaItem(
            media_id=str(media_id),
            url=url,
            kind=kind,
            # Feed videos are the only rendition; photos are thumbnails
            is_high_quality=kind is MediaKind.VIDEO,
            caption=attachment.get("description") or None,
        )
    ]


def extract_feed_media(posts: Iterable[Any]) -> List[MediaItem]:
    """
    Collect media items from every attachment of a page of feed posts.

    Args:
        posts: The "data" list of a feed response

    Returns:
        Media items in post order
    """
    items: List[MediaItem] = []
    for post in posts or []:
        if not isinstance(post, dict):
            continue
        for attachment in (post.get("attachments") or {}).get("data") or []:
            items.extend(flatten_attachment(attachment))
    return items
