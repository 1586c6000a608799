"""
Media paginator tests
"""

import httpx
import pytest

from conftest import API_HOST, TOKEN, api_path, slept
from graphsnap.core.download_controller import DownloadController
from graphsnap.core.paginator import MediaPaginator, encode_photo_cursor
from graphsnap.models.data_models import MediaKind


def album_photo(photo_id):
    return {"id": photo_id, "largest_image": {"source": f"https://cdn.test/{photo_id}.jpg"}}


def cursor_pages(pages, requests=None):
    """
    Handler serving cursor-paginated pages.

    pages maps the incoming "after" value (None for the first page) to
    (data, next_cursor). A missing key answers 500.
    """

    def handler(request):
        if requests is not None:
            requests.append(request)
        after = request.url.params.get("after")
        if after not in pages:
            return httpx.Response(500)
        data, next_cursor = pages[after]
        body = {"data": data}
        if next_cursor:
            body["paging"] = {"cursors": {"before": "B", "after": next_cursor}}
        return httpx.Response(200, json=body)

    return handler


async def collect(pages):
    return [page async for page in pages]


class TestAlbumPhotos:
    """Tests for album photo pagination."""

    async def test_two_pages(self, make_client, no_sleep):
        requests = []
        handler = cursor_pages(
            {
                None: ([album_photo("1"), album_photo("2")], "CAARaaa"),
                "CAARaaa": ([album_photo("3")], None),
            },
            requests,
        )
        paginator = MediaPaginator(make_client(handler), page_delay=0)

        pages = await collect(paginator.album_photos("77"))

        assert len(requests) == 2
        assert [p.number for p in pages] == [1, 2]
        assert sum(len(p.items) for p in pages) == 3
        assert pages[0].next_cursor == "CAARaaa"
        assert pages[1].next_cursor is None

        first = requests[0]
        assert api_path(first) == "77/photos"
        assert first.url.params["fields"] == "largest_image"
        assert first.url.params["limit"] == "100"
        assert first.url.params["access_token"] == TOKEN
        assert "after" not in first.url.params
        assert requests[1].url.params["after"] == "CAARaaa"

    async def test_items_are_listing_quality_photos(self, make_client, no_sleep):
        handler = cursor_pages({None: ([album_photo("1"), {"id": "2"}, {"largest_image": {"source": "x"}}], None)})
        paginator = MediaPaginator(make_client(handler), page_delay=0)

        [page] = await collect(paginator.album_photos("77"))

        [item] = page.items
        assert item.media_id == "1"
        assert item.url == "https://cdn.test/1.jpg"
        assert item.kind is MediaKind.PHOTO
        assert item.is_high_quality is False

    async def test_malformed_entries_are_skipped(self, make_client, no_sleep):
        data = ["junk", None, 7, {"id": "2", "largest_image": "not-an-object"}, album_photo("3")]
        paginator = MediaPaginator(make_client(cursor_pages({None: (data, None)})), page_delay=0)

        [page] = await collect(paginator.album_photos("77"))

        assert [item.media_id for item in page.items] == ["3"]

    async def test_from_photo_id(self, make_client, no_sleep):
        requests = []
        handler = cursor_pages({"MTIzNDU=": ([album_photo("12345")], None)}, requests)
        paginator = MediaPaginator(make_client(handler), page_delay=0)

        pages = await collect(paginator.album_photos("77", from_photo_id="12345"))

        assert encode_photo_cursor("12345") == "MTIzNDU="
        assert requests[0].url.params["after"] == "MTIzNDU="
        assert pages[0].items[0].media_id == "12345"

    async def test_start_cursor_wins_over_photo_id(self, make_client, no_sleep):
        requests = []
        handler = cursor_pages({"STORED": ([], None)}, requests)
        paginator = MediaPaginator(make_client(handler), page_delay=0)

        await collect(paginator.album_photos("77", from_photo_id="12345", start_cursor="STORED"))

        assert requests[0].url.params["after"] == "STORED"

    async def test_page_limit(self, make_client, no_sleep):
        requests = []
        handler = cursor_pages(
            {None: ([album_photo("1")], "C1"), "C1": ([album_photo("2")], "C2"), "C2": ([album_photo("3")], None)},
            requests,
        )
        paginator = MediaPaginator(make_client(handler), page_delay=0.5)

        pages = await collect(paginator.album_photos("77", page_limit=2))

        assert [p.number for p in pages] == [1, 2]
        assert len(requests) == 2
        assert slept(no_sleep) == [0.5]

    async def test_pause_between_pages(self, make_client, no_sleep):
        handler = cursor_pages(
            {None: ([album_photo("1")], "C1"), "C1": ([album_photo("2")], "C2"), "C2": ([album_photo("3")], None)}
        )
        paginator = MediaPaginator(make_client(handler), page_delay=0.5)

        pages = await collect(paginator.album_photos("77"))

        assert len(pages) == 3
        assert slept(no_sleep) == [0.5, 0.5]

    async def test_repeated_cursor_stops(self, make_client, no_sleep):
        requests = []
        handler = cursor_pages({None: ([album_photo("1")], "C1"), "C1": ([album_photo("2")], "C1")}, requests)
        paginator = MediaPaginator(make_client(handler), page_delay=0)

        pages = await collect(paginator.album_photos("77"))

        assert len(pages) == 2
        assert len(requests) == 2

    async def test_failed_page_ends_iteration(self, make_client, no_sleep):
        handler = cursor_pages({None: ([album_photo("1")], "C1")})
        paginator = MediaPaginator(make_client(handler), page_delay=0)

        pages = await collect(paginator.album_photos("77"))

        assert [p.number for p in pages] == [1]

    async def test_missing_data_is_a_failed_page(self, make_client, no_sleep):
        handler = lambda request: httpx.Response(200, json={"paging": {}})
        paginator = MediaPaginator(make_client(handler), page_delay=0)

        assert await collect(paginator.album_photos("77")) == []

    async def test_cancel_stops_before_next_page(self, make_client, no_sleep):
        requests = []
        handler = cursor_pages({None: ([album_photo("1")], "C1"), "C1": ([album_photo("2")], None)}, requests)
        controller = DownloadController()
        controller.start()
        paginator = MediaPaginator(make_client(handler), controller=controller, page_delay=0)

        pages = []
        async for page in paginator.album_photos("77"):
            pages.append(page)
            controller.cancel()

        assert len(pages) == 1
        assert len(requests) == 1


class TestUserCollections:
    """Tests for user uploads and user videos."""

    async def test_user_uploads(self, make_client, no_sleep):
        requests = []
        data = [
            {
                "id": "5",
                "name": "Sunset",
                "album": {"id": "9", "name": "Trips"},
                "largest_image": {"source": "https://cdn.test/5.jpg"},
            },
            {"id": "6", "largest_image": {"source": "https://cdn.test/6.jpg"}},
        ]
        paginator = MediaPaginator(make_client(cursor_pages({None: (data, None)}, requests)), page_delay=0)

        [page] = await collect(paginator.user_uploads("me"))

        assert api_path(requests[0]) == "me/photos"
        assert requests[0].url.params["type"] == "uploaded"
        assert requests[0].url.params["fields"] == "largest_image,name,album"
        first, second = page.items
        assert (first.caption, first.album_name, first.is_high_quality) == ("Sunset", "Trips", True)
        assert (second.caption, second.album_name) == (None, None)

    async def test_user_uploads_skip_malformed_entries(self, make_client, no_sleep):
        data = [
            "junk",
            None,
            {"id": "5", "album": "Trips", "largest_image": {"source": "https://cdn.test/5.jpg"}},
        ]
        paginator = MediaPaginator(make_client(cursor_pages({None: (data, None)})), page_delay=0)

        [page] = await collect(paginator.user_uploads("me"))

        [item] = page.items
        assert (item.media_id, item.album_name) == ("5", None)

    async def test_user_videos_keep_only_videos(self, make_client, no_sleep):
        requests = []
        posts = [
            {
                "attachments": {
                    "data": [
                        {"type": "photo", "target": {"id": "1"}, "media": {"image": {"src": "https://cdn.test/1.jpg"}}},
                        {
                            "type": "video_inline",
                            "target": {"id": "2"},
                            "media": {"source": "https://cdn.test/2.mp4"},
                            "description": "Concert",
                        },
                    ]
                }
            }
        ]

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"data": posts})

        paginator = MediaPaginator(make_client(handler), page_delay=0)

        [page] = await collect(paginator.user_videos("me"))

        assert api_path(requests[0]) == "me/feed"
        assert "description" in requests[0].url.params["fields"]
        [item] = page.items
        assert (item.media_id, item.kind, item.caption) == ("2", MediaKind.VIDEO, "Concert")


class TestWallMedia:
    """Tests for link-following wall pagination."""

    async def test_follows_next_links(self, make_client, no_sleep):
        requests = []
        next_url = f"{API_HOST}/42/feed?fields=x&after=NEXT1&access_token={TOKEN}"

        def handler(request):
            requests.append(request)
            if request.url.params.get("after") == "NEXT1":
                return httpx.Response(200, json={"data": [{"attachments": {"data": [
                    {"type": "video", "target": {"id": "v1"}, "media": {"source": "https://cdn.test/v1.mp4"}},
                ]}}]})
            return httpx.Response(200, json={
                "data": [{"attachments": {"data": [
                    {"type": "photo", "target": {"id": "p1"}, "media": {"image": {"src": "https://cdn.test/p1.jpg"}}},
                ]}}],
                "paging": {"next": next_url},
            })

        paginator = MediaPaginator(make_client(handler), page_delay=0)

        pages = await collect(paginator.wall_media("42"))

        assert len(requests) == 2
        assert requests[0].url.params["fields"] == "attachments{media,type,subattachments,target}"
        assert str(requests[1].url) == next_url
        assert pages[0].next_cursor == "NEXT1"
        assert pages[0].next_url == next_url
        assert [i.media_id for p in pages for i in p.items] == ["p1", "v1"]

    async def test_failed_page_ends_iteration(self, make_client, no_sleep):
        paginator = MediaPaginator(make_client(lambda request: httpx.Response(403)), page_delay=0)

        assert await collect(paginator.wall_media("42")) == []


class TestAlbumLookups:
    """Tests for album metadata lookups."""

    async def test_fetch_album_info(self, make_client, no_sleep):
        def handler(request):
            assert request.url.params["fields"] == "id,from,name,type,count,link"
            return httpx.Response(200, json={
                "id": "77", "name": "Trips", "count": 3, "link": "https://fb.test/77", "from": {"id": "owner1"},
            })

        paginator = MediaPaginator(make_client(handler))

        info = await paginator.fetch_album_info("77")

        assert info.album_id == "77"
        assert info.owner_id == "owner1"
        assert info.name == "Trips"
        assert info.count == 3

    async def test_fetch_album_info_failure(self, make_client, no_sleep):
        paginator = MediaPaginator(make_client(lambda request: httpx.Response(404)))

        assert await paginator.fetch_album_info("77") is None

    @pytest.mark.parametrize(
        "albums, expected",
        [
            ([{"id": "1", "type": "normal"}, {"id": "2", "type": "wall"}], "2"),
            ([{"id": "1", "type": "profile"}], None),
            ([], None),
            (["junk", None, {"id": "3", "type": "wall"}], "3"),
        ],
    )
    async def test_find_timeline_album(self, make_client, no_sleep, albums, expected):
        def handler(request):
            assert api_path(request) == "page1/albums"
            return httpx.Response(200, json={"data": albums})

        paginator = MediaPaginator(make_client(handler))

        assert await paginator.find_timeline_album("page1") == expected
