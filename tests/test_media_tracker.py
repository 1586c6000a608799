"""
Media tracker tests
"""

from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from conftest import api_path, slept
from graphsnap.core.media_tracker import MediaTracker
from graphsnap.storage.repository import CursorRepository, MediaRepository, OwnerRepository

DB_DOWN = OperationalError("SELECT 1", {}, Exception("disk I/O error"))


def largest_image_handler(sources):
    """Serve ?fields=largest_image lookups from a dict of id -> url."""

    def handler(request):
        media_id = api_path(request)
        if media_id not in sources:
            return httpx.Response(404)
        return httpx.Response(200, json={"id": media_id, "largest_image": {"source": sources[media_id]}})

    return handler


@pytest.fixture
def tracker(database, make_client):
    return MediaTracker(database, make_client(largest_image_handler({"1": "https://cdn.test/1-hd.jpg"})), hq_fetch_delay=0)


class TestShouldSkip:
    """Tests for dedup decisions."""

    async def test_unknown_media(self, tracker):
        owner = await tracker.owner_key("owner1")

        decision = await tracker.should_skip(owner, "1")

        assert decision.skip is False
        assert decision.needs_upgrade is False

    async def test_saved_media_is_skipped(self, tracker):
        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", False, "/d/1.png")

        decision = await tracker.should_skip(owner, "1")

        assert decision.skip is True
        assert decision.reason == "already downloaded"

    async def test_standard_copy_needs_upgrade_when_hd_wanted(self, tracker):
        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", False, "/d/1.png")

        decision = await tracker.should_skip(owner, "1", want_high_quality=True)

        assert decision.skip is False
        assert decision.needs_upgrade is True

    async def test_hd_copy_is_skipped_even_when_hd_wanted(self, tracker):
        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", True, "/d/1.png")

        decision = await tracker.should_skip(owner, "1", want_high_quality=True)

        assert decision.skip is True
        assert decision.reason == "already downloaded, HD"

    async def test_records_are_per_owner(self, tracker):
        first = await tracker.owner_key("owner1")
        second = await tracker.owner_key("owner2")
        await tracker.record_outcome(first, "1", False, "/d/1.png")

        assert (await tracker.should_skip(second, "1")).skip is False


class TestRecordOutcome:
    """Tests for quality monotonicity."""

    async def test_upgrade_updates_flag_and_path(self, tracker, database):
        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", False, "/d/sd/1.png")
        await tracker.record_outcome(owner, "1", True, "/d/hd/1.png", was_upgrade=True)

        async with database.session() as session:
            record = await MediaRepository.get(session, owner, "1")

        assert record.is_high_quality is True
        assert record.file_path == "/d/hd/1.png"

    async def test_never_downgrades(self, tracker, database):
        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", True, "/d/hd/1.png")
        await tracker.record_outcome(owner, "1", False, "/d/sd/1.png")

        async with database.session() as session:
            record = await MediaRepository.get(session, owner, "1")

        assert record.is_high_quality is True
        assert record.file_path == "/d/hd/1.png"

    async def test_standard_record_not_touched_by_standard_save(self, tracker, database):
        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", False, "/d/a.png")
        await tracker.record_outcome(owner, "1", False, "/d/b.png")

        async with database.session() as session:
            record = await MediaRepository.get(session, owner, "1")

        assert record.file_path == "/d/a.png"

    async def test_media_needing_upgrade(self, tracker):
        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", False, "/d/1.png")
        await tracker.record_outcome(owner, "2", True, "/d/2.png")
        await tracker.record_outcome(owner, "3", False, "/d/3.png")

        pending = await tracker.media_needing_upgrade(owner)

        assert [m.media_id for m in pending] == ["1", "3"]


class TestFetchHighQuality:
    """Tests for HD lookups."""

    async def test_found(self, tracker):
        result = await tracker.fetch_high_quality("1")

        assert result.url == "https://cdn.test/1-hd.jpg"
        assert result.is_high_quality
        assert result.should_skip is False

    async def test_failed_upgrade_is_skipped(self, tracker, no_sleep):
        result = await tracker.fetch_high_quality("404", is_upgrade=True)

        assert result.url is None
        assert result.should_skip is True

    async def test_failed_new_item_falls_back(self, tracker, no_sleep):
        result = await tracker.fetch_high_quality("404", is_upgrade=False)

        assert result.url is None
        assert result.should_skip is False
        assert not result.is_high_quality

    async def test_waits_before_lookup(self, database, make_client, no_sleep):
        tracker = MediaTracker(database, make_client(largest_image_handler({"1": "u"})), hq_fetch_delay=0.5)

        await tracker.fetch_high_quality("1")

        assert slept(no_sleep) == [0.5]


class TestCursors:
    """Tests for stored pagination positions."""

    async def test_save_and_load(self, tracker):
        owner = await tracker.owner_key("owner1")

        await tracker.save_cursor(owner, "user_uploads", "C1", 1)
        await tracker.save_cursor(owner, "user_uploads", "C2", 2)
        stored = await tracker.load_cursor(owner, "user_uploads")

        assert stored.cursor_token == "C2"
        assert stored.pages_loaded == 2
        assert await tracker.load_cursor(owner, "user_videos") is None

    async def test_missing_token_not_saved(self, tracker):
        owner = await tracker.owner_key("owner1")

        await tracker.save_cursor(owner, "user_uploads", "C1", 1)
        await tracker.save_cursor(owner, "user_uploads", None, 2)

        assert (await tracker.load_cursor(owner, "user_uploads")).cursor_token == "C1"


class TestDisabledTracking:
    """Tests for running without persistence."""

    async def test_everything_is_new(self, make_client):
        tracker = MediaTracker(None, make_client())

        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", True, "/d/1.png")
        await tracker.save_cursor(owner, "user_uploads", "C1", 1)

        assert owner is None
        assert (await tracker.should_skip(owner, "1")).skip is False
        assert await tracker.load_cursor(owner, "user_uploads") is None
        assert await tracker.media_needing_upgrade(owner) == []

    async def test_disabled_flag(self, database, make_client):
        tracker = MediaTracker(database, make_client(), enabled=False)

        assert tracker.enabled is False
        assert await tracker.owner_key("owner1") is None


class TestDatabaseErrors:
    """Tests for degrading when the database fails."""

    async def test_lookup_error_means_not_downloaded(self, tracker):
        owner = await tracker.owner_key("owner1")
        await tracker.record_outcome(owner, "1", True, "/d/1.png")

        with patch.object(MediaRepository, "get", side_effect=DB_DOWN):
            decision = await tracker.should_skip(owner, "1")

        assert decision.skip is False

    async def test_write_errors_are_swallowed(self, tracker):
        owner = await tracker.owner_key("owner1")

        with patch.object(MediaRepository, "insert_if_absent", side_effect=DB_DOWN):
            await tracker.record_outcome(owner, "1", True, "/d/1.png")
        with patch.object(CursorRepository, "upsert", side_effect=DB_DOWN):
            await tracker.save_cursor(owner, "user_uploads", "C1", 1)

        assert (await tracker.should_skip(owner, "1")).skip is False
        assert await tracker.load_cursor(owner, "user_uploads") is None

    async def test_owner_error(self, tracker):
        with patch.object(OwnerRepository, "get_or_create", side_effect=DB_DOWN):
            assert await tracker.owner_key("owner1") is None


class TestRepositories:
    """Tests for repository helpers."""

    async def test_owner_get_or_create_is_idempotent(self, database):
        async with database.session() as session:
            first = await OwnerRepository.get_or_create(session, "owner1")
        async with database.session() as session:
            second = await OwnerRepository.get_or_create(session, "owner1")
            found = await OwnerRepository.get_by_external_id(session, "owner1")
            missing = await OwnerRepository.get_by_external_id(session, "owner2")

        assert first.id == second.id == found.id
        assert missing is None

    async def test_insert_if_absent_keeps_first_row(self, database):
        async with database.session() as session:
            owner = await OwnerRepository.get_or_create(session, "owner1")
            assert await MediaRepository.insert_if_absent(session, owner.id, "1", False, "/d/1.png") is True
            assert await MediaRepository.insert_if_absent(session, owner.id, "1", True, "/d/1.png") is False
            await MediaRepository.insert_if_absent(session, owner.id, "2", True, None)

            first = await MediaRepository.get(session, owner.id, "1")
            second = await MediaRepository.get(session, owner.id, "2")
            assert first.is_high_quality is False
            assert first.file_path == "/d/1.png"
            assert second.is_high_quality is True
