"""
Filesystem helper and config tests
"""

from pathlib import Path

import pytest

from graphsnap.utils.config import get_save_folder
from graphsnap.utils.files import parse_target_ids, sanitize_folder_name, save_caption


class TestSanitizeFolderName:
    """Tests for folder name cleanup."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Trips", "Trips"),
            ("Trips: 2020/21", "Trips_ 2020_21"),
            ("  lots   of\tspace ", "lots of_space"),
            ('a<b>c"d|e?f*g\\h', "a_b_c_d_e_f_g_h"),
            ("", "(no name)"),
            (None, "(no name)"),
        ],
    )
    def test_names(self, name, expected):
        assert sanitize_folder_name(name) == expected

    def test_long_names_truncated(self):
        assert len(sanitize_folder_name("x" * 300)) == 100


class TestParseTargetIds:
    """Tests for comma-separated target input."""

    def test_split_and_strip(self):
        assert parse_target_ids(" 123, 456 ,,789 ") == ["123", "456", "789"]

    @pytest.mark.parametrize("raw", ["", None, " , "])
    def test_empty(self, raw):
        assert parse_target_ids(raw) == []


class TestSaveCaption:
    """Tests for caption files."""

    async def test_writes_beside_media(self, tmp_path):
        media = tmp_path / "10.png"

        path = await save_caption(media, "  Sunset \n")

        assert path == tmp_path / "10.txt"
        assert path.read_text(encoding="utf-8") == "Sunset"

    @pytest.mark.parametrize("caption", [None, "", "   "])
    async def test_blank_caption_skipped(self, tmp_path, caption):
        assert await save_caption(tmp_path / "10.png", caption) is None
        assert list(tmp_path.iterdir()) == []

    async def test_write_error_is_not_raised(self, tmp_path):
        assert await save_caption(tmp_path / "missing" / "10.png", "text") is None


class TestSaveFolder:
    """Tests for the download folder layout."""

    def test_owner_and_kind(self):
        assert get_save_folder("owner1", "photos", Path("/data")) == Path("/data/owner1/photos")
