"""Unit tests for Range header parsing and content types."""

from __future__ import annotations

import pytest
from mediapush.content_types import resolve_content_type
from mediapush.errors import MalformedRange, RangeNotSatisfiable
from mediapush.ranges import RangeWindow, parse_range


class TestParseRange:
    """Test Range header parsing."""

    def test_missing_header_means_full_object(self):
        """Test that no header means the full object."""
        assert parse_range(None, 100) is None
        assert parse_range("", 100) is None

    def test_open_ended_range(self):
        """Test that an open end runs to the last byte."""
        window = parse_range("bytes=500000-", 1_000_000)
        assert window == RangeWindow(500000, 999999)
        assert window.length == 500000
        assert window.content_range(1_000_000) == "bytes 500000-999999/1000000"

    @pytest.mark.parametrize(
        ("header", "start", "end"),
        [
            ("bytes=0-0", 0, 0),
            ("bytes=0-99", 0, 99),
            ("bytes=10-20", 10, 20),
            ("bytes=99-99", 99, 99),
            ("BYTES = 5 - 9", 5, 9),
        ],
    )
    def test_closed_ranges(self, header, start, end):
        """Test that closed ranges are parsed inclusively."""
        window = parse_range(header, 100)
        assert (window.start, window.end) == (start, end)
        assert window.length == end - start + 1
        assert window.request_header() == f"bytes={start}-{end}"

    def test_end_beyond_object_is_clamped(self):
        """Test that an end past the object is clamped."""
        assert parse_range("bytes=90-500", 100) == RangeWindow(90, 99)

    def test_only_first_range_is_served(self):
        """Test that only the first of several ranges is served."""
        assert parse_range("bytes=0-9,20-29", 100) == RangeWindow(0, 9)

    @pytest.mark.parametrize(
        "header",
        [
            "bytes=-500",
            "bytes=abc-10",
            "bytes=10-abc",
            "bytes=-1-5",
            "bytes=10",
            "items=0-10",
            "0-10",
            "bytes=20-10",
        ],
    )
    def test_malformed(self, header):
        """Test that malformed headers are rejected."""
        with pytest.raises(MalformedRange):
            parse_range(header, 100)

    @pytest.mark.parametrize("header", ["bytes=100-", "bytes=100-200", "bytes=5000-"])
    def test_start_beyond_size_not_satisfiable(self, header):
        """Test that a start past the end is unsatisfiable."""
        with pytest.raises(RangeNotSatisfiable) as excinfo:
            parse_range(header, 100)
        assert excinfo.value.status_code == 416
        assert excinfo.value.headers == {"Content-Range": "bytes */100"}

    def test_empty_object_cannot_satisfy_any_range(self):
        """Test that no range is satisfiable on an empty object."""
        with pytest.raises(RangeNotSatisfiable):
            parse_range("bytes=0-", 0)


class TestContentTypes:
    """Test content type resolution."""

    def test_extension_for_media(self):
        """Test that media extensions map to their types."""
        assert resolve_content_type("clip.mp4") == "video/mp4"
        assert resolve_content_type("songs/track.MP3") == "audio/mpeg"

    def test_specific_provider_hint_wins(self):
        """Test that a specific provider type wins."""
        assert resolve_content_type("clip.bin", "video/webm") == "video/webm"

    def test_generic_provider_hint_falls_back_to_extension(self):
        """Test that a generic provider type falls back to the extension."""
        assert resolve_content_type("a.m4a", "binary/octet-stream") == "audio/mp4"
        assert resolve_content_type("a.ogg", "application/octet-stream") == "audio/ogg"

    def test_unknown_extension(self):
        """Test that unknown extensions are octet-stream."""
        assert resolve_content_type("blob") == "application/octet-stream"
