from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import MalformedRange, RangeNotSatisfiable

_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class RangeWindow:
    """Inclusive byte interval of an object."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def request_header(self) -> str:
        return f"bytes={self.start}-{self.end}"

    def content_range(self, total_size: int) -> str:
        return f"bytes {self.start}-{self.end}/{total_size}"


def parse_range(range_header: str | None, total_size: int) -> RangeWindow | None:
    """Parse a ``Range`` header against an object of ``total_size`` bytes.

    Returns:
        ``None`` when no range was requested, otherwise the window to serve.

    Raises:
        MalformedRange: the header is not of the form ``bytes=<start>-<end>?``.
        RangeNotSatisfiable: ``start`` lies at or beyond the end of the object.
    """
    if range_header is None or not range_header.strip():
        return None

    unit, sep, ranges = range_header.partition("=")
    if not sep or unit.strip().lower() != "bytes":
        msg = f"unsupported range header {range_header!r}"
        raise MalformedRange(msg)

    # Only the first range of a multi-range request is served.
    first = ranges.split(",", 1)[0].strip()
    start_str, sep, end_str = first.partition("-")
    start_str = start_str.strip()
    end_str = end_str.strip()
    if not sep or not _DIGITS.fullmatch(start_str):
        msg = f"range start is required in {range_header!r}"
        raise MalformedRange(msg)
    if end_str and not _DIGITS.fullmatch(end_str):
        msg = f"invalid range end in {range_header!r}"
        raise MalformedRange(msg)

    start = int(start_str)
    if start >= total_size:
        msg = f"range start {start} beyond object size {total_size}"
        raise RangeNotSatisfiable(total_size, msg)

    end = int(end_str) if end_str else total_size - 1
    if end < start:
        msg = f"range end {end} before start {start}"
        raise MalformedRange(msg)
    end = min(end, total_size - 1)
    return RangeWindow(start=start, end=end)
