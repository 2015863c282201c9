from __future__ import annotations

import mimetypes
from pathlib import PurePosixPath

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Players are picky about these; mimetypes tables differ between platforms.
_MEDIA_TYPES = {
    ".aac": "audio/aac",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    ".m4v": "video/mp4",
    ".mkv": "video/x-matroska",
    ".mov": "video/quicktime",
    ".mp3": "audio/mpeg",
    ".mp4": "video/mp4",
    ".oga": "audio/ogg",
    ".ogg": "audio/ogg",
    ".ogv": "video/ogg",
    ".opus": "audio/ogg",
    ".wav": "audio/wav",
    ".webm": "video/webm",
}

_GENERIC_HINTS = {"", DEFAULT_CONTENT_TYPE, "binary/octet-stream"}


def resolve_content_type(name: str, hint: str | None = None) -> str:
    """Return the content type to advertise for ``name``.

    A specific type supplied by the storage provider wins; generic provider
    defaults fall back to the file extension.
    """
    if hint and hint.strip().lower() not in _GENERIC_HINTS:
        return hint
    suffix = PurePosixPath(name).suffix.lower()
    if suffix in _MEDIA_TYPES:
        return _MEDIA_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(name, strict=False)
    return guessed or DEFAULT_CONTENT_TYPE
