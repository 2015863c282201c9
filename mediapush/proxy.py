from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError
from litestar.response import Response, Stream

from .errors import RelayError, StreamingFailure, error_response
from .ranges import RangeWindow, parse_range
from .settings import StorageSettings
from .storage import BlobLocator, MediaObject, build_s3_client, run_sync

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from litestar import Request
else:  # pragma: no cover
    AsyncIterator = Any

LOG = logging.getLogger("mediapush.proxy")

READ_SIZE = 1024 * 64


def load_storage_settings_from_env() -> StorageSettings:
    """Load media storage settings from environment variables.

    Returns:
        StorageSettings instance populated from environment variables.
    """
    return StorageSettings()


class MediaProxy:
    """Relay media objects from the store with HTTP range semantics."""

    def __init__(self, settings: StorageSettings, client: Any = None):
        self._settings = settings
        self._client = client if client is not None else build_s3_client(settings)
        self._locator = BlobLocator(
            self._client,
            settings.media_bucket,
            prefix=settings.media_prefix,
            cache_ttl=settings.locator_cache_ttl,
        )

    @property
    def client(self) -> Any:
        return self._client

    @property
    def locator(self) -> BlobLocator:
        return self._locator

    async def startup(self) -> None:
        LOG.info(
            "media proxy ready (endpoint=%s, bucket=%s, prefix=%r)",
            self._settings.endpoint or "aws",
            self._settings.media_bucket,
            self._settings.media_prefix,
        )

    async def shutdown(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await run_sync(close)

    async def handle(self, request: Request, path: str) -> Response:
        LOG.debug("handle method=%s path=%s", request.method, path)
        if request.method not in {"GET", "HEAD"}:
            return Response(
                content="Method Not Allowed",
                status_code=405,
                headers={"Allow": "GET, HEAD"},
                media_type="text/plain",
            )
        try:
            return await self.respond(
                request.method, path, request.headers.get("range")
            )
        except RelayError as error:
            LOG.debug("media request %s failed: %s", path, error)
            return error_response(error)

    async def respond(
        self, method: str, name: str, range_header: str | None
    ) -> Response:
        """Build the full or partial response for ``name``.

        Validation happens before the body is opened, so every error raised
        here precedes the response headers.
        """
        media = await self._locator.locate(name)
        window = parse_range(range_header, media.total_size)
        headers = self._media_headers(media, window)
        status_code = 206 if window is not None else 200

        if method == "HEAD":
            return Response(
                content=b"",
                status_code=status_code,
                headers=headers,
                media_type=media.content_type,
            )

        body = await self._locator.open(media, window)
        expected = window.length if window is not None else media.total_size
        LOG.debug(
            "streaming s3://%s/%s status=%s bytes=%d",
            self._locator.bucket,
            media.key,
            status_code,
            expected,
        )
        return Stream(
            content=self._relay(media, body, expected),
            status_code=status_code,
            headers=headers,
            media_type=media.content_type,
        )

    def _media_headers(
        self, media: MediaObject, window: RangeWindow | None
    ) -> dict[str, str]:
        headers = {
            "Accept-Ranges": "bytes",
            "Cache-Control": "no-cache",
        }
        if media.etag:
            headers["ETag"] = media.etag
        if window is None:
            headers["Content-Length"] = str(media.total_size)
        else:
            headers["Content-Length"] = str(window.length)
            headers["Content-Range"] = window.content_range(media.total_size)
        return headers

    async def _relay(
        self, media: MediaObject, body: Any, expected: int
    ) -> AsyncIterator[bytes]:
        sent = 0
        try:
            while True:
                try:
                    chunk = await run_sync(body.read, READ_SIZE)
                except (BotoCoreError, OSError) as error:
                    LOG.warning(
                        "upstream read failed for s3://%s/%s after %d bytes: %s",
                        self._locator.bucket,
                        media.key,
                        sent,
                        error,
                    )
                    msg = f"upstream stream for {media.name!r} failed"
                    raise StreamingFailure(msg) from error
                if not chunk:
                    break
                sent += len(chunk)
                yield chunk
        finally:
            await run_sync(body.close)

        if sent != expected:
            LOG.warning(
                "upstream ended early for s3://%s/%s (%d of %d bytes)",
                self._locator.bucket,
                media.key,
                sent,
                expected,
            )
            msg = f"upstream stream for {media.name!r} ended early"
            raise StreamingFailure(msg)

    @classmethod
    def from_env(cls) -> MediaProxy:
        """Create a MediaProxy instance from environment variables.

        Returns:
            MediaProxy configured from environment variables.
        """
        return cls(load_storage_settings_from_env())
