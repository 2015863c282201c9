from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any

from anyio import to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .content_types import resolve_content_type
from .errors import NotFound, RangeNotSatisfiable, UpstreamUnavailable

if TYPE_CHECKING:
    from collections.abc import Callable

    from .ranges import RangeWindow
    from .settings import StorageSettings

LOG = logging.getLogger("mediapush.storage")

MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchBucket"})


async def run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(partial(func, *args, **kwargs))


def error_code(error: ClientError) -> str | None:
    return error.response.get("Error", {}).get("Code")


def build_s3_client(settings: StorageSettings):
    session = Session(
        aws_access_key_id=settings.access_key,
        aws_secret_access_key=settings.secret_key,
        aws_session_token=settings.session_token,
        region_name=settings.region,
    )
    return session.client(
        "s3",
        endpoint_url=settings.endpoint,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 3},
            s3={"addressing_style": settings.addressing_style},
        ),
    )


@dataclass(frozen=True)
class MediaObject:
    name: str
    key: str
    total_size: int
    content_type: str
    etag: str | None = None


class BlobLocator:
    """Resolve logical media names to objects in the media bucket."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        prefix: str = "",
        cache_ttl: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._prefix = prefix
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[str, tuple[float, MediaObject]] = {}

    @property
    def bucket(self) -> str:
        return self._bucket

    def key_for(self, name: str) -> str:
        trimmed = name.strip("/")
        if not trimmed or ".." in trimmed.split("/"):
            msg = f"invalid media name {name!r}"
            raise NotFound(msg)
        return f"{self._prefix}{trimmed}"

    async def locate(self, name: str) -> MediaObject:
        """Look up object metadata for ``name``.

        Raises:
            NotFound: the provider has no such object, or it has no known size.
            UpstreamUnavailable: the metadata call itself failed.
        """
        key = self.key_for(name)
        cached = self._cache.get(key)
        if cached is not None:
            expires_at, media = cached
            if expires_at > self._clock():
                LOG.debug("locator cache hit for %s", key)
                return media
            del self._cache[key]

        try:
            head = await run_sync(
                self._client.head_object, Bucket=self._bucket, Key=key
            )
        except ClientError as error:
            raise self._translate(error, key) from error
        except BotoCoreError as error:
            LOG.warning(
                "metadata lookup failed for s3://%s/%s: %s", self._bucket, key, error
            )
            msg = f"storage unavailable: {error}"
            raise UpstreamUnavailable(msg) from error

        size = head.get("ContentLength")
        if size is None:
            msg = f"size of {name!r} is unknown"
            raise NotFound(msg)

        media = MediaObject(
            name=name,
            key=key,
            total_size=int(size),
            content_type=resolve_content_type(key, head.get("ContentType")),
            etag=head.get("ETag"),
        )
        if self._cache_ttl > 0:
            self._cache[key] = (self._clock() + self._cache_ttl, media)
        LOG.debug(
            "located s3://%s/%s size=%d type=%s",
            self._bucket,
            key,
            media.total_size,
            media.content_type,
        )
        return media

    async def open(self, media: MediaObject, window: RangeWindow | None = None) -> Any:
        """Issue one GetObject for ``media`` and return its streaming body.

        Raises:
            RangeNotSatisfiable: the object shrank below ``window`` since it
                was located.
        """
        get_kwargs: dict[str, Any] = {"Bucket": self._bucket, "Key": media.key}
        if window is not None:
            get_kwargs["Range"] = window.request_header()
        try:
            result = await run_sync(self._client.get_object, **get_kwargs)
        except ClientError as error:
            self.forget(media.key)
            if window is not None and error_code(error) == "InvalidRange":
                current = await self.locate(media.name)
                size = current.total_size
                msg = f"range start {window.start} beyond object size {size}"
                raise RangeNotSatisfiable(size, msg) from error
            raise self._translate(error, media.key) from error
        except BotoCoreError as error:
            LOG.warning(
                "fetch failed for s3://%s/%s: %s", self._bucket, media.key, error
            )
            msg = f"storage unavailable: {error}"
            raise UpstreamUnavailable(msg) from error
        return result["Body"]

    def forget(self, key: str) -> None:
        self._cache.pop(key, None)

    def _translate(self, error: ClientError, key: str) -> Exception:
        if error_code(error) in MISSING_CODES:
            LOG.debug("miss for s3://%s/%s", self._bucket, key)
            return NotFound(f"no such object {key!r}")
        LOG.warning("storage error for s3://%s/%s: %s", self._bucket, key, error)
        return UpstreamUnavailable(f"storage error: {error}")
