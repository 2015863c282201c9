from __future__ import annotations

import io
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import anyio
import pytest
from botocore.exceptions import ClientError
from mediapush.errors import PermanentlyInvalidRecipient, TransientDeliveryError
from mediapush.models import NotificationPayload
from mediapush.settings import StorageSettings

if TYPE_CHECKING:
    from litestar.response import Stream


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def client_error(code: str, status: int, operation: str = "HeadObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} error"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeObjectStore:
    """Serve ``head_object``/``get_object`` from an in-memory dict."""

    def __init__(self, objects: dict[str, tuple[bytes, str | None]]):
        self.objects = objects
        self.client = MagicMock()
        self.client.head_object.side_effect = self._head
        self.client.get_object.side_effect = self._get

    def _head(self, Bucket: str, Key: str) -> dict[str, Any]:
        if Key not in self.objects:
            raise client_error("404", 404)
        data, content_type = self.objects[Key]
        head: dict[str, Any] = {"ContentLength": len(data), "ETag": '"etag"'}
        if content_type:
            head["ContentType"] = content_type
        return head

    def _get(self, Bucket: str, Key: str, Range: str | None = None) -> dict[str, Any]:
        if Key not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        data, _ = self.objects[Key]
        if Range is not None:
            start, end = Range.removeprefix("bytes=").split("-")
            if int(start) >= len(data):
                raise client_error("InvalidRange", 416, "GetObject")
            data = data[int(start) : int(end) + 1]
        return {"Body": io.BytesIO(data), "ContentLength": len(data)}


class FakeGateway:
    """Push gateway double with per-token failures."""

    def __init__(
        self,
        invalid: set[str] | None = None,
        transient: set[str] | None = None,
    ):
        self.invalid = invalid or set()
        self.transient = transient or set()
        self.sent: list[tuple[str, NotificationPayload]] = []
        self.started = False

    async def startup(self) -> None:
        self.started = True

    async def shutdown(self) -> None:
        self.started = False

    async def send(self, token: str, payload: NotificationPayload) -> str:
        await anyio.sleep(0)
        if token in self.invalid:
            raise PermanentlyInvalidRecipient(token, "UNREGISTERED")
        if token in self.transient:
            raise TransientDeliveryError(token, "UNAVAILABLE")
        self.sent.append((token, payload))
        return f"projects/test/messages/{len(self.sent)}"


@pytest.fixture
def payload() -> NotificationPayload:
    return NotificationPayload(title="Reminder", body="Practice starts soon")


@pytest.fixture
def storage_settings() -> StorageSettings:
    return StorageSettings(
        MEDIAPUSH_MEDIA_BUCKET="media",
        MEDIAPUSH_LOCATOR_CACHE_TTL=0,
    )


async def read_stream(response: Stream) -> bytes:
    chunks = []
    async for chunk in response.iterator:
        chunks.append(chunk)
    return b"".join(chunks)
