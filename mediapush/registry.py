"""Device token registry and the pruning hook used by fan-out."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from .errors import UpstreamUnavailable
from .gateway import redact
from .storage import run_sync

if TYPE_CHECKING:
    from collections.abc import Iterable

LOG = logging.getLogger("mediapush.registry")


class TokenRegistry(Protocol):
    async def list_all(self) -> set[str]: ...

    async def add(self, token: str) -> None: ...

    async def delete(self, token: str) -> None:
        """Remove ``token``; removing an absent token is a no-op."""
        ...


class MemoryTokenRegistry:
    def __init__(self, tokens: Iterable[str] = ()) -> None:
        self._tokens = set(tokens)

    async def list_all(self) -> set[str]:
        return set(self._tokens)

    async def add(self, token: str) -> None:
        self._tokens.add(token)

    async def delete(self, token: str) -> None:
        self._tokens.discard(token)


class S3TokenRegistry:
    """Tokens stored as empty objects named ``<prefix><token>``."""

    def __init__(self, client: Any, bucket: str, prefix: str = "tokens/") -> None:
        self._client = client
        self._bucket = bucket
        self._prefix = prefix

    async def list_all(self) -> set[str]:
        try:
            return await run_sync(self._list_sync)
        except (BotoCoreError, ClientError) as error:
            LOG.warning("listing tokens in s3://%s failed: %s", self._bucket, error)
            msg = f"token registry unavailable: {error}"
            raise UpstreamUnavailable(msg) from error

    def _list_sync(self) -> set[str]:
        tokens: set[str] = set()
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._bucket, Prefix=self._prefix):
            for item in page.get("Contents") or []:
                token = item["Key"][len(self._prefix) :]
                if token:
                    tokens.add(token)
        return tokens

    async def add(self, token: str) -> None:
        try:
            await run_sync(
                self._client.put_object,
                Bucket=self._bucket,
                Key=f"{self._prefix}{token}",
                Body=b"",
            )
        except (BotoCoreError, ClientError) as error:
            LOG.warning("registering %s failed: %s", redact(token), error)
            msg = f"token registry unavailable: {error}"
            raise UpstreamUnavailable(msg) from error

    async def delete(self, token: str) -> None:
        try:
            await run_sync(
                self._client.delete_object,
                Bucket=self._bucket,
                Key=f"{self._prefix}{token}",
            )
        except (BotoCoreError, ClientError) as error:
            msg = f"token registry unavailable: {error}"
            raise UpstreamUnavailable(msg) from error


async def prune(registry: TokenRegistry, token: str) -> bool:
    """Drop a permanently invalid token from ``registry``.

    Returns:
        True if the registry accepted the delete, False if the delete failed.
    """
    try:
        await registry.delete(token)
    except UpstreamUnavailable as error:
        LOG.warning("could not prune %s: %s", redact(token), error)
        return False
    except Exception:
        LOG.exception("unexpected failure pruning %s", redact(token))
        return False
    LOG.info("pruned invalid token %s", redact(token))
    return True
