"""Persistence for pending deliveries so they survive a restart."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import AwareDatetime, BaseModel, ValidationError

from .errors import UpstreamUnavailable
from .models import NotificationPayload
from .storage import MISSING_CODES, error_code, run_sync

LOG = logging.getLogger("mediapush.jobstore")


class JobRecord(BaseModel):
    id: str
    payload: NotificationPayload
    # ``None`` means every registered token at fire time.
    token: str | None = None
    fire_at: AwareDatetime


class JobStore(Protocol):
    async def save(self, record: JobRecord) -> None: ...

    async def delete(self, job_id: str) -> None: ...

    async def load_all(self) -> list[JobRecord]: ...


class MemoryJobStore:
    def __init__(self) -> None:
        self._records: dict[str, JobRecord] = {}

    async def save(self, record: JobRecord) -> None:
        self._records[record.id] = record

    async def delete(self, job_id: str) -> None:
        self._records.pop(job_id, None)

    async def load_all(self) -> list[JobRecord]:
        return list(self._records.values())


class S3JobStore:
    """One JSON document per pending job under ``<prefix><id>.json``."""

    def __init__(self, client: Any, bucket: str, prefix: str = "jobs/") -> None:
        self._client = client
        self._bucket = bucket
        self._prefix = prefix

    def _key(self, job_id: str) -> str:
        return f"{self._prefix}{job_id}.json"

    async def save(self, record: JobRecord) -> None:
        try:
            await run_sync(
                self._client.put_object,
                Bucket=self._bucket,
                Key=self._key(record.id),
                Body=record.model_dump_json().encode("utf-8"),
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as error:
            LOG.warning("persisting job %s failed: %s", record.id, error)
            msg = f"job store unavailable: {error}"
            raise UpstreamUnavailable(msg) from error

    async def delete(self, job_id: str) -> None:
        try:
            await run_sync(
                self._client.delete_object, Bucket=self._bucket, Key=self._key(job_id)
            )
        except (BotoCoreError, ClientError) as error:
            msg = f"job store unavailable: {error}"
            raise UpstreamUnavailable(msg) from error

    async def load_all(self) -> list[JobRecord]:
        try:
            return await run_sync(self._load_all_sync)
        except (BotoCoreError, ClientError) as error:
            LOG.warning("loading jobs from s3://%s failed: %s", self._bucket, error)
            msg = f"job store unavailable: {error}"
            raise UpstreamUnavailable(msg) from error

    def _load_all_sync(self) -> list[JobRecord]:
        records: list[JobRecord] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._bucket, Prefix=self._prefix):
            for item in page.get("Contents") or []:
                key = item["Key"]
                try:
                    obj = self._client.get_object(Bucket=self._bucket, Key=key)
                except ClientError as error:
                    # Deleted between listing and fetch.
                    if error_code(error) in MISSING_CODES:
                        continue
                    raise
                body = obj["Body"]
                try:
                    raw = body.read()
                finally:
                    body.close()
                try:
                    records.append(JobRecord.model_validate_json(raw))
                except ValidationError:
                    LOG.warning(
                        "skipping unreadable job record s3://%s/%s", self._bucket, key
                    )
        return records
