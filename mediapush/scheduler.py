"""Deferred delivery of notifications at a wall-clock instant.

Jobs are lightweight: they store the payload and how to find recipients, and
the recipient list is resolved when the job fires, so tokens registered while
a broadcast is pending still receive it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import anyio

from .errors import (
    InvalidScheduleTime,
    JobAlreadyFired,
    JobNotFound,
    UpstreamUnavailable,
)
from .jobstore import JobRecord
from .settings import SchedulerSettings

if TYPE_CHECKING:
    from collections.abc import Callable

    from anyio.abc import TaskGroup

    from .fanout import FanoutEngine
    from .jobstore import JobStore
    from .models import DispatchResult, NotificationPayload
    from .registry import TokenRegistry

LOG = logging.getLogger("mediapush.scheduler")

_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_TIME_OF_DAY = re.compile(r"([0-9]{1,2}):([0-9]{2})(?::([0-9]{2}))?")
_UTC_OFFSET = re.compile(r"([+-])([0-9]{2}):([0-9]{2})")


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_utc_offset(value: str) -> timezone:
    match = _UTC_OFFSET.fullmatch(value.strip())
    if match is None:
        msg = f"invalid UTC offset {value!r}"
        raise ValueError(msg)
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


def parse_fire_at(date_value: str, time_value: str, utc_offset: str) -> datetime:
    """Combine a calendar date and local time of day into a UTC instant.

    Args:
        date_value: ``YYYY-MM-DD``.
        time_value: ``HH:MM`` or ``HH:MM:SS``.
        utc_offset: Fixed offset of the local time, e.g. ``+05:30``.

    Raises:
        InvalidScheduleTime: any part fails to parse or names an invalid date.
    """
    date_value = date_value.strip() if date_value else ""
    if _DATE.fullmatch(date_value) is None:
        msg = f"invalid date {date_value!r}"
        raise InvalidScheduleTime(msg)
    try:
        day = date.fromisoformat(date_value)
    except ValueError as error:
        msg = f"invalid date {date_value!r}"
        raise InvalidScheduleTime(msg) from error

    match = _TIME_OF_DAY.fullmatch(time_value.strip()) if time_value else None
    if match is None:
        msg = f"invalid time {time_value!r}"
        raise InvalidScheduleTime(msg)
    hour, minute, second = (int(part or 0) for part in match.groups())
    try:
        tz = parse_utc_offset(utc_offset)
        local = datetime.combine(day, time(hour, minute, second), tzinfo=tz)
    except ValueError as error:
        msg = f"invalid time {time_value!r}"
        raise InvalidScheduleTime(msg) from error
    return local.astimezone(UTC)


@dataclass(frozen=True)
class SingleRecipient:
    token: str

    async def resolve(self, registry: TokenRegistry) -> list[str]:
        return [self.token]


@dataclass(frozen=True)
class AllRegistered:
    async def resolve(self, registry: TokenRegistry) -> list[str]:
        return sorted(await registry.list_all())


RecipientSource = SingleRecipient | AllRegistered


class JobState(str, Enum):
    PENDING = "pending"
    FIRED = "fired"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobHandle:
    """Awaitable view of a scheduled job's outcome."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self._done = anyio.Event()
        self._result: DispatchResult | None = None
        self._error: Exception | None = None

    @property
    def done(self) -> bool:
        return self._done.is_set()

    async def wait(self) -> DispatchResult | None:
        """Wait for the job to finish.

        Returns ``None`` if the job was cancelled; re-raises a job-level
        failure such as an unreachable registry.
        """
        await self._done.wait()
        if self._error is not None:
            raise self._error
        return self._result

    def _set(
        self, result: DispatchResult | None = None, error: Exception | None = None
    ) -> None:
        self._result = result
        self._error = error
        self._done.set()


@dataclass
class DeliveryJob:
    id: str
    payload: NotificationPayload
    source: RecipientSource
    fire_at: datetime
    state: JobState = JobState.PENDING
    handle: JobHandle = field(init=False)
    scope: anyio.CancelScope | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.handle = JobHandle(self.id)

    def to_record(self) -> JobRecord:
        token = self.source.token if isinstance(self.source, SingleRecipient) else None
        return JobRecord(
            id=self.id, payload=self.payload, token=token, fire_at=self.fire_at
        )

    @classmethod
    def from_record(cls, record: JobRecord) -> DeliveryJob:
        source: RecipientSource = (
            SingleRecipient(record.token) if record.token else AllRegistered()
        )
        return cls(
            id=record.id,
            payload=record.payload,
            source=source,
            fire_at=record.fire_at.astimezone(UTC),
        )

    def describe(self) -> dict[str, Any]:
        return {
            "job_id": self.id,
            "state": self.state.value,
            "scheduled_for": self.fire_at.isoformat(),
            "recipients": (
                "single" if isinstance(self.source, SingleRecipient) else "all"
            ),
        }


@dataclass(frozen=True)
class ScheduleConfirmation:
    job_id: str
    fire_at: datetime
    handle: JobHandle


class DeferredDispatchScheduler:
    """Hold delivery jobs until their fire time, then hand them to fan-out.

    Use as an async context manager; pending jobs are timers in a task group
    owned by the scheduler and are dropped (but stay in the store) on exit.
    """

    def __init__(
        self,
        engine: FanoutEngine,
        store: JobStore,
        settings: SchedulerSettings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._store = store
        self._settings = settings or SchedulerSettings()
        self._clock = clock
        self._jobs: dict[str, DeliveryJob] = {}
        self._task_group: TaskGroup | None = None

    @property
    def utc_offset(self) -> str:
        return self._settings.utc_offset

    async def __aenter__(self) -> DeferredDispatchScheduler:
        task_group = anyio.create_task_group()
        await task_group.__aenter__()
        self._task_group = task_group
        return self

    async def __aexit__(self, *exc_info: Any) -> bool | None:
        task_group, self._task_group = self._task_group, None
        assert task_group is not None
        if self._jobs:
            LOG.info("stopping scheduler with %d pending jobs", len(self._jobs))
        task_group.cancel_scope.cancel()
        try:
            return await task_group.__aexit__(*exc_info)
        finally:
            self._jobs.clear()

    async def schedule(
        self,
        payload: NotificationPayload,
        source: RecipientSource,
        fire_at: datetime,
    ) -> ScheduleConfirmation:
        """Accept a job for delivery at ``fire_at``.

        Raises:
            InvalidScheduleTime: ``fire_at`` is naive or not in the future.
            UpstreamUnavailable: the job could not be persisted.
        """
        if fire_at.tzinfo is None:
            msg = "fire time must carry a UTC offset"
            raise InvalidScheduleTime(msg)
        fire_at = fire_at.astimezone(UTC)
        now = self._clock()
        if fire_at <= now:
            msg = f"fire time {fire_at.isoformat()} is not after {now.isoformat()}"
            raise InvalidScheduleTime(msg)
        if self._task_group is None:
            msg = "scheduler not started"
            raise RuntimeError(msg)

        job = DeliveryJob(
            id=uuid4().hex, payload=payload, source=source, fire_at=fire_at
        )
        await self._store.save(job.to_record())
        self._arm(job)
        LOG.info(
            "accepted job %s for %s (%s)",
            job.id,
            fire_at.isoformat(),
            "single recipient"
            if isinstance(source, SingleRecipient)
            else "all recipients",
        )
        return ScheduleConfirmation(job_id=job.id, fire_at=fire_at, handle=job.handle)

    async def recover(self) -> int:
        """Re-arm jobs persisted by an earlier process.

        Overdue jobs fire immediately or are discarded, depending on the
        missed-job policy.

        Returns:
            Number of jobs re-armed.
        """
        records = await self._store.load_all()
        now = self._clock()
        armed = 0
        for record in records:
            if record.id in self._jobs:
                continue
            job = DeliveryJob.from_record(record)
            if job.fire_at <= now and self._settings.missed_job_policy == "discard":
                LOG.warning(
                    "discarding job %s missed at %s", job.id, job.fire_at.isoformat()
                )
                await self._forget(job.id)
                continue
            self._arm(job)
            armed += 1
        if records:
            LOG.info("recovered %d of %d stored jobs", armed, len(records))
        return armed

    def get(self, job_id: str) -> DeliveryJob:
        job = self._jobs.get(job_id)
        if job is None:
            msg = f"no pending job {job_id!r}"
            raise JobNotFound(msg)
        return job

    async def cancel(self, job_id: str) -> DeliveryJob:
        """Withdraw a job that has not fired yet.

        Raises:
            JobNotFound: unknown or already finished job.
            JobAlreadyFired: the job is being delivered.
        """
        job = self.get(job_id)
        if job.state is not JobState.PENDING:
            msg = f"job {job_id!r} already fired"
            raise JobAlreadyFired(msg)
        # No await between the state check and this transition.
        job.state = JobState.CANCELLED
        if job.scope is not None:
            job.scope.cancel()
        self._jobs.pop(job_id, None)
        job.handle._set()
        LOG.info("cancelled job %s", job_id)
        await self._forget(job_id)
        return job

    def _arm(self, job: DeliveryJob) -> None:
        assert self._task_group is not None
        self._jobs[job.id] = job
        self._task_group.start_soon(self._run, job, name=f"delivery-job-{job.id}")

    async def _run(self, job: DeliveryJob) -> None:
        with anyio.CancelScope() as scope:
            if job.state is not JobState.PENDING:
                return
            job.scope = scope
            delay = (job.fire_at - self._clock()).total_seconds()
            if delay > 0:
                await anyio.sleep(delay)
            if job.state is not JobState.PENDING:
                return
            job.state = JobState.FIRED
            with anyio.CancelScope(shield=True):
                await self._fire(job)

    async def _fire(self, job: DeliveryJob) -> None:
        LOG.info("firing job %s", job.id)
        try:
            tokens = await job.source.resolve(self._engine.registry)
            result = await self._engine.dispatch(job.payload, tokens)
        except UpstreamUnavailable as error:
            LOG.warning("job %s failed: %s", job.id, error)
            job.state = JobState.FAILED
            job.handle._set(error=error)
        except Exception as error:
            # Other pending jobs share the task group and must keep running.
            LOG.exception("job %s failed unexpectedly", job.id)
            job.state = JobState.FAILED
            job.handle._set(error=error)
        else:
            job.state = JobState.COMPLETED
            job.handle._set(result=result)
        finally:
            self._jobs.pop(job.id, None)
            await self._forget(job.id)

    async def _forget(self, job_id: str) -> None:
        try:
            await self._store.delete(job_id)
        except UpstreamUnavailable as error:
            LOG.warning("could not remove job %s from store: %s", job_id, error)
        except Exception:
            LOG.exception("unexpected failure removing job %s from store", job_id)
