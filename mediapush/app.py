from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from litestar import Litestar, Request, delete, get, post
from litestar.config.cors import CORSConfig
from litestar.handlers import asgi
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController
from litestar.response import Response

from .errors import InvalidScheduleTime, RelayError, error_response
from .fanout import FanoutEngine
from .gateway import FcmGateway, PushGateway, load_push_settings_from_env
from .jobstore import JobStore, MemoryJobStore, S3JobStore
from .models import (
    BroadcastRequest,
    NotificationPayload,
    RegisterTokenRequest,
    ScheduleRequest,
    SendRequest,
)
from .proxy import MediaProxy
from .registry import MemoryTokenRegistry, S3TokenRegistry, TokenRegistry
from .scheduler import (
    AllRegistered,
    DeferredDispatchScheduler,
    SingleRecipient,
    parse_fire_at,
)
from .settings import SchedulerSettings, StateSettings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from litestar.types import Receive, Scope, Send

LOG = logging.getLogger("mediapush.app")

prometheus_config = PrometheusConfig(app_name="mediapush", prefix="mediapush")


def build_state(
    settings: StateSettings, client: Any
) -> tuple[TokenRegistry, JobStore]:
    """Create the token registry and job store for the configured backend."""
    if settings.backend == "s3":
        return (
            S3TokenRegistry(client, settings.bucket, settings.token_prefix),
            S3JobStore(client, settings.bucket, settings.job_prefix),
        )
    return MemoryTokenRegistry(), MemoryJobStore()


def _relay_error_handler(_: Request, exc: RelayError) -> Response:
    return error_response(exc)


def create_app(
    *,
    proxy: MediaProxy | None = None,
    gateway: PushGateway | None = None,
    registry: TokenRegistry | None = None,
    job_store: JobStore | None = None,
    scheduler_settings: SchedulerSettings | None = None,
) -> Litestar:
    """Create the media relay and push notification ASGI application."""
    proxy = proxy or MediaProxy.from_env()
    push_settings = load_push_settings_from_env()
    gateway = gateway or FcmGateway(push_settings)
    if registry is None or job_store is None:
        default_registry, default_store = build_state(StateSettings(), proxy.client)
        registry = registry or default_registry
        job_store = job_store or default_store

    engine = FanoutEngine(
        gateway, registry, max_concurrency=push_settings.max_concurrency
    )
    scheduler = DeferredDispatchScheduler(
        engine, job_store, scheduler_settings or SchedulerSettings()
    )

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @post("/send", status_code=200)
    async def send_notification(data: SendRequest) -> Response:
        payload = NotificationPayload(title=data.title, body=data.body)
        result = await engine.dispatch(payload, [data.token])
        outcome = result.outcomes[0]
        if outcome.success:
            return Response(content={"status": "sent"}, status_code=200)
        return Response(
            content={
                "status": "error",
                "error": outcome.error_class.value if outcome.error_class else None,
                "detail": outcome.detail,
            },
            status_code=502,
        )

    @post("/schedule", status_code=202)
    async def schedule_notification(data: ScheduleRequest) -> dict[str, str]:
        fire_at = parse_fire_at(data.date, data.time, scheduler.utc_offset)
        payload = NotificationPayload(title=data.title, body=data.body)
        confirmation = await scheduler.schedule(
            payload, SingleRecipient(data.token), fire_at
        )
        return {
            "status": "accepted",
            "job_id": confirmation.job_id,
            "scheduled_for": confirmation.fire_at.isoformat(),
        }

    @post("/broadcast", status_code=200)
    async def broadcast(data: BroadcastRequest) -> Response:
        payload = NotificationPayload(title=data.title, body=data.body)
        if data.date is None and data.time is None:
            result = await engine.dispatch_all(payload)
            return Response(content=result.to_dict(), status_code=200)
        if data.date is None or data.time is None:
            msg = "date and time must be given together"
            raise InvalidScheduleTime(msg)
        fire_at = parse_fire_at(data.date, data.time, scheduler.utc_offset)
        confirmation = await scheduler.schedule(payload, AllRegistered(), fire_at)
        return Response(
            content={
                "status": "accepted",
                "job_id": confirmation.job_id,
                "scheduled_for": confirmation.fire_at.isoformat(),
            },
            status_code=202,
        )

    @get("/schedule/{job_id:str}")
    async def job_status(job_id: str) -> dict[str, Any]:
        return scheduler.get(job_id).describe()

    @delete("/schedule/{job_id:str}", status_code=200)
    async def cancel_job(job_id: str) -> dict[str, Any]:
        job = await scheduler.cancel(job_id)
        return job.describe()

    @post("/tokens", status_code=201)
    async def register_token(data: RegisterTokenRequest) -> dict[str, str]:
        await registry.add(data.token)
        return {"status": "registered"}

    @asgi(path="/media", is_mount=True, copy_scope=True)
    async def media_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        path = scope.get("path", "/")
        response = await proxy.handle(request, path)
        asgi_response = response.to_asgi_response(None, request)
        await asgi_response(scope, receive, send)

    @asynccontextmanager
    async def lifespan(app: Litestar) -> AsyncIterator[None]:
        await proxy.startup()
        await gateway.startup()
        try:
            async with scheduler:
                await scheduler.recover()
                yield
        finally:
            await gateway.shutdown()
            await proxy.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Accept-Ranges", "Content-Length", "Content-Range", "ETag"],
    )

    return Litestar(
        route_handlers=[
            health,
            send_notification,
            schedule_notification,
            broadcast,
            job_status,
            cancel_job,
            register_token,
            media_handler,
            PrometheusController,
        ],
        lifespan=[lifespan],
        exception_handlers={RelayError: _relay_error_handler},
        cors_config=cors_config,
        middleware=[prometheus_config.middleware],
    )


app = create_app()
