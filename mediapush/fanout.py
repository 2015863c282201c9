from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import anyio

from .errors import PermanentlyInvalidRecipient, TransientDeliveryError
from .gateway import redact
from .models import DeliveryOutcome, DispatchResult, ErrorClass
from .registry import prune

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .gateway import PushGateway
    from .models import NotificationPayload
    from .registry import TokenRegistry

LOG = logging.getLogger("mediapush.fanout")


class FanoutEngine:
    """Deliver one payload to many tokens, isolating each attempt."""

    def __init__(
        self,
        gateway: PushGateway,
        registry: TokenRegistry,
        *,
        max_concurrency: int = 100,
    ) -> None:
        self._gateway = gateway
        self._registry = registry
        self._max_concurrency = max_concurrency
        self._limiter: anyio.CapacityLimiter | None = None

    @property
    def registry(self) -> TokenRegistry:
        return self._registry

    async def dispatch(
        self, payload: NotificationPayload, recipients: Iterable[str]
    ) -> DispatchResult:
        """Send ``payload`` to every distinct recipient and wait for all of them.

        Partial failure is reported in the result, never raised.
        """
        tokens = list(dict.fromkeys(recipients))
        if not tokens:
            return DispatchResult()

        if self._limiter is None:
            self._limiter = anyio.CapacityLimiter(self._max_concurrency)
        limiter = self._limiter
        outcomes: list[DeliveryOutcome | None] = [None] * len(tokens)

        async def attempt(index: int, token: str) -> None:
            async with limiter:
                outcomes[index] = await self._deliver(payload, token)

        async with anyio.create_task_group() as tg:
            for index, token in enumerate(tokens):
                tg.start_soon(attempt, index, token)

        results = [outcome for outcome in outcomes if outcome is not None]
        success_count = sum(1 for outcome in results if outcome.success)
        LOG.info(
            "dispatched %r to %d recipients (%d succeeded)",
            payload.title,
            len(results),
            success_count,
        )
        return DispatchResult(success_count=success_count, outcomes=results)

    async def dispatch_all(self, payload: NotificationPayload) -> DispatchResult:
        """Send ``payload`` to every token currently in the registry."""
        tokens = await self._registry.list_all()
        return await self.dispatch(payload, sorted(tokens))

    async def _deliver(
        self, payload: NotificationPayload, token: str
    ) -> DeliveryOutcome:
        try:
            await self._gateway.send(token, payload)
        except PermanentlyInvalidRecipient as error:
            pruned = await prune(self._registry, token)
            return DeliveryOutcome(
                recipient=token,
                success=False,
                error_class=ErrorClass.PERMANENTLY_INVALID,
                detail=str(error),
                pruned=pruned,
            )
        except TransientDeliveryError as error:
            return DeliveryOutcome(
                recipient=token,
                success=False,
                error_class=ErrorClass.TRANSIENT,
                detail=str(error),
            )
        except Exception as error:
            # Siblings must keep running; anything unexpected counts as transient.
            LOG.exception("unexpected delivery failure for %s", redact(token))
            return DeliveryOutcome(
                recipient=token,
                success=False,
                error_class=ErrorClass.TRANSIENT,
                detail=repr(error),
            )
        return DeliveryOutcome(recipient=token, success=True)
