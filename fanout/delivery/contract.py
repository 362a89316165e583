"""Delivery protocols: the transport the core sends through and the timer that drives retries."""

import asyncio
from typing import Any, Callable, Protocol, runtime_checkable

from fanout.delivery.models import DeliveryResult
from fanout.events.models import Event


@runtime_checkable
class DeliveryTransport(Protocol):
    """Sole interface the core needs from email/webhook/queue delivery."""

    async def send(self, endpoint_descriptor: Any, event: Event) -> DeliveryResult:
        """Deliver event to the endpoint. Return Success, TransientFailure or PermanentFailure."""


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Runs a callback after a delay without blocking the caller."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def time(self) -> float: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    def time(self) -> float:
        return asyncio.get_running_loop().time()
