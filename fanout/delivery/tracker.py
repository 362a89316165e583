"""Delivery Outcome Tracker: runs each DeliveryAttempt as an explicit retry state machine.

PENDING -> send -> DELIVERED
                -> TRANSIENT_FAILURE -> (retry scheduled on the timer) -> send -> ...
                -> PERMANENT_FAILURE (declared permanent, or retry budget exhausted)

Retries are timer callbacks, never sleeps, so one slow subscriber cannot hold up others.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from fanout.delivery.contract import DeliveryTransport, LoopScheduler, Scheduler, TimerHandle
from fanout.delivery.journal import DeadLetterJournal
from fanout.delivery.models import (
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryResult,
    PermanentFailure,
    Success,
    TransientFailure,
)

logger = logging.getLogger(__name__)

TerminalListener = Callable[[DeliveryAttempt], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap and a bounded number of sends per attempt."""

    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    def delay_for(self, attempt_number: int) -> float:
        """Delay before the send that follows attempt_number (1-based)."""
        delay = self.base_delay * self.multiplier ** max(attempt_number - 1, 0)
        return min(delay, self.max_delay)


class DeliveryTracker:
    """Owns DeliveryAttempts from dispatch until a terminal outcome."""

    def __init__(
        self,
        transport: DeliveryTransport,
        retry_policy: RetryPolicy | None = None,
        scheduler: Scheduler | None = None,
        journal: DeadLetterJournal | None = None,
    ) -> None:
        self._transport = transport
        self._policy = retry_policy or RetryPolicy()
        self._scheduler = scheduler or LoopScheduler()
        self._journal = journal
        self._listeners: list[TerminalListener] = []
        self._in_flight: dict[str, DeliveryAttempt] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._failures: list[DeliveryAttempt] = []
        self._delivered_count = 0
        self._idle = asyncio.Event()
        self._idle.set()
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    @property
    def delivered_count(self) -> int:
        return self._delivered_count

    def add_listener(self, listener: TerminalListener) -> None:
        """Called with the attempt once it reaches DELIVERED or PERMANENT_FAILURE."""
        self._listeners.append(listener)

    def dispatch(self, attempt: DeliveryAttempt) -> None:
        """Start delivering attempt. Returns immediately.

        Off-loop callers (producer threads) hand the attempt to the tracker's loop, which
        is the loop the tracker was created on or first dispatched from. Attempts from one
        thread start in the order they were dispatched.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if self._loop is None or self._loop.is_closed():
                raise RuntimeError(
                    "DeliveryTracker has no event loop; dispatch once from the loop first"
                ) from None
            self._loop.call_soon_threadsafe(self._start, attempt)
            return
        if self._loop is None or self._loop.is_closed():
            self._loop = loop
        if loop is not self._loop:
            self._loop.call_soon_threadsafe(self._start, attempt)
            return
        self._start(attempt)

    def in_flight(self) -> list[DeliveryAttempt]:
        return list(self._in_flight.values())

    def failures(self) -> list[DeliveryAttempt]:
        """Attempts that ended in PERMANENT_FAILURE since this tracker was created."""
        return list(self._failures)

    async def wait_idle(self) -> None:
        """Wait until every dispatched attempt reached a terminal outcome."""
        await self._idle.wait()

    async def close(self) -> None:
        """Cancel scheduled retries and running sends, then close the journal.

        Attempts that had not reached a terminal outcome are dead-lettered with reason
        "delivery abandoned at shutdown" before the journal closes.
        """
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for attempt in list(self._in_flight.values()):
            if attempt.is_terminal:
                self._finish(attempt)
            else:
                await self._fail(attempt, "delivery abandoned at shutdown")
        self._in_flight.clear()
        self._idle.set()
        if self._journal:
            await self._journal.close()

    def _start(self, attempt: DeliveryAttempt) -> None:
        self._in_flight[attempt.id] = attempt
        self._idle.clear()
        self._spawn(attempt)

    def _spawn(self, attempt: DeliveryAttempt) -> None:
        task = asyncio.get_running_loop().create_task(self._run(attempt))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _fire_retry(self, attempt: DeliveryAttempt) -> None:
        self._timers.pop(attempt.id, None)
        self._spawn(attempt)

    async def _run(self, attempt: DeliveryAttempt) -> None:
        attempt.attempt_number += 1
        attempt.scheduled_retry_at = None
        try:
            result = await self._transport.send(attempt.endpoint_descriptor, attempt.event)
        except Exception as e:
            logger.exception(
                "Delivery %s to subscription %s raised: %s",
                attempt.id,
                attempt.subscription_id,
                e,
            )
            result = TransientFailure(reason=f"{type(e).__name__}: {e}")
        await self._apply(attempt, result)

    async def _apply(self, attempt: DeliveryAttempt, result: DeliveryResult) -> None:
        if isinstance(result, Success):
            attempt.outcome = DeliveryOutcome.DELIVERED
            self._delivered_count += 1
            logger.debug(
                "Delivered event %s to subscription %s (attempt %d)",
                attempt.event.event_id,
                attempt.subscription_id,
                attempt.attempt_number,
            )
            self._finish(attempt)
        elif isinstance(result, TransientFailure):
            attempt.outcome = DeliveryOutcome.TRANSIENT_FAILURE
            attempt.last_error = result.reason
            if attempt.attempt_number >= self._policy.max_attempts:
                await self._fail(
                    attempt,
                    f"retry budget exhausted after {attempt.attempt_number} attempts: "
                    f"{result.reason}",
                )
                return
            delay = self._policy.delay_for(attempt.attempt_number)
            attempt.scheduled_retry_at = self._scheduler.time() + delay
            logger.warning(
                "Delivery %s to subscription %s failed (attempt %d/%d), retry in %.1fs: %s",
                attempt.id,
                attempt.subscription_id,
                attempt.attempt_number,
                self._policy.max_attempts,
                delay,
                result.reason,
            )
            self._timers[attempt.id] = self._scheduler.call_later(
                delay, lambda: self._fire_retry(attempt)
            )
        elif isinstance(result, PermanentFailure):
            await self._fail(attempt, result.reason)
        else:
            await self._fail(attempt, f"transport returned unknown result {result!r}")

    async def _fail(self, attempt: DeliveryAttempt, reason: str) -> None:
        attempt.outcome = DeliveryOutcome.PERMANENT_FAILURE
        attempt.last_error = reason
        self._failures.append(attempt)
        logger.error(
            "Dead-lettered event %s for subscription %s after %d attempts: %s",
            attempt.event.event_id,
            attempt.subscription_id,
            attempt.attempt_number,
            reason,
        )
        if self._journal:
            try:
                await self._journal.record(attempt)
            except Exception as e:
                logger.exception("Failed to record dead letter %s: %s", attempt.id, e)
        self._finish(attempt)

    def _finish(self, attempt: DeliveryAttempt) -> None:
        self._in_flight.pop(attempt.id, None)
        for listener in self._listeners:
            try:
                listener(attempt)
            except Exception as e:
                logger.exception("Terminal listener failed for %s: %s", attempt.id, e)
        if not self._in_flight:
            self._idle.set()
