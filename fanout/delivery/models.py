"""Delivery types: results returned by transports and the per-(event, subscription) attempt record."""

import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Union

from fanout.events.models import Event

__all__ = [
    "DeliveryAttempt",
    "DeliveryOutcome",
    "DeliveryResult",
    "PermanentFailure",
    "Success",
    "TransientFailure",
]


@dataclass(frozen=True)
class Success:
    """Endpoint accepted the event."""


@dataclass(frozen=True)
class TransientFailure:
    """Retryable failure, e.g. throttling or a 5xx."""

    reason: str


@dataclass(frozen=True)
class PermanentFailure:
    """Terminal failure, e.g. invalid endpoint or hard bounce."""

    reason: str


DeliveryResult = Union[Success, TransientFailure, PermanentFailure]


class DeliveryOutcome(StrEnum):
    PENDING = "pending"
    DELIVERED = "delivered"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass
class DeliveryAttempt:
    """One (Event, Subscription) dispatch. Mutated only by the DeliveryTracker that runs it."""

    event: Event
    subscription_id: str
    endpoint_descriptor: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempt_number: int = 0
    outcome: DeliveryOutcome = DeliveryOutcome.PENDING
    scheduled_retry_at: float | None = None
    last_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome in (
            DeliveryOutcome.DELIVERED,
            DeliveryOutcome.PERMANENT_FAILURE,
        )
