"""Subscription Registry: single source of truth for subscriptions and their confirmation state."""

import logging
import threading
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from fanout.errors import InvalidStateError, NotFoundError
from fanout.filtering.policy import FilterPolicy, compile_policy

logger = logging.getLogger(__name__)


class ConfirmationState(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REMOVED = "removed"


@dataclass(frozen=True)
class Subscription:
    """Immutable snapshot. Every state transition stores a new instance."""

    id: str
    endpoint_descriptor: Any
    filter_policy: FilterPolicy | None = None
    confirmation_state: ConfirmationState = ConfirmationState.PENDING
    name: str | None = None
    created_at: float = field(default_factory=time.time)


class SubscriptionRegistry:
    """Thread-safe registry. Independently instantiable; share one instance between routers as needed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # dict keeps insertion order, which list_confirmed() exposes
        self._subscriptions: dict[str, Subscription] = {}

    def register(
        self,
        endpoint_descriptor: Any,
        filter_policy: Mapping[str, Any] | FilterPolicy | None = None,
        name: str | None = None,
    ) -> str:
        """Create a Pending subscription. Raw policies are compiled (and rejected) here."""
        policy = compile_policy(filter_policy)
        sub = Subscription(
            id=uuid.uuid4().hex,
            endpoint_descriptor=endpoint_descriptor,
            filter_policy=policy,
            name=name,
        )
        with self._lock:
            self._subscriptions[sub.id] = sub
        logger.info("Registered subscription %s (%s)", sub.id, name or endpoint_descriptor)
        return sub.id

    def confirm(self, subscription_id: str) -> None:
        """Pending -> Confirmed. Confirming a Confirmed subscription is a no-op."""
        with self._lock:
            sub = self._get_locked(subscription_id)
            if sub.confirmation_state is ConfirmationState.REMOVED:
                raise InvalidStateError(
                    f"Subscription {subscription_id} is removed and cannot be confirmed"
                )
            if sub.confirmation_state is ConfirmationState.CONFIRMED:
                return
            self._subscriptions[subscription_id] = replace(
                sub, confirmation_state=ConfirmationState.CONFIRMED
            )
        logger.info("Confirmed subscription %s", subscription_id)

    def remove(self, subscription_id: str) -> None:
        """Any state -> Removed. Idempotent for known ids."""
        with self._lock:
            sub = self._get_locked(subscription_id)
            if sub.confirmation_state is ConfirmationState.REMOVED:
                return
            self._subscriptions[subscription_id] = replace(
                sub, confirmation_state=ConfirmationState.REMOVED
            )
        logger.info("Removed subscription %s", subscription_id)

    def get(self, subscription_id: str) -> Subscription:
        with self._lock:
            return self._get_locked(subscription_id)

    def list_confirmed(self) -> list[Subscription]:
        """Snapshot of Confirmed subscriptions at call time, in insertion order."""
        with self._lock:
            return [
                s
                for s in self._subscriptions.values()
                if s.confirmation_state is ConfirmationState.CONFIRMED
            ]

    def list_all(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions.values())

    def _get_locked(self, subscription_id: str) -> Subscription:
        sub = self._subscriptions.get(subscription_id)
        if sub is None:
            raise NotFoundError(f"Unknown subscription {subscription_id}")
        return sub
