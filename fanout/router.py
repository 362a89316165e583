"""Router / Dispatcher: matches inbound events against confirmed subscriptions and hands matches to the tracker."""

import logging
from collections.abc import Mapping
from typing import Any

from fanout.delivery.models import DeliveryAttempt, DeliveryOutcome
from fanout.delivery.tracker import DeliveryTracker
from fanout.errors import FanoutError
from fanout.events.models import Event, parse_event, parse_notification
from fanout.filtering.engine import matches
from fanout.registry import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)


class FanoutRouter:
    """One fan-out point. Registry and tracker are passed in so routers can share them or not."""

    def __init__(
        self,
        registry: SubscriptionRegistry,
        tracker: DeliveryTracker,
        remove_after_permanent_failures: int = 3,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._bounce_threshold = remove_after_permanent_failures
        self._consecutive_failures: dict[str, int] = {}
        tracker.add_listener(self._on_terminal)

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def tracker(self) -> DeliveryTracker:
        return self._tracker

    def submit(self, raw_event_record: Mapping[str, Any]) -> int:
        """Producer entry point. MalformedEventError propagates; nothing is dispatched then."""
        return self.route(parse_event(raw_event_record))

    def submit_notification(self, raw_notification: Mapping[str, Any]) -> int:
        """Route every record of a {"Records": [...]} envelope, in record order."""
        events = parse_notification(raw_notification)
        return sum(self.route(event) for event in events)

    def match(self, event: Event) -> list[Subscription]:
        """Confirmed subscriptions whose policy accepts event. A failing policy only excludes itself."""
        matched: list[Subscription] = []
        for sub in self._registry.list_confirmed():
            try:
                if matches(event, sub.filter_policy):
                    matched.append(sub)
            except FanoutError as e:
                logger.error(
                    "Filter policy of subscription %s failed on event %s (%s): %s",
                    sub.id,
                    event.event_id,
                    event.event_name,
                    e,
                )
        return matched

    def route(self, event: Event) -> int:
        """Dispatch event to every matching subscription. Returns match count; does not wait for delivery."""
        matched = self.match(event)
        for sub in matched:
            self._tracker.dispatch(
                DeliveryAttempt(
                    event=event,
                    subscription_id=sub.id,
                    endpoint_descriptor=sub.endpoint_descriptor,
                )
            )
        logger.debug(
            "Routed event %s (%s) to %d subscription(s)",
            event.event_id,
            event.event_name,
            len(matched),
        )
        return len(matched)

    def _on_terminal(self, attempt: DeliveryAttempt) -> None:
        sub_id = attempt.subscription_id
        if attempt.outcome is DeliveryOutcome.DELIVERED:
            self._consecutive_failures.pop(sub_id, None)
            return
        count = self._consecutive_failures.get(sub_id, 0) + 1
        self._consecutive_failures[sub_id] = count
        if self._bounce_threshold and count >= self._bounce_threshold:
            logger.warning(
                "Removing subscription %s after %d consecutive permanent failures",
                sub_id,
                count,
            )
            self._consecutive_failures.pop(sub_id, None)
            try:
                self._registry.remove(sub_id)
            except FanoutError as e:
                logger.warning("Could not remove subscription %s: %s", sub_id, e)
