"""Delivery: transport contract, per-attempt retry tracking, dead-letter journal."""

from fanout.delivery.contract import DeliveryTransport, LoopScheduler, Scheduler
from fanout.delivery.journal import DeadLetterJournal
from fanout.delivery.models import (
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryResult,
    PermanentFailure,
    Success,
    TransientFailure,
)
from fanout.delivery.tracker import DeliveryTracker, RetryPolicy

__all__ = [
    "DeadLetterJournal",
    "DeliveryAttempt",
    "DeliveryOutcome",
    "DeliveryResult",
    "DeliveryTracker",
    "DeliveryTransport",
    "LoopScheduler",
    "PermanentFailure",
    "RetryPolicy",
    "Scheduler",
    "Success",
    "TransientFailure",
]
