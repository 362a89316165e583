"""Error taxonomy. Delivery outcomes are result values (see fanout.delivery.contract), not exceptions."""


class FanoutError(Exception):
    """Base class for all router errors."""


class MalformedEventError(FanoutError):
    """Producer handed over a record that cannot be turned into an Event. Rejected at ingestion."""


class MalformedPolicyError(FanoutError):
    """Filter policy has the wrong shape (unknown field, unknown operator, bad operands)."""


class TypeMismatchError(FanoutError):
    """Operator is incompatible with the type of the field it selects."""


class NotFoundError(FanoutError):
    """Registry operation on an unknown subscription id."""


class InvalidStateError(FanoutError):
    """Registry transition not allowed from the subscription's current state."""
