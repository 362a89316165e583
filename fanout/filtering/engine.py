"""Predicate engine: pure evaluation of a FilterPolicy against an Event."""

import operator
from typing import Any, Callable

from fanout.errors import TypeMismatchError
from fanout.events.models import Event
from fanout.filtering.policy import (
    ATTRIBUTES_PREFIX,
    ExactSetMatch,
    FieldSelector,
    FilterPolicy,
    MatchSpec,
    NumericMatch,
    PrefixMatch,
    SuffixMatch,
)

_MISSING = object()

_COMPARE: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
}

_GETTERS: dict[str, Callable[[Event], Any]] = {
    "event_name": lambda e: e.event_name,
    "event_id": lambda e: e.event_id,
    "timestamp": lambda e: e.timestamp.isoformat() if e.timestamp else None,
    "producer": lambda e: e.producer,
    "region": lambda e: e.region,
    "resource_locator.container_identifier": lambda e: e.resource_locator.container_identifier,
    "resource_locator.object_key": lambda e: e.resource_locator.object_key,
    "resource_locator.size_bytes": lambda e: e.resource_locator.size_bytes,
    "resource_locator.content_hash": lambda e: e.resource_locator.content_hash,
    "resource_locator.version_identifier": lambda e: e.resource_locator.version_identifier,
    "origin.principal_id": lambda e: e.origin.principal_id,
    "origin.source_ip": lambda e: e.origin.source_ip,
}


def resolve_field(event: Event, name: str) -> Any:
    """Return the field value, or _MISSING when the event does not carry it."""
    if name.startswith(ATTRIBUTES_PREFIX):
        return event.attributes.get(name[len(ATTRIBUTES_PREFIX):], _MISSING)
    getter = _GETTERS.get(name)
    if getter is None:
        return _MISSING
    value = getter(event)
    return _MISSING if value is None else value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _spec_matches(field: str, value: Any, spec: MatchSpec) -> bool:
    if isinstance(spec, (PrefixMatch, SuffixMatch)):
        if not isinstance(value, str):
            raise TypeMismatchError(
                f"{field}: string operator on non-string value {value!r}"
            )
        if isinstance(spec, PrefixMatch):
            return value.startswith(spec.value)
        return value.endswith(spec.value)
    if isinstance(spec, NumericMatch):
        if not _is_number(value):
            raise TypeMismatchError(
                f"{field}: numeric operator on non-numeric value {value!r}"
            )
        return all(_COMPARE[op](value, operand) for op, operand in spec.conditions)
    if isinstance(spec, ExactSetMatch):
        for literal in spec.values:
            if isinstance(literal, str) != isinstance(value, str):
                continue
            if value == literal:
                return True
        return False
    raise TypeError(f"Unknown match spec {spec!r}")


def _selector_matches(event: Event, selector: FieldSelector) -> bool:
    value = resolve_field(event, selector.field)
    if value is _MISSING:
        return False
    return any(_spec_matches(selector.field, value, spec) for spec in selector.specs)


def matches(event: Event, policy: FilterPolicy | None) -> bool:
    """True if event satisfies policy. None or an empty policy accepts every event.

    Raises TypeMismatchError when an operator meets a value of an incompatible type.
    """
    if policy is None:
        return True
    return all(_selector_matches(event, s) for s in policy.selectors)
