"""Filter policy: typed predicate tree and registration-time compilation from raw JSON.

Raw form mirrors managed pub/sub filter policies:

    {
        "event_name": [{"prefix": "ObjectRemoved:"}],
        "resource_locator.size_bytes": [{"numeric": [">=", 0, "<", 1048576]}],
        "resource_locator.container_identifier": ["audit-bucket", "logs-bucket"],
    }

Selectors AND together; specs in one selector's list OR together.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Union

from fanout.errors import MalformedPolicyError, TypeMismatchError

__all__ = [
    "ExactSetMatch",
    "FieldSelector",
    "FilterPolicy",
    "MatchSpec",
    "NumericMatch",
    "PrefixMatch",
    "SuffixMatch",
    "compile_policy",
    "field_type",
]

NumericOperator = Literal[">", "<", ">=", "<=", "=="]
_NUMERIC_OPERATORS = frozenset({">", "<", ">=", "<=", "=="})

ATTRIBUTES_PREFIX = "attributes."

# Declared type of every selectable field. attributes.* is typed per event.
_FIELD_TYPES: dict[str, Literal["string", "numeric"]] = {
    "event_name": "string",
    "event_id": "string",
    "timestamp": "string",
    "producer": "string",
    "region": "string",
    "resource_locator.container_identifier": "string",
    "resource_locator.object_key": "string",
    "resource_locator.size_bytes": "numeric",
    "resource_locator.content_hash": "string",
    "resource_locator.version_identifier": "string",
    "origin.principal_id": "string",
    "origin.source_ip": "string",
}


@dataclass(frozen=True)
class PrefixMatch:
    value: str


@dataclass(frozen=True)
class SuffixMatch:
    value: str


@dataclass(frozen=True)
class ExactSetMatch:
    values: tuple[str | int | float, ...]


@dataclass(frozen=True)
class NumericMatch:
    """All (operator, operand) conditions must hold, e.g. ((">=", 0), ("<", 100))."""

    conditions: tuple[tuple[NumericOperator, float], ...]


MatchSpec = Union[PrefixMatch, SuffixMatch, ExactSetMatch, NumericMatch]


@dataclass(frozen=True)
class FieldSelector:
    field: str
    specs: tuple[MatchSpec, ...]


@dataclass(frozen=True)
class FilterPolicy:
    selectors: tuple[FieldSelector, ...] = ()


def field_type(name: str) -> Literal["string", "numeric"] | None:
    """Declared type of a field, or None for attributes.* (known only at evaluation)."""
    return _FIELD_TYPES.get(name)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compile_numeric(field: str, operands: Any) -> NumericMatch:
    if not isinstance(operands, list) or not operands or len(operands) % 2:
        raise MalformedPolicyError(
            f"{field}: 'numeric' expects [op, value, ...] pairs, got {operands!r}"
        )
    conditions: list[tuple[NumericOperator, float]] = []
    for op, value in zip(operands[::2], operands[1::2]):
        if not isinstance(op, str) or op not in _NUMERIC_OPERATORS:
            raise MalformedPolicyError(f"{field}: unknown numeric operator {op!r}")
        if not _is_number(value):
            raise MalformedPolicyError(
                f"{field}: numeric operand must be a number, got {value!r}"
            )
        conditions.append((op, value))
    return NumericMatch(conditions=tuple(conditions))


def _compile_operator(field: str, spec: Mapping[str, Any]) -> MatchSpec:
    if len(spec) != 1:
        raise MalformedPolicyError(
            f"{field}: each operator object needs exactly one key, got {sorted(spec)}"
        )
    ((key, operand),) = spec.items()
    declared = field_type(field)
    if key in ("prefix", "suffix"):
        if declared == "numeric":
            raise TypeMismatchError(f"{field}: '{key}' cannot apply to a numeric field")
        if not isinstance(operand, str):
            raise MalformedPolicyError(f"{field}: '{key}' operand must be a string")
        return PrefixMatch(operand) if key == "prefix" else SuffixMatch(operand)
    if key == "numeric":
        if declared == "string":
            raise TypeMismatchError(f"{field}: 'numeric' cannot apply to a string field")
        return _compile_numeric(field, operand)
    raise MalformedPolicyError(f"{field}: unknown operator {key!r}")


def _compile_selector(field: str, raw_specs: Any) -> FieldSelector:
    if field not in _FIELD_TYPES and not (
        field.startswith(ATTRIBUTES_PREFIX) and len(field) > len(ATTRIBUTES_PREFIX)
    ):
        raise MalformedPolicyError(f"Unknown filter field {field!r}")
    if not isinstance(raw_specs, list):
        raise MalformedPolicyError(f"{field}: match specs must be a list")
    specs: list[MatchSpec] = []
    literals: list[str | int | float] = []
    declared = field_type(field)
    for item in raw_specs:
        if isinstance(item, Mapping):
            specs.append(_compile_operator(field, item))
        elif isinstance(item, str) or _is_number(item):
            if declared == "numeric" and isinstance(item, str):
                raise TypeMismatchError(f"{field}: string literal {item!r} on numeric field")
            if declared == "string" and not isinstance(item, str):
                raise TypeMismatchError(f"{field}: numeric literal {item!r} on string field")
            literals.append(item)
        else:
            raise MalformedPolicyError(f"{field}: unsupported match spec {item!r}")
    if literals:
        specs.append(ExactSetMatch(values=tuple(literals)))
    return FieldSelector(field=field, specs=tuple(specs))


def compile_policy(raw: Mapping[str, Any] | FilterPolicy | None) -> FilterPolicy | None:
    """Validate a raw filter policy into a FilterPolicy. None stays None (accept-all).

    Raises MalformedPolicyError for shape errors and TypeMismatchError for operators that
    cannot apply to the selected field's declared type.
    """
    if raw is None or isinstance(raw, FilterPolicy):
        return raw
    if not isinstance(raw, Mapping):
        raise MalformedPolicyError(
            f"Filter policy must be an object, got {type(raw).__name__}"
        )
    selectors = tuple(_compile_selector(str(k), v) for k, v in raw.items())
    return FilterPolicy(selectors=selectors)
