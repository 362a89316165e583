"""Event model: canonical storage-change Event and parsing of raw producer records."""

import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Union
from urllib.parse import unquote_plus

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    model_validator,
)

from fanout.errors import MalformedEventError

__all__ = [
    "Event",
    "Origin",
    "ResourceLocator",
    "event_to_dict",
    "parse_event",
    "parse_notification",
]

_TEST_EVENT = "s3:TestEvent"

AttributeValue = Union[StrictStr, StrictInt, StrictFloat]


@dataclass(frozen=True)
class ResourceLocator:
    """Identifies the changed object. (container_identifier, object_key) is unique per producer."""

    container_identifier: str
    object_key: str
    size_bytes: int | None = None
    content_hash: str | None = None
    version_identifier: str | None = None


@dataclass(frozen=True)
class Origin:
    """Principal and network origin of the action that caused the event."""

    principal_id: str | None = None
    source_ip: str | None = None


@dataclass(frozen=True)
class Event:
    """Immutable storage-change notification. The router only ever reads it."""

    event_name: str
    resource_locator: ResourceLocator
    timestamp: datetime | None = None
    origin: Origin = field(default_factory=Origin)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    producer: str | None = None
    region: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.attributes, MappingProxyType):
            object.__setattr__(
                self, "attributes", MappingProxyType(dict(self.attributes))
            )


# --- wire shape: object-store notification record ---------------------------


class _WireBucket(BaseModel):
    name: str = Field(min_length=1)


class _WireObject(BaseModel):
    key: str = Field(min_length=1)
    size: StrictInt | None = Field(default=None, ge=0)
    eTag: str | None = None
    versionId: str | None = None
    sequencer: str | None = None


class _WireEntity(BaseModel):
    bucket: _WireBucket
    object: _WireObject


class _WireIdentity(BaseModel):
    principalId: str | None = None


class _WireRequest(BaseModel):
    sourceIPAddress: str | None = None


def _parse_number(text: str) -> int | float:
    try:
        return int(text)
    except ValueError:
        value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"{text!r} is not a finite number")
    return value


class _WireMessageAttribute(BaseModel):
    """Pub/sub message attribute: {"Type": "String" | "Number" | ..., "Value": "..."}."""

    Type: StrictStr = "String"
    Value: StrictStr

    @model_validator(mode="after")
    def _validate_number(self) -> "_WireMessageAttribute":
        if self.is_number:
            try:
                _parse_number(self.Value)
            except ValueError:
                raise ValueError(f"Number attribute {self.Value!r} is not a number") from None
        return self

    @property
    def is_number(self) -> bool:
        # "Number" may carry a custom suffix, e.g. "Number.float"
        return self.Type == "Number" or self.Type.startswith("Number.")

    def native(self) -> str | int | float:
        return _parse_number(self.Value) if self.is_number else self.Value


class _WireRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    eventName: str = Field(min_length=1)
    eventTime: datetime | None = None
    eventSource: str | None = None
    awsRegion: str | None = None
    eventId: str | None = None
    s3: _WireEntity
    userIdentity: _WireIdentity | None = None
    requestParameters: _WireRequest | None = None
    messageAttributes: dict[str, _WireMessageAttribute] = Field(default_factory=dict)
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)

    def flat_attributes(self) -> dict[str, str | int | float]:
        """messageAttributes flattened to plain values; explicit attributes win on clashes."""
        flat: dict[str, str | int | float] = {
            name: attr.native() for name, attr in self.messageAttributes.items()
        }
        flat.update(self.attributes)
        return flat


# --- canonical snake_case shape ---------------------------------------------


class _CanonicalLocator(BaseModel):
    container_identifier: str = Field(min_length=1)
    object_key: str = Field(min_length=1)
    size_bytes: StrictInt | None = Field(default=None, ge=0)
    content_hash: str | None = None
    version_identifier: str | None = None


class _CanonicalOrigin(BaseModel):
    principal_id: str | None = None
    source_ip: str | None = None


class _CanonicalRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_name: str = Field(min_length=1)
    resource_locator: _CanonicalLocator
    timestamp: datetime | None = None
    origin: _CanonicalOrigin | None = None
    event_id: str | None = None
    producer: str | None = None
    region: str | None = None
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)


def _from_wire(rec: _WireRecord) -> Event:
    obj = rec.s3.object
    identity = rec.userIdentity or _WireIdentity()
    request = rec.requestParameters or _WireRequest()
    return Event(
        event_name=rec.eventName,
        timestamp=rec.eventTime,
        resource_locator=ResourceLocator(
            container_identifier=rec.s3.bucket.name,
            object_key=unquote_plus(obj.key),
            size_bytes=obj.size,
            content_hash=obj.eTag,
            version_identifier=obj.versionId,
        ),
        origin=Origin(
            principal_id=identity.principalId,
            source_ip=request.sourceIPAddress,
        ),
        event_id=rec.eventId or obj.sequencer or uuid.uuid4().hex,
        producer=rec.eventSource,
        region=rec.awsRegion,
        attributes=rec.flat_attributes(),
    )


def _from_canonical(rec: _CanonicalRecord) -> Event:
    loc = rec.resource_locator
    origin = rec.origin or _CanonicalOrigin()
    return Event(
        event_name=rec.event_name,
        timestamp=rec.timestamp,
        resource_locator=ResourceLocator(
            container_identifier=loc.container_identifier,
            object_key=loc.object_key,
            size_bytes=loc.size_bytes,
            content_hash=loc.content_hash,
            version_identifier=loc.version_identifier,
        ),
        origin=Origin(principal_id=origin.principal_id, source_ip=origin.source_ip),
        event_id=rec.event_id or uuid.uuid4().hex,
        producer=rec.producer,
        region=rec.region,
        attributes=rec.attributes,
    )


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid")


def parse_event(raw: Mapping[str, Any]) -> Event:
    """Validate one raw record (wire or canonical shape) into an Event.

    Raises MalformedEventError when required fields are absent or any field has the wrong shape.
    """
    if not isinstance(raw, Mapping):
        raise MalformedEventError(
            f"Event record must be an object, got {type(raw).__name__}"
        )
    try:
        if "eventName" in raw or "s3" in raw:
            return _from_wire(_WireRecord.model_validate(dict(raw)))
        return _from_canonical(_CanonicalRecord.model_validate(dict(raw)))
    except ValidationError as e:
        raise MalformedEventError(f"Malformed event record: {_first_error(e)}") from e


def parse_notification(raw: Mapping[str, Any]) -> list[Event]:
    """Parse a notification envelope {"Records": [...]} into Events.

    All records must parse; otherwise nothing is returned. A service test event yields [].
    """
    if not isinstance(raw, Mapping):
        raise MalformedEventError(
            f"Notification must be an object, got {type(raw).__name__}"
        )
    if raw.get("Event") == _TEST_EVENT:
        return []
    records = raw.get("Records")
    if not isinstance(records, list):
        raise MalformedEventError("Notification must contain a 'Records' list")
    events: list[Event] = []
    for i, record in enumerate(records):
        try:
            events.append(parse_event(record))
        except MalformedEventError as e:
            raise MalformedEventError(f"Record {i}: {e}") from e
    return events


def event_to_dict(event: Event) -> dict[str, Any]:
    """JSON-ready canonical representation. Used for delivery payloads and dead letters."""
    loc = event.resource_locator
    return {
        "event_id": event.event_id,
        "event_name": event.event_name,
        "timestamp": event.timestamp.isoformat() if event.timestamp else None,
        "producer": event.producer,
        "region": event.region,
        "resource_locator": {
            "container_identifier": loc.container_identifier,
            "object_key": loc.object_key,
            "size_bytes": loc.size_bytes,
            "content_hash": loc.content_hash,
            "version_identifier": loc.version_identifier,
        },
        "origin": {
            "principal_id": event.origin.principal_id,
            "source_ip": event.origin.source_ip,
        },
        "attributes": dict(event.attributes),
    }
