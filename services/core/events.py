"""Event model and wire codec."""
import base64
import binascii
import json
import math
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .canonical import canonicalize
from .errors import DecodeError, EventValidationError

# Wire keys that are not payload fields
RESERVED_FIELDS = ("type", "timestamp", "prevHash")


class EventType(str, Enum):
    """Known event types."""
    APPLICATION_CREATED = "ApplicationCreated"
    DECISION_OVERRIDDEN = "DecisionOverridden"
    AI_VERSION_REGISTERED = "AIVersionRegistered"
    AI_VERSION_EVALUATED = "AIVersionEvaluated"


# type -> (required payload fields, optional payload fields)
EVENT_FIELDS = {
    EventType.APPLICATION_CREATED: (("applicationId", "amount"), ("status",)),
    EventType.DECISION_OVERRIDDEN: (("applicationId", "reason"), ("newStatus",)),
    EventType.AI_VERSION_REGISTERED: (
        ("modelId", "version", "repoUrl", "artifactHash"),
        ("description",),
    ),
    EventType.AI_VERSION_EVALUATED: (
        ("modelId", "version", "evalId", "dataset", "metrics"),
        ("passed", "notes"),
    ),
}

# Payload fields that must be strings when present
STRING_FIELDS = (
    "applicationId", "reason", "status", "newStatus",
    "modelId", "version", "repoUrl", "artifactHash", "description",
    "evalId", "dataset", "notes",
)


class Event(BaseModel):
    """Immutable ledger event."""
    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Event type name")
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[Union[int, float, str]] = Field(
        None, description="Producer-assigned creation time (epoch ms)"
    )
    prev_hash: Optional[str] = Field(None, description="Hash of the previous event in this chain")
    consensus_timestamp: Optional[str] = Field(
        None, description="Ledger-assigned order key, set once accepted"
    )

    @property
    def known_type(self) -> Optional[EventType]:
        try:
            return EventType(self.type)
        except ValueError:
            return None

    def to_wire(self) -> dict[str, Any]:
        """Flat wire object; never carries the consensus timestamp."""
        body = {"type": self.type, **self.payload}
        if self.timestamp is not None:
            body["timestamp"] = self.timestamp
        if self.prev_hash is not None:
            body["prevHash"] = self.prev_hash
        return body

    def with_consensus(self, consensus_timestamp: str) -> "Event":
        return self.model_copy(update={"consensus_timestamp": consensus_timestamp})

    @classmethod
    def from_wire(cls, body: dict[str, Any], consensus_timestamp: Optional[str] = None) -> "Event":
        event_type = body.get("type")
        if not isinstance(event_type, str) or not event_type:
            raise EventValidationError("Event type must be a non-empty string", field="type")

        prev_hash = body.get("prevHash")
        if prev_hash is not None and not isinstance(prev_hash, str):
            raise EventValidationError("prevHash must be a string", field="prevHash")

        timestamp = body.get("timestamp")
        if timestamp is not None and (
            isinstance(timestamp, bool) or not isinstance(timestamp, (int, float, str))
        ):
            raise EventValidationError("timestamp must be a number or string", field="timestamp")

        payload = {k: v for k, v in body.items() if k not in RESERVED_FIELDS}
        return cls(
            type=event_type,
            payload=payload,
            timestamp=timestamp,
            prev_hash=prev_hash,
            consensus_timestamp=consensus_timestamp,
        )


def validate_event(event: Event) -> Event:
    """Check payload shape for known types. Unknown types pass through."""
    event_type = event.known_type
    if event_type is None:
        return event

    required, optional = EVENT_FIELDS[event_type]
    for name in required:
        value = event.payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise EventValidationError(f"{name} is required for {event_type.value}", field=name)

    for name in (*required, *optional):
        value = event.payload.get(name)
        if name in STRING_FIELDS and value is not None and not isinstance(value, str):
            raise EventValidationError(f"{name} must be a string", field=name)

    if event_type == EventType.APPLICATION_CREATED:
        if not _is_number(event.payload["amount"]):
            raise EventValidationError("amount must be a number", field="amount")

    if event_type == EventType.AI_VERSION_EVALUATED:
        validate_metrics(event.payload["metrics"])
        passed = event.payload.get("passed")
        if passed is not None and not isinstance(passed, bool):
            raise EventValidationError("passed must be a boolean", field="passed")

    return event


def validate_metrics(metrics: Any) -> dict[str, Union[int, float]]:
    """Metrics must be a flat mapping of metric name to finite number."""
    if not isinstance(metrics, dict):
        raise EventValidationError("metrics must be an object", field="metrics")
    for name, value in metrics.items():
        if not isinstance(name, str) or not name:
            raise EventValidationError("metric names must be non-empty strings", field="metrics")
        if not _is_number(value):
            raise EventValidationError(f"metric {name!r} must be a number", field="metrics")
    return metrics


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def chain_key(event: Event) -> Optional[str]:
    """Per-entity chain an event belongs to, or None if it is not chained."""
    event_type = event.known_type
    if event_type in (EventType.APPLICATION_CREATED, EventType.DECISION_OVERRIDDEN):
        application_id = event.payload.get("applicationId")
        if isinstance(application_id, str):
            return f"application:{application_id}"
    elif event_type in (EventType.AI_VERSION_REGISTERED, EventType.AI_VERSION_EVALUATED):
        model_id = event.payload.get("modelId")
        version = event.payload.get("version")
        if isinstance(model_id, str) and isinstance(version, str):
            return f"model:{model_id}@{version}"
    return None


def encode_message(event: Event) -> bytes:
    """Ledger message body: canonical UTF-8 JSON of the wire object."""
    return canonicalize(event.to_wire()).encode("utf-8")


def decode_message(message: str, consensus_timestamp: Optional[str] = None) -> Event:
    """Decode a base64 mirror payload into a validated event."""
    try:
        raw = base64.b64decode(message, validate=True)
        body = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, TypeError, ValueError) as e:
        raise DecodeError(f"Undecodable payload: {e}", consensus_timestamp) from e

    if not isinstance(body, dict):
        raise DecodeError("Payload is not a JSON object", consensus_timestamp)

    try:
        return validate_event(Event.from_wire(body, consensus_timestamp))
    except EventValidationError as e:
        raise DecodeError(str(e), consensus_timestamp) from e


def parse_consensus_timestamp(value: Any) -> tuple[int, int]:
    """Order key for a `seconds[.nanoseconds]` consensus timestamp."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid consensus timestamp: {value!r}")
    if isinstance(value, int):
        return (value, 0)
    if not isinstance(value, str):
        raise ValueError(f"Invalid consensus timestamp: {value!r}")

    seconds, _, nanos = value.strip().partition(".")
    if not seconds.isdigit() or (nanos and not nanos.isdigit()) or len(nanos) > 9:
        raise ValueError(f"Invalid consensus timestamp: {value!r}")
    return (int(seconds), int(nanos.ljust(9, "0")) if nanos else 0)
