"""Display rows for events."""
import structlog

from ..core.errors import CanonicalizationError
from ..core.events import Event, EventType
from ..core.hasher import hash_event
from ..core.models import EventView

logger = structlog.get_logger()


def derive_columns(event: Event) -> tuple[str, str, str]:
    """Primary, secondary and detail columns for an event row."""
    payload = event.payload
    event_type = event.known_type

    if event_type == EventType.APPLICATION_CREATED:
        amount = payload.get("amount")
        return (
            str(payload.get("applicationId") or ""),
            "" if amount is None else str(amount),
            str(payload.get("status") or ""),
        )

    if event_type == EventType.DECISION_OVERRIDDEN:
        return (
            str(payload.get("applicationId") or ""),
            str(payload.get("newStatus") or ""),
            str(payload.get("reason") or ""),
        )

    if event_type == EventType.AI_VERSION_REGISTERED:
        artifact = str(payload.get("artifactHash") or "")[:20]
        return (
            str(payload.get("modelId") or ""),
            str(payload.get("version") or ""),
            f"{artifact}… {payload.get('repoUrl') or ''}",
        )

    if event_type == EventType.AI_VERSION_EVALUATED:
        metrics = payload.get("metrics") or {}
        pairs = ", ".join(f"{k}={v}" for k, v in list(metrics.items())[:2])
        passed = "[PASSED]" if payload.get("passed") else ""
        detail = " ".join(part for part in (pairs, passed, payload.get("dataset") or "") if part)
        return (
            str(payload.get("modelId") or ""),
            str(payload.get("version") or ""),
            detail,
        )

    return ("", "", "")


def to_view(event: Event, index: int) -> EventView:
    try:
        digest = hash_event(event)
    except CanonicalizationError as e:
        logger.warning("event_hash_failed", consensus_timestamp=event.consensus_timestamp, error=str(e))
        digest = ""
    primary, secondary, detail = derive_columns(event)
    return EventView(
        index=index,
        consensus_timestamp=event.consensus_timestamp,
        type=event.type,
        hash=digest,
        prev_hash=event.prev_hash,
        primary=primary,
        secondary=secondary,
        detail=detail,
        body=event.to_wire(),
    )
