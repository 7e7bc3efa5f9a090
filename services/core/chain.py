"""Hash chain verification."""
from collections import defaultdict
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel

from .errors import CanonicalizationError
from .events import Event, chain_key
from .hasher import hash_event

logger = structlog.get_logger()


class ChainValidation(BaseModel):
    """Result of walking one chain. A break is reported, never repaired."""
    valid: bool
    length: int = 0
    broken_at_index: Optional[int] = None
    expected_prev_hash: Optional[str] = None
    actual_prev_hash: Optional[str] = None
    reason: Optional[str] = None


def validate_chain(events: Sequence[Event]) -> ChainValidation:
    """Check each event's prevHash against the hash of its predecessor.

    Stops at the first mismatch. The first event is the chain head and its
    prevHash, if any, is not checked.
    """
    for index in range(1, len(events)):
        current = events[index]
        try:
            expected = hash_event(events[index - 1])
        except CanonicalizationError as e:
            return ChainValidation(
                valid=False,
                length=len(events),
                broken_at_index=index,
                reason=f"previous event not hashable: {e}",
            )

        if current.prev_hash is None:
            return ChainValidation(
                valid=False,
                length=len(events),
                broken_at_index=index,
                expected_prev_hash=expected,
                reason="missing prevHash",
            )
        if current.prev_hash != expected:
            return ChainValidation(
                valid=False,
                length=len(events),
                broken_at_index=index,
                expected_prev_hash=expected,
                actual_prev_hash=current.prev_hash,
                reason="prevHash mismatch",
            )

    return ChainValidation(valid=True, length=len(events))


def group_chains(events: Sequence[Event]) -> dict[str, list[Event]]:
    """Split an ordered log into per-entity chains, keeping relative order."""
    chains = defaultdict(list)
    for event in events:
        key = chain_key(event)
        if key is not None:
            chains[key].append(event)
    return dict(chains)


def verify_chains(events: Sequence[Event]) -> dict[str, ChainValidation]:
    """Validate every chain in an ordered log."""
    report = {}
    for key, chain in group_chains(events).items():
        result = validate_chain(chain)
        if not result.valid:
            logger.warning(
                "chain_break_detected",
                chain=key,
                index=result.broken_at_index,
                reason=result.reason,
            )
        report[key] = result
    return report
