"""Event content hashing and chain links."""
import hashlib
from typing import Any, Mapping, Union

from .canonical import canonicalize
from .events import Event

HASH_ALGORITHM = "sha256"


def hash_event(event: Union[Event, Mapping[str, Any]]) -> str:
    """
    Tagged SHA-256 of the canonical event body without its prevHash.

    The consensus timestamp is never part of the input: it is assigned by the
    ledger after the hash is taken.
    """
    if isinstance(event, Event):
        body = event.to_wire()
    else:
        body = dict(event)
    body.pop("prevHash", None)

    digest = hashlib.sha256(canonicalize(body).encode("utf-8")).hexdigest()
    return f"{HASH_ALGORITHM}:{digest}"


def link_next(event: Union[Event, Mapping[str, Any]]) -> str:
    """prevHash value for the event that follows `event` in its chain."""
    return hash_event(event)
