"""Merge paginated mirror results into one ordered, deduplicated log."""
import bisect
from typing import Any, Iterable, Optional

import structlog

from .errors import DecodeError
from .events import Event, decode_message, parse_consensus_timestamp
from .models import DecodeFailure, ReconcileResult

logger = structlog.get_logger()


class FeedReconciler:
    """Owns the accumulated event log and the replay cursor.

    The feed is at-least-once and unordered, so every call dedups on the
    consensus timestamp, sorts the batch, and merges it into the log. The
    cursor (newest accepted event) only moves forward. The fetch cursor also
    moves past rejected messages so a run of bad messages is never refetched.
    """

    def __init__(self):
        self._events: list[Event] = []
        self._keys: list[tuple[int, int]] = []
        # Grows with the number of bad messages on the topic; bounded by topic size
        self._rejected: set[tuple[int, int]] = set()
        self._cursor: Optional[str] = None
        self._cursor_key: Optional[tuple[int, int]] = None
        self._fetch_cursor: Optional[str] = None
        self._fetch_key: Optional[tuple[int, int]] = None

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    @property
    def fetch_cursor(self) -> Optional[str]:
        """Newest consensus timestamp seen, accepted or rejected."""
        return self._fetch_cursor

    def __len__(self) -> int:
        return len(self._events)

    def reconcile(self, raw_messages: Iterable[Any]) -> ReconcileResult:
        """Merge a batch and return only the events not seen before."""
        batch: dict[tuple[int, int], Event] = {}
        rejected = []
        duplicates = 0

        for raw in raw_messages:
            consensus_timestamp = raw.get("consensus_timestamp") if isinstance(raw, dict) else None
            try:
                key = parse_consensus_timestamp(consensus_timestamp)
            except ValueError as e:
                logger.warning("message_rejected", error=str(e))
                rejected.append(DecodeFailure(error=str(e)))
                continue

            consensus_timestamp = str(consensus_timestamp)
            if self._fetch_key is None or key > self._fetch_key:
                self._fetch_key = key
                self._fetch_cursor = consensus_timestamp

            if key in batch or key in self._rejected or self._contains(key):
                duplicates += 1
                continue

            try:
                event = decode_message(raw.get("message"), consensus_timestamp)
            except DecodeError as e:
                self._rejected.add(key)
                logger.warning(
                    "message_rejected",
                    consensus_timestamp=consensus_timestamp,
                    error=str(e),
                )
                rejected.append(
                    DecodeFailure(consensus_timestamp=consensus_timestamp, error=str(e))
                )
                continue

            batch[key] = event

        ordered = sorted(batch.items())
        late_arrival = bool(
            ordered and self._cursor_key is not None and ordered[0][0] < self._cursor_key
        )

        for key, event in ordered:
            index = bisect.bisect(self._keys, key)
            self._keys.insert(index, key)
            self._events.insert(index, event)

        if ordered and (self._cursor_key is None or ordered[-1][0] > self._cursor_key):
            self._cursor_key = ordered[-1][0]
            self._cursor = ordered[-1][1].consensus_timestamp

        new_events = [event for _, event in ordered]
        logger.info(
            "feed_reconciled",
            new=len(new_events),
            duplicates=duplicates,
            rejected=len(rejected),
            cursor=self._cursor,
            fetch_cursor=self._fetch_cursor,
            late_arrival=late_arrival,
        )
        return ReconcileResult(
            new_events=new_events,
            updated_cursor=self._cursor,
            fetch_cursor=self._fetch_cursor,
            rejected=rejected,
            late_arrival=late_arrival,
        )

    def _contains(self, key: tuple[int, int]) -> bool:
        index = bisect.bisect_left(self._keys, key)
        return index < len(self._keys) and self._keys[index] == key
