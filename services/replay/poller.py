"""Poll-driven replay: fetch, reconcile, project."""
import asyncio
from typing import Optional

import structlog

from ..core.errors import FeedUnavailableError
from ..core.mirror import MirrorClient
from ..core.models import EventView, ProjectionState
from ..core.projector import project
from ..core.reconciler import FeedReconciler
from .models import PollOutcome, PollState, ReplayStatus
from .views import to_view

logger = structlog.get_logger()


class ReplayLoop:
    """Owns the replay cursor, the event log and the derived state.

    Cycles never overlap: a poll requested while another is waiting on the
    mirror is skipped.
    """

    def __init__(
        self,
        mirror: MirrorClient,
        topic_id: str,
        page_limit: int = 25,
        max_pages: int = 4,
        interval: float = 4.0,
    ):
        self.mirror = mirror
        self.topic_id = topic_id
        self.page_limit = page_limit
        self.max_pages = max_pages
        self.interval = interval

        self.reconciler = FeedReconciler()
        self.state = ProjectionState()
        self.in_flight = False
        self.polls = 0
        self.failures = 0
        self.last_poll: Optional[PollOutcome] = None
        self.subscribers: list[asyncio.Queue] = []

    async def poll_once(self) -> PollOutcome:
        """Run one cycle. A failed fetch leaves cursor and state untouched."""
        if self.in_flight:
            logger.debug("poll_skipped_in_flight", topic_id=self.topic_id)
            return PollOutcome(state=PollState.SKIPPED, cursor=self.reconciler.cursor)

        self.in_flight = True
        self.polls += 1
        try:
            try:
                raw_messages = await self.mirror.fetch_since(
                    self.topic_id,
                    since_cursor=self.reconciler.fetch_cursor,
                    limit=self.page_limit,
                    max_pages=self.max_pages,
                )
            except FeedUnavailableError as e:
                self.failures += 1
                logger.warning(
                    "poll_failed",
                    topic_id=self.topic_id,
                    error=str(e),
                    status_code=e.status_code,
                )
                outcome = PollOutcome(
                    state=PollState.FAILED, cursor=self.reconciler.cursor, error=str(e)
                )
                self.last_poll = outcome
                return outcome

            result = self.reconciler.reconcile(raw_messages)

            if result.late_arrival:
                self.state = project(self.reconciler.events)
            else:
                self.state = project(result.new_events, self.state)

            if result.new_events:
                await self._publish(result.new_events)
                logger.info(
                    "poll_completed",
                    topic_id=self.topic_id,
                    added=len(result.new_events),
                    cursor=result.updated_cursor,
                )
            else:
                logger.debug("poll_no_new_events", topic_id=self.topic_id)

            outcome = PollOutcome(
                state=PollState.COMPLETED,
                new_events=len(result.new_events),
                rejected=len(result.rejected),
                cursor=result.updated_cursor,
                rebuilt=result.late_arrival,
            )
            self.last_poll = outcome
            return outcome
        finally:
            self.in_flight = False

    async def run(self):
        """Poll forever at a fixed interval."""
        logger.info("starting_replay_poll", topic_id=self.topic_id, interval=self.interval)
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                self.failures += 1
                logger.error("poll_failed", topic_id=self.topic_id, error=str(e))

            # Wait before next poll
            await asyncio.sleep(self.interval)

    def views(self) -> list[EventView]:
        return [to_view(event, i) for i, event in enumerate(self.reconciler.events, 1)]

    def status(self) -> ReplayStatus:
        return ReplayStatus(
            topic_id=self.topic_id,
            cursor=self.reconciler.cursor,
            fetch_cursor=self.reconciler.fetch_cursor,
            events=len(self.reconciler),
            applications=len(self.state.applications),
            models=len(self.state.models),
            anomalies=len(self.state.anomalies),
            in_flight=self.in_flight,
            polls=self.polls,
            failures=self.failures,
            last_poll=self.last_poll,
        )

    async def _publish(self, new_events):
        if not self.subscribers:
            return
        positions = {
            event.consensus_timestamp: i
            for i, event in enumerate(self.reconciler.events, 1)
        }
        for event in new_events:
            view = to_view(event, positions[event.consensus_timestamp])
            for queue in self.subscribers:
                await queue.put(view)
