"""Command handling: build, guard, chain and publish events."""
import asyncio
import time
from typing import Any, Callable, Iterable

import structlog

from ..core.errors import TransitionRejectedError
from ..core.events import Event, EventType, chain_key, validate_event
from ..core.hasher import hash_event
from ..core.models import AnomalyKind, ProjectionState
from ..core.projector import Transition, apply, check_transition, project
from .models import SubmittedEvent
from .publisher import Publisher

logger = structlog.get_logger()

REJECTION_MESSAGES = {
    AnomalyKind.ORPHANED_OVERRIDE: "Unknown application",
    AnomalyKind.CONFLICTING_OVERRIDE: "Already overridden",
    AnomalyKind.RECREATED_AFTER_OVERRIDE: "Application already overridden",
}


def now_ms() -> int:
    return int(time.time() * 1000)


class CommandService:
    """Publishes domain events, keeping command-side state in step with the topic.

    State (projection and chain heads) changes only after the publisher
    accepts an event. Submissions are serialized so a guard check and the
    state update that follows it cannot interleave with another command.
    """

    def __init__(self, publisher: Publisher, topic_id: str, clock: Callable[[], Any] = now_ms):
        self.publisher = publisher
        self.topic_id = topic_id
        self.clock = clock
        self.state = ProjectionState()
        self.heads: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def restore(self, events: Iterable[Event]) -> None:
        """Rebuild state from an ordered event log."""
        events = list(events)
        self.state = project(events)
        self.heads = {}
        for event in events:
            key = chain_key(event)
            if key is not None:
                self.heads[key] = hash_event(event)
        logger.info(
            "command_state_restored",
            events=len(events),
            applications=len(self.state.applications),
            chains=len(self.heads),
        )

    async def create_application(self, application_id: str, amount: float) -> SubmittedEvent:
        return await self._submit(EventType.APPLICATION_CREATED, {
            "applicationId": application_id,
            "amount": amount,
            "status": "CREATED",
        })

    async def override_decision(self, application_id: str, reason: str) -> SubmittedEvent:
        return await self._submit(EventType.DECISION_OVERRIDDEN, {
            "applicationId": application_id,
            "reason": reason,
            "newStatus": "OVERRIDDEN",
        })

    async def register_ai_version(
        self,
        model_id: str,
        version: str,
        repo_url: str,
        artifact_hash: str,
        description: str = "",
    ) -> SubmittedEvent:
        return await self._submit(EventType.AI_VERSION_REGISTERED, {
            "modelId": model_id,
            "version": version,
            "repoUrl": repo_url,
            "artifactHash": artifact_hash,
            "description": description,
        })

    async def log_ai_evaluation(
        self,
        model_id: str,
        version: str,
        eval_id: str,
        dataset: str,
        metrics: dict,
        passed: bool = False,
        notes: str = "",
    ) -> SubmittedEvent:
        return await self._submit(EventType.AI_VERSION_EVALUATED, {
            "modelId": model_id,
            "version": version,
            "evalId": eval_id,
            "dataset": dataset,
            "metrics": metrics,
            "passed": passed,
            "notes": notes,
        })

    async def _submit(self, event_type: EventType, payload: dict) -> SubmittedEvent:
        async with self._lock:
            event = validate_event(
                Event(type=event_type.value, payload=payload, timestamp=self.clock())
            )

            if event_type in (EventType.APPLICATION_CREATED, EventType.DECISION_OVERRIDDEN):
                outcome, kind = check_transition(self.state, event)
                if outcome == Transition.CONFLICT:
                    logger.warning(
                        "transition_rejected",
                        type=event_type.value,
                        application_id=payload["applicationId"],
                        kind=kind.value,
                    )
                    raise TransitionRejectedError(REJECTION_MESSAGES[kind], kind=kind.value)

            key = chain_key(event)
            event = event.model_copy(update={"prev_hash": self.heads.get(key)})
            digest = hash_event(event)

            receipt = await self.publisher.submit(self.topic_id, event)

            accepted = event.with_consensus(receipt.consensus_timestamp)
            self.state = apply(self.state, accepted)
            self.heads[key] = digest

            logger.info(
                "event_appended",
                type=event.type,
                chain=key,
                hash=digest,
                sequence_number=receipt.sequence_number,
                consensus_timestamp=receipt.consensus_timestamp,
            )
            return SubmittedEvent(
                event=event.to_wire(),
                hash=digest,
                sequence_number=receipt.sequence_number,
                consensus_timestamp=receipt.consensus_timestamp,
            )
