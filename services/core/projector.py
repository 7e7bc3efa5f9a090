"""Fold ordered events into per-entity state."""
from enum import Enum
from typing import Iterable, Optional

import structlog

from .events import Event, EventType, chain_key
from .models import (
    Anomaly,
    AnomalyKind,
    ApplicationState,
    ApplicationStatus,
    EvaluationRecord,
    ModelVersionState,
    ProjectionState,
    Registration,
)

logger = structlog.get_logger()


class Transition(str, Enum):
    APPLY = "apply"
    CONFLICT = "conflict"


# (current status, event type) -> (outcome, anomaly kind when not applied)
# None as status means the application is unknown.
APPLICATION_TRANSITIONS = {
    (None, EventType.APPLICATION_CREATED): (Transition.APPLY, None),
    (ApplicationStatus.CREATED, EventType.APPLICATION_CREATED): (Transition.APPLY, None),
    (ApplicationStatus.OVERRIDDEN, EventType.APPLICATION_CREATED): (
        Transition.CONFLICT,
        AnomalyKind.RECREATED_AFTER_OVERRIDE,
    ),
    (None, EventType.DECISION_OVERRIDDEN): (
        Transition.CONFLICT,
        AnomalyKind.ORPHANED_OVERRIDE,
    ),
    (ApplicationStatus.CREATED, EventType.DECISION_OVERRIDDEN): (Transition.APPLY, None),
    (ApplicationStatus.OVERRIDDEN, EventType.DECISION_OVERRIDDEN): (
        Transition.CONFLICT,
        AnomalyKind.CONFLICTING_OVERRIDE,
    ),
}


def model_key(model_id: str, version: str) -> str:
    return f"{model_id}@{version}"


def check_transition(
    state: ProjectionState, event: Event
) -> tuple[Transition, Optional[AnomalyKind]]:
    """Outcome of applying an application event to the current state."""
    application = state.applications.get(event.payload.get("applicationId"))
    status = application.status if application else None
    return APPLICATION_TRANSITIONS[(status, EventType(event.type))]


def apply(state: ProjectionState, event: Event) -> ProjectionState:
    """Return the state after `event`. The input state is not modified."""
    event_type = event.known_type
    if event_type is None or chain_key(event) is None:
        logger.debug("event_ignored", type=event.type,
                     consensus_timestamp=event.consensus_timestamp)
        return state.model_copy(update={"ignored_events": state.ignored_events + 1})

    if event_type in (EventType.APPLICATION_CREATED, EventType.DECISION_OVERRIDDEN):
        state = _apply_application(state, event, event_type)
    elif event_type == EventType.AI_VERSION_REGISTERED:
        state = _apply_registration(state, event)
    else:
        state = _apply_evaluation(state, event)

    return state.model_copy(update={"applied_events": state.applied_events + 1})


def project(events: Iterable[Event], state: Optional[ProjectionState] = None) -> ProjectionState:
    """Fold events in order, starting from `state` or the empty state."""
    state = state if state is not None else ProjectionState()
    for event in events:
        state = apply(state, event)
    return state


def _record_anomaly(
    state: ProjectionState, kind: AnomalyKind, entity: str, event: Event, detail: str
) -> ProjectionState:
    anomaly = Anomaly(
        kind=kind,
        entity=entity,
        event_type=event.type,
        consensus_timestamp=event.consensus_timestamp,
        detail=detail,
    )
    logger.info(
        "anomaly_recorded",
        kind=kind.value,
        entity=entity,
        consensus_timestamp=event.consensus_timestamp,
    )
    return state.model_copy(update={"anomalies": [*state.anomalies, anomaly]})


def _apply_application(
    state: ProjectionState, event: Event, event_type: EventType
) -> ProjectionState:
    application_id = event.payload["applicationId"]
    current = state.applications.get(application_id)
    outcome, kind = check_transition(state, event)

    if event_type == EventType.APPLICATION_CREATED:
        if outcome == Transition.CONFLICT:
            # Amount and creation time follow the re-creation, status stays terminal
            updated = current.model_copy(update={
                "amount": event.payload.get("amount"),
                "created_at": event.timestamp,
                "updated_consensus": event.consensus_timestamp,
            })
            state = _record_anomaly(
                state, kind, application_id, event,
                "re-creation of an overridden application",
            )
        else:
            updated = ApplicationState(
                application_id=application_id,
                status=ApplicationStatus.CREATED,
                amount=event.payload.get("amount"),
                created_at=event.timestamp,
                updated_consensus=event.consensus_timestamp,
            )
        return state.model_copy(
            update={"applications": {**state.applications, application_id: updated}}
        )

    reason = event.payload.get("reason")
    if outcome == Transition.CONFLICT:
        if kind == AnomalyKind.ORPHANED_OVERRIDE:
            detail = f"override for unknown application (reason: {reason})"
        else:
            detail = (
                f"second override ignored (reason: {reason}); "
                f"kept reason: {current.last_reason}"
            )
        return _record_anomaly(state, kind, application_id, event, detail)

    updated = current.model_copy(update={
        "status": ApplicationStatus.OVERRIDDEN,
        "last_reason": reason,
        "updated_consensus": event.consensus_timestamp,
    })
    return state.model_copy(
        update={"applications": {**state.applications, application_id: updated}}
    )


def _model_entry(state: ProjectionState, event: Event) -> tuple[str, ModelVersionState]:
    model_id = event.payload["modelId"]
    version = event.payload["version"]
    key = model_key(model_id, version)
    entry = state.models.get(key) or ModelVersionState(model_id=model_id, version=version)
    return key, entry


def _apply_registration(state: ProjectionState, event: Event) -> ProjectionState:
    key, entry = _model_entry(state, event)
    registration = Registration(
        repo_url=event.payload.get("repoUrl"),
        artifact_hash=event.payload.get("artifactHash"),
        description=event.payload.get("description"),
        registered_at=event.timestamp,
        consensus_timestamp=event.consensus_timestamp,
    )
    # Prior evaluations stay attached to the key
    updated = entry.model_copy(update={"registration": registration})
    return state.model_copy(update={"models": {**state.models, key: updated}})


def _apply_evaluation(state: ProjectionState, event: Event) -> ProjectionState:
    key, entry = _model_entry(state, event)
    record = EvaluationRecord(
        eval_id=event.payload.get("evalId"),
        dataset=event.payload.get("dataset"),
        metrics=event.payload.get("metrics") or {},
        passed=bool(event.payload.get("passed", False)),
        notes=event.payload.get("notes"),
        evaluated_at=event.timestamp,
        consensus_timestamp=event.consensus_timestamp,
    )
    if entry.registration is None:
        state = _record_anomaly(
            state, AnomalyKind.ORPHANED_EVALUATION, key, event,
            f"evaluation {record.eval_id} for unregistered version",
        )

    updated = entry.model_copy(update={"evaluations": [*entry.evaluations, record]})
    return state.model_copy(update={"models": {**state.models, key: updated}})
