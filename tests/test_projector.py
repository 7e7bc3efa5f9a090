"""Tests for state projection."""

from services.core.events import Event
from services.core.models import AnomalyKind, ApplicationStatus, ProjectionState
from services.core.projector import apply, project


def created(app_id="A1", amount=500, ts="1"):
    return Event(
        type="ApplicationCreated",
        payload={"applicationId": app_id, "amount": amount, "status": "CREATED"},
        consensus_timestamp=ts,
    )


def overridden(app_id="A1", reason="fraud", ts="2"):
    return Event(
        type="DecisionOverridden",
        payload={"applicationId": app_id, "reason": reason, "newStatus": "OVERRIDDEN"},
        consensus_timestamp=ts,
    )


def registered(model_id="risk", version="1.0", ts="1"):
    return Event(
        type="AIVersionRegistered",
        payload={"modelId": model_id, "version": version,
                 "repoUrl": "https://git.example.com/risk", "artifactHash": "sha256:aa"},
        consensus_timestamp=ts,
    )


def evaluated(model_id="risk", version="1.0", eval_id="e1", ts="2"):
    return Event(
        type="AIVersionEvaluated",
        payload={"modelId": model_id, "version": version, "evalId": eval_id,
                 "dataset": "holdout", "metrics": {"accuracy": 0.91}, "passed": True},
        consensus_timestamp=ts,
    )


def test_create_then_override():
    """Created A1 for 500 then overridden for fraud."""
    state = project([created(), overridden()])
    application = state.applications["A1"]

    assert application.status == ApplicationStatus.OVERRIDDEN
    assert application.amount == 500
    assert application.last_reason == "fraud"
    assert state.anomalies == []


def test_second_override_recorded_as_conflict():
    """The first override's reason is kept; the second becomes an anomaly."""
    state = project([created(), overridden(), overridden(reason="typo", ts="3")])

    assert state.applications["A1"].status == ApplicationStatus.OVERRIDDEN
    assert state.applications["A1"].last_reason == "fraud"
    assert [a.kind for a in state.anomalies] == [AnomalyKind.CONFLICTING_OVERRIDE]
    assert state.anomalies[0].consensus_timestamp == "3"


def test_override_for_unknown_application_is_orphaned():
    state = project([overridden(app_id="Z9")])

    assert "Z9" not in state.applications
    assert state.anomalies[0].kind == AnomalyKind.ORPHANED_OVERRIDE
    assert state.anomalies[0].entity == "Z9"


def test_recreation_after_override_keeps_status():
    """Re-creation updates the amount but does not revert OVERRIDDEN."""
    state = project([created(), overridden(), created(amount=900, ts="3")])

    assert state.applications["A1"].status == ApplicationStatus.OVERRIDDEN
    assert state.applications["A1"].amount == 900
    assert state.anomalies[0].kind == AnomalyKind.RECREATED_AFTER_OVERRIDE


def test_duplicate_creation_overwrites_amount():
    state = project([created(), created(amount=750, ts="2")])

    assert state.applications["A1"].status == ApplicationStatus.CREATED
    assert state.applications["A1"].amount == 750
    assert state.anomalies == []


def test_orphaned_evaluation_is_kept():
    """An evaluation for an unregistered version is projected, not raised."""
    state = project([evaluated()])
    entry = state.models["risk@1.0"]

    assert entry.registration is None
    assert entry.orphaned
    assert entry.evaluations[0].metrics == {"accuracy": 0.91}
    assert state.anomalies[0].kind == AnomalyKind.ORPHANED_EVALUATION


def test_registration_keeps_prior_evaluations():
    state = project([evaluated(), registered(ts="3"), evaluated(eval_id="e2", ts="4")])
    entry = state.models["risk@1.0"]

    assert entry.registration.repo_url == "https://git.example.com/risk"
    assert [e.eval_id for e in entry.evaluations] == ["e1", "e2"]
    assert not entry.orphaned


def test_reregistration_replaces_record():
    replacement = registered(ts="2").model_copy(update={
        "payload": {**registered().payload, "artifactHash": "sha256:bb"}
    })
    state = project([registered(), replacement])
    assert state.models["risk@1.0"].registration.artifact_hash == "sha256:bb"


def test_unknown_event_type_is_ignored():
    state = project([Event(type="LoanFunded", payload={"loanId": "L1"}), created()])

    assert state.ignored_events == 1
    assert state.applied_events == 1
    assert list(state.applications) == ["A1"]


def test_apply_does_not_modify_input_state():
    initial = project([created()])
    snapshot = initial.model_dump()

    apply(initial, overridden())

    assert initial.model_dump() == snapshot


def test_projection_is_deterministic():
    """Same ordered events from the empty state give identical state."""
    events = [created(), registered(ts="2"), overridden(ts="3"),
              evaluated(ts="4"), overridden(reason="again", ts="5")]

    first = project(events)
    second = project(events, ProjectionState())

    assert first == second
    assert first.model_dump() == second.model_dump()
