"""Derived state models."""
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .events import Event


class ApplicationStatus(str, Enum):
    """Application lifecycle state. OVERRIDDEN is terminal."""
    CREATED = "CREATED"
    OVERRIDDEN = "OVERRIDDEN"


class AnomalyKind(str, Enum):
    """Conflicts recorded instead of applied."""
    RECREATED_AFTER_OVERRIDE = "recreated_after_override"
    ORPHANED_OVERRIDE = "orphaned_override"
    CONFLICTING_OVERRIDE = "conflicting_override"
    ORPHANED_EVALUATION = "orphaned_evaluation"


class Anomaly(BaseModel):
    """Transition the feed contained but the state machine does not allow."""
    kind: AnomalyKind
    entity: str = Field(..., description="Application id or model@version key")
    event_type: str
    consensus_timestamp: Optional[str] = None
    detail: str = ""


class ApplicationState(BaseModel):
    application_id: str
    status: ApplicationStatus
    amount: Optional[Union[int, float]] = None
    last_reason: Optional[str] = None
    created_at: Optional[Union[int, float, str]] = None
    updated_consensus: Optional[str] = None


class Registration(BaseModel):
    repo_url: Optional[str] = None
    artifact_hash: Optional[str] = None
    description: Optional[str] = None
    registered_at: Optional[Union[int, float, str]] = None
    consensus_timestamp: Optional[str] = None


class EvaluationRecord(BaseModel):
    eval_id: Optional[str] = None
    dataset: Optional[str] = None
    metrics: dict[str, Union[int, float]] = Field(default_factory=dict)
    passed: bool = False
    notes: Optional[str] = None
    evaluated_at: Optional[Union[int, float, str]] = None
    consensus_timestamp: Optional[str] = None


class ModelVersionState(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    version: str
    registration: Optional[Registration] = None
    evaluations: list[EvaluationRecord] = Field(default_factory=list)

    @property
    def orphaned(self) -> bool:
        """Evaluations exist but the version was never registered."""
        return self.registration is None and bool(self.evaluations)


class ProjectionState(BaseModel):
    """Current view folded from the ordered event log."""
    applications: dict[str, ApplicationState] = Field(default_factory=dict)
    models: dict[str, ModelVersionState] = Field(default_factory=dict)
    anomalies: list[Anomaly] = Field(default_factory=list)
    ignored_events: int = 0
    applied_events: int = 0


class DecodeFailure(BaseModel):
    """Feed message skipped during reconciliation."""
    consensus_timestamp: Optional[str] = None
    error: str


class ReconcileResult(BaseModel):
    new_events: list[Event] = Field(default_factory=list)
    updated_cursor: Optional[str] = None
    fetch_cursor: Optional[str] = Field(
        None, description="Newest consensus timestamp seen, including rejected messages"
    )
    rejected: list[DecodeFailure] = Field(default_factory=list)
    late_arrival: bool = Field(
        False, description="A net-new event sorts before the previous cursor"
    )


class EventView(BaseModel):
    """Event as shown to readers of the replay service."""
    index: int
    consensus_timestamp: Optional[str]
    type: str
    hash: str
    prev_hash: Optional[str] = None
    primary: str = ""
    secondary: str = ""
    detail: str = ""
    body: dict[str, Any] = Field(default_factory=dict)
