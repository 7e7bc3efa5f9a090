"""Data models for ledger service."""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.errors import EventValidationError
from ..core.events import validate_metrics


class ApplicationCreate(BaseModel):
    """Request model for creating a loan application."""
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={"example": {"applicationId": "A1", "amount": 500}},
    )

    application_id: str = Field(..., alias="applicationId", min_length=1)
    amount: float = Field(..., allow_inf_nan=False)


class DecisionOverride(BaseModel):
    """Request model for overriding an application decision."""
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={"example": {"applicationId": "A1", "reason": "fraud"}},
    )

    application_id: str = Field(..., alias="applicationId", min_length=1)
    reason: str = Field(..., min_length=1)


class AIVersionRegister(BaseModel):
    """Request model for registering a model version."""
    model_config = ConfigDict(
        protected_namespaces=(),
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "modelId": "credit-risk",
                "version": "1.4.0",
                "repoUrl": "https://git.example.com/ml/credit-risk",
                "artifactHash": "sha256:9f2c...",
                "description": "Retrained on Q3 data",
            }
        },
    )

    model_id: str = Field(..., alias="modelId", min_length=1)
    version: str = Field(..., min_length=1)
    repo_url: str = Field(..., alias="repoUrl", min_length=1)
    artifact_hash: str = Field(..., alias="artifactHash", min_length=1)
    description: str = ""


class AIEvaluationCreate(BaseModel):
    """Request model for logging a model evaluation."""
    model_config = ConfigDict(
        protected_namespaces=(),
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "modelId": "credit-risk",
                "version": "1.4.0",
                "evalId": "eval-2024-10",
                "dataset": "holdout-q3",
                "metrics": {"accuracy": 0.912, "f1": 0.88},
                "passed": True,
                "notes": "",
            }
        },
    )

    model_id: str = Field(..., alias="modelId", min_length=1)
    version: str = Field(..., min_length=1)
    eval_id: str = Field(..., alias="evalId", min_length=1)
    dataset: str = Field(..., min_length=1)
    metrics: Any
    passed: bool = False
    notes: str = ""

    @field_validator("metrics")
    @classmethod
    def metrics_flat_numeric(cls, v):
        try:
            return validate_metrics(v)
        except EventValidationError as e:
            raise ValueError(str(e)) from e


class Receipt(BaseModel):
    """Ledger acknowledgement for an accepted message."""
    sequence_number: int
    consensus_timestamp: str


class SubmittedEvent(BaseModel):
    """Response model for an accepted event."""
    model_config = ConfigDict(populate_by_name=True)

    event: dict[str, Any]
    hash: str
    sequence_number: int = Field(..., alias="sequenceNumber")
    consensus_timestamp: str = Field(..., alias="consensusTimestamp")


class TopicMessage(BaseModel):
    """Message as stored in the local topic and served in mirror format."""
    consensus_timestamp: str
    sequence_number: int
    topic_id: str
    message: str = Field(..., description="Base64 message body")


class MessagesPage(BaseModel):
    messages: list[TopicMessage]
    links: dict[str, Optional[str]] = Field(default_factory=dict)
