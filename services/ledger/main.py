"""Ledger service - Hash-chained domain event publishing."""
import os
from pathlib import Path
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..core.errors import (
    CanonicalizationError,
    EventValidationError,
    PublishError,
    TransitionRejectedError,
)
from ..core.mirror import MirrorClient
from ..core.models import AnomalyKind
from ..core.reconciler import FeedReconciler
from .commands import CommandService
from .models import (
    AIEvaluationCreate,
    AIVersionRegister,
    ApplicationCreate,
    DecisionOverride,
    MessagesPage,
    SubmittedEvent,
)
from .publisher import HttpPublisher
from .storage import LocalTopic

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ]
)

logger = structlog.get_logger()

app = FastAPI(
    title="Audit Ledger - Ledger Service",
    description="Hash-chained loan and model lifecycle events",
    version="0.1.0",
)

# Configuration
DATA_DIR = Path(os.getenv("DATA_DIR", "/data/ledger"))
TOPIC_ID = os.getenv("TOPIC_ID", "local-topic").strip()
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "local")
LEDGER_GATEWAY_URL = os.getenv("LEDGER_GATEWAY_URL", "http://ledger-gateway:8080")
MIRROR_URL = os.getenv("MIRROR_URL", "https://testnet.mirrornode.hedera.com")
BOOTSTRAP_FROM_MIRROR = os.getenv("BOOTSTRAP_FROM_MIRROR", "true").lower() == "true"
BOOTSTRAP_MAX_PAGES = int(os.getenv("BOOTSTRAP_MAX_PAGES", "1000"))

# Initialize publisher
local_topic: Optional[LocalTopic] = None
gateway_client: Optional[httpx.AsyncClient] = None

if LEDGER_BACKEND == "local":
    local_topic = LocalTopic(DATA_DIR, TOPIC_ID)
    publisher = local_topic
else:
    gateway_client = httpx.AsyncClient(base_url=LEDGER_GATEWAY_URL, timeout=30.0)
    publisher = HttpPublisher(gateway_client)

commands = CommandService(publisher, TOPIC_ID)


async def load_topic_messages() -> list[dict]:
    """All messages currently on the topic, in mirror format."""
    if local_topic is not None:
        return [m.model_dump() for m in local_topic.get_messages()]

    async with httpx.AsyncClient(base_url=MIRROR_URL, timeout=30.0) as client:
        mirror = MirrorClient(client)
        return await mirror.fetch_since(TOPIC_ID, max_pages=BOOTSTRAP_MAX_PAGES)


@app.on_event("startup")
async def startup_event():
    """Rebuild command-side state from the topic."""
    if local_topic is None and not BOOTSTRAP_FROM_MIRROR:
        logger.info("ledger_service_started", topic_id=TOPIC_ID, bootstrapped=False)
        return

    try:
        reconciler = FeedReconciler()
        reconciler.reconcile(await load_topic_messages())
        commands.restore(reconciler.events)
    except Exception as e:
        logger.warning("bootstrap_failed", topic_id=TOPIC_ID, error=str(e))

    logger.info("ledger_service_started", topic_id=TOPIC_ID, backend=LEDGER_BACKEND)


@app.on_event("shutdown")
async def shutdown_event():
    if gateway_client is not None:
        await gateway_client.aclose()


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Missing or malformed command fields are a client error."""
    logger.warning("request_invalid", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


async def run_command(name: str, command) -> SubmittedEvent:
    """Await a command and map ledger errors to HTTP errors."""
    try:
        return await command
    except TransitionRejectedError as e:
        status_code = 404 if e.kind == AnomalyKind.ORPHANED_OVERRIDE.value else 409
        raise HTTPException(status_code=status_code, detail=str(e))
    except (EventValidationError, CanonicalizationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PublishError as e:
        logger.error(f"{name}_publish_failed", error=str(e), status_code=e.status_code)
        raise HTTPException(status_code=502, detail=str(e))


@app.post("/api/application", response_model=SubmittedEvent)
async def create_application(request: ApplicationCreate):
    """Record a new loan application."""
    return await run_command(
        "create_application",
        commands.create_application(request.application_id, request.amount),
    )


@app.post("/api/override", response_model=SubmittedEvent)
async def override_decision(request: DecisionOverride):
    """Override the decision on an existing application."""
    return await run_command(
        "override",
        commands.override_decision(request.application_id, request.reason),
    )


@app.post("/api/ai/version", response_model=SubmittedEvent)
async def register_ai_version(request: AIVersionRegister):
    """Register a model version."""
    return await run_command(
        "ai_version",
        commands.register_ai_version(
            request.model_id,
            request.version,
            request.repo_url,
            request.artifact_hash,
            request.description,
        ),
    )


@app.post("/api/ai/eval", response_model=SubmittedEvent)
async def log_ai_evaluation(request: AIEvaluationCreate):
    """Log an evaluation of a model version."""
    return await run_command(
        "ai_eval",
        commands.log_ai_evaluation(
            request.model_id,
            request.version,
            request.eval_id,
            request.dataset,
            request.metrics,
            request.passed,
            request.notes,
        ),
    )


@app.get("/api/topic")
def get_topic():
    return {"topicId": TOPIC_ID}


@app.get("/api/v1/topics/{topic_id}/messages", response_model=MessagesPage)
def list_topic_messages(
    topic_id: str,
    timestamp: Optional[str] = None,
    limit: int = Query(25, ge=1, le=100),
    order: str = "asc",
):
    """Mirror-format view of the local topic."""
    if local_topic is None or topic_id != local_topic.topic_id:
        raise HTTPException(status_code=404, detail=f"Topic {topic_id} not found")
    if order != "asc":
        raise HTTPException(status_code=400, detail="Only ascending order is supported")

    after, inclusive = None, False
    if timestamp:
        operator, _, value = timestamp.partition(":")
        if operator not in ("gt", "gte") or not value:
            raise HTTPException(status_code=400, detail=f"Unsupported timestamp filter: {timestamp}")
        after, inclusive = value, operator == "gte"

    try:
        messages = local_topic.get_messages(after=after, limit=limit, inclusive=inclusive)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    next_link = None
    if len(messages) == limit:
        next_link = (
            f"/api/v1/topics/{topic_id}/messages?order=asc&limit={limit}"
            f"&timestamp=gt:{messages[-1].consensus_timestamp}"
        )
    return MessagesPage(messages=messages, links={"next": next_link})


@app.get("/health")
def health():
    """Health check endpoint."""
    try:
        if local_topic is not None and not DATA_DIR.exists():
            raise Exception("Data directory not found")

        return {
            "status": "healthy",
            "service": "ledger",
            "ok": True,
            "topicId": TOPIC_ID,
            "backend": LEDGER_BACKEND,
            "applications": len(commands.state.applications),
        }
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": str(e)}
        )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
