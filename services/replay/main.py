"""Replay service - Reconstructs derived state from the topic mirror."""
import os
import asyncio
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from ..core.chain import ChainValidation, verify_chains
from ..core.mirror import MirrorClient
from ..core.models import Anomaly, ApplicationState, EventView, ModelVersionState
from ..core.projector import model_key
from .models import PollOutcome, ReplayStatus
from .poller import ReplayLoop

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
    title="Audit Ledger - Replay Service",
    description="Polls the topic mirror and projects current state",
    version="0.1.0",
)

# Configuration
MIRROR_URL = os.getenv("MIRROR_URL", "https://testnet.mirrornode.hedera.com")
TOPIC_ID = os.getenv("TOPIC_ID", "local-topic").strip()
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "4"))
PAGE_LIMIT = int(os.getenv("PAGE_LIMIT", "25"))
MAX_PAGES = int(os.getenv("MAX_PAGES", "4"))

mirror_client = httpx.AsyncClient(base_url=MIRROR_URL, timeout=30.0)
replay_loop = ReplayLoop(
    MirrorClient(mirror_client),
    TOPIC_ID,
    page_limit=PAGE_LIMIT,
    max_pages=MAX_PAGES,
    interval=POLL_INTERVAL,
)
poll_task: Optional[asyncio.Task] = None


@app.on_event("startup")
async def startup_event():
    """Start polling in background."""
    global poll_task
    poll_task = asyncio.create_task(replay_loop.run())
    logger.info("replay_service_started", topic_id=TOPIC_ID, mirror_url=MIRROR_URL)


@app.on_event("shutdown")
async def shutdown_event():
    if poll_task is not None:
        poll_task.cancel()
    await mirror_client.aclose()


@app.get("/replay/status", response_model=ReplayStatus)
def get_status():
    """Get replay status."""
    return replay_loop.status()


@app.post("/replay/poll", response_model=PollOutcome)
async def trigger_poll():
    """Run one poll cycle now, unless one is already in flight."""
    return await replay_loop.poll_once()


@app.get("/replay/events", response_model=list[EventView])
def get_events():
    """Ordered event log."""
    return replay_loop.views()


@app.get("/replay/applications", response_model=list[ApplicationState])
def list_applications():
    return list(replay_loop.state.applications.values())


@app.get("/replay/applications/{application_id}", response_model=ApplicationState)
def get_application(application_id: str):
    application = replay_loop.state.applications.get(application_id)
    if application is None:
        raise HTTPException(status_code=404, detail=f"Application {application_id} not found")
    return application


@app.get("/replay/models")
def list_models():
    return [
        {**entry.model_dump(), "orphaned": entry.orphaned}
        for entry in replay_loop.state.models.values()
    ]


@app.get("/replay/models/{model_id}/{version}")
def get_model_version(model_id: str, version: str):
    entry: Optional[ModelVersionState] = replay_loop.state.models.get(model_key(model_id, version))
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Model {model_id}@{version} not found")
    return {**entry.model_dump(), "orphaned": entry.orphaned}


@app.get("/replay/anomalies", response_model=list[Anomaly])
def get_anomalies():
    """Conflicting or orphaned events seen in the feed."""
    return replay_loop.state.anomalies


@app.get("/replay/chains", response_model=dict[str, ChainValidation])
def get_chains():
    """Hash chain verification per entity."""
    return verify_chains(replay_loop.reconciler.events)


@app.get("/replay/stream")
async def stream_events(type: Optional[str] = None):
    """Server-Sent Events endpoint for newly reconciled events."""
    async def event_generator():
        queue = asyncio.Queue()
        replay_loop.subscribers.append(queue)

        try:
            while True:
                view = await queue.get()

                # Filter by event type if requested
                if type and view.type != type:
                    continue

                yield {
                    "event": "new_event",
                    "data": view.model_dump_json()
                }
        finally:
            replay_loop.subscribers.remove(queue)

    return EventSourceResponse(event_generator())


@app.get("/health")
def health():
    """Health check endpoint."""
    try:
        return {
            "status": "healthy",
            "service": "replay",
            "topic_id": TOPIC_ID,
            "events": len(replay_loop.reconciler),
            "cursor": replay_loop.reconciler.cursor,
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
