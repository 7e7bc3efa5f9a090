"""Ledger service to replay service, in process."""

import asyncio
import uuid

import httpx

from services.core.chain import verify_chains
from services.core.events import Event, encode_message
from services.core.hasher import link_next
from services.core.mirror import MirrorClient
from services.core.models import AnomalyKind, ApplicationStatus
from services.ledger import main as ledger
from services.replay.poller import ReplayLoop


def ledger_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=ledger.app), base_url="http://ledger"
    )


def rogue_override(application_id: str, reason: str, prev: Event) -> Event:
    """Override written straight to the topic, bypassing the command guard."""
    return Event(
        type="DecisionOverridden",
        payload={"applicationId": application_id, "reason": reason, "newStatus": "OVERRIDDEN"},
        timestamp=1700000009000,
        prev_hash=link_next(prev),
    )


def test_create_override_replay():
    """Create A1 for 500, override for fraud, replay shows the override."""
    application_id = f"A1-{uuid.uuid4().hex[:8]}"

    async def run():
        async with ledger_client() as client:
            created = await client.post("/api/application",
                                        json={"applicationId": application_id, "amount": 500})
            overridden = await client.post("/api/override",
                                           json={"applicationId": application_id, "reason": "fraud"})
            assert created.status_code == 200
            assert overridden.status_code == 200

            loop = ReplayLoop(MirrorClient(client), ledger.TOPIC_ID, page_limit=2, max_pages=500)
            await loop.poll_once()
            return loop

    loop = asyncio.run(run())

    application = loop.state.applications[application_id]
    assert application.status == ApplicationStatus.OVERRIDDEN
    assert application.amount == 500
    assert application.last_reason == "fraud"

    report = verify_chains(loop.reconciler.events)[f"application:{application_id}"]
    assert report.valid
    assert report.length == 2


def test_double_override_replayed_as_conflict():
    """A second override on the topic is kept as an anomaly, not applied."""
    application_id = f"A1-{uuid.uuid4().hex[:8]}"

    async def run():
        async with ledger_client() as client:
            await client.post("/api/application", json={"applicationId": application_id, "amount": 500})
            first = (await client.post("/api/override",
                                       json={"applicationId": application_id, "reason": "fraud"})).json()

            rejected = await client.post("/api/override",
                                         json={"applicationId": application_id, "reason": "typo"})
            assert rejected.status_code == 409

            prev = Event.from_wire(first["event"])
            ledger.local_topic.append_message(
                encode_message(rogue_override(application_id, "typo", prev))
            )

            loop = ReplayLoop(MirrorClient(client), ledger.TOPIC_ID, page_limit=5, max_pages=500)
            await loop.poll_once()
            return loop

    loop = asyncio.run(run())

    application = loop.state.applications[application_id]
    assert application.status == ApplicationStatus.OVERRIDDEN
    assert application.last_reason == "fraud"
    conflicts = [a for a in loop.state.anomalies if a.entity == application_id]
    assert [a.kind for a in conflicts] == [AnomalyKind.CONFLICTING_OVERRIDE]


def test_chain_verification_after_replay():
    """Linked events verify; a forged link is reported at its index."""
    application_id = f"A1-{uuid.uuid4().hex[:8]}"

    async def run():
        async with ledger_client() as client:
            await client.post("/api/application", json={"applicationId": application_id, "amount": 500})
            await client.post("/api/override", json={"applicationId": application_id, "reason": "fraud"})

            forged = Event(
                type="DecisionOverridden",
                payload={"applicationId": application_id, "reason": "forged", "newStatus": "OVERRIDDEN"},
                prev_hash="sha256:" + "0" * 64,
            )
            ledger.local_topic.append_message(encode_message(forged))

            loop = ReplayLoop(MirrorClient(client), ledger.TOPIC_ID, page_limit=25, max_pages=500)
            await loop.poll_once()
            return loop

    loop = asyncio.run(run())

    report = verify_chains(loop.reconciler.events)[f"application:{application_id}"]
    assert not report.valid
    assert report.length == 3
    assert report.broken_at_index == 2
