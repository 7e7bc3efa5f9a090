"""Pytest configuration and shared fixtures."""

import base64
import os
import tempfile

import pytest

# Service modules read configuration at import time
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="ledger-test-"))
os.environ.setdefault("TOPIC_ID", "0.0.1234")
os.environ.setdefault("LEDGER_BACKEND", "local")
os.environ.setdefault("MIRROR_URL", "http://mirror.test")

from services.core.events import Event, encode_message  # noqa: E402


def mirror_message(event: Event, consensus_timestamp: str) -> dict:
    """Raw mirror record carrying an encoded event."""
    return {
        "consensus_timestamp": consensus_timestamp,
        "message": base64.b64encode(encode_message(event)).decode("ascii"),
        "topic_id": "0.0.1234",
    }


@pytest.fixture
def created_event():
    return Event(
        type="ApplicationCreated",
        payload={"applicationId": "A1", "amount": 500, "status": "CREATED"},
        timestamp=1700000000000,
    )


@pytest.fixture
def override_event():
    return Event(
        type="DecisionOverridden",
        payload={"applicationId": "A1", "reason": "fraud", "newStatus": "OVERRIDDEN"},
        timestamp=1700000001000,
    )


class ScriptedMirror:
    """Mirror stand-in returning queued responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.cursors = []

    async def fetch_since(self, topic_id, since_cursor=None, limit=25, max_pages=4):
        self.cursors.append(since_cursor)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response
