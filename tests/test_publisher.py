"""Tests for publishers and the local topic."""

import asyncio
import base64
import json

import httpx
import pytest

from services.core.errors import PublishError
from services.core.events import parse_consensus_timestamp
from services.ledger.publisher import HttpPublisher
from services.ledger.storage import LocalTopic


def test_http_publisher_posts_base64_canonical_body(created_event):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"sequence_number": 7, "consensus_timestamp": "1700000000.1"})

    async def run():
        async with httpx.AsyncClient(base_url="https://gw.test",
                                     transport=httpx.MockTransport(handler)) as client:
            return await HttpPublisher(client).submit("0.0.42", created_event)

    receipt = asyncio.run(run())

    assert receipt.sequence_number == 7
    assert receipt.consensus_timestamp == "1700000000.1"
    assert seen[0].url.path == "/topics/0.0.42/messages"
    body = json.loads(base64.b64decode(json.loads(seen[0].content)["message"]))
    assert body["applicationId"] == "A1"


@pytest.mark.parametrize("response", [
    httpx.Response(401, json={"error": "unauthorized"}),
    httpx.Response(200, json={"unexpected": True}),
])
def test_http_publisher_failures_raise_publish_error(created_event, response):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    async def run():
        async with httpx.AsyncClient(base_url="https://gw.test",
                                     transport=httpx.MockTransport(handler)) as client:
            await HttpPublisher(client).submit("0.0.42", created_event)

    with pytest.raises(PublishError):
        asyncio.run(run())


def test_local_topic_assigns_increasing_order(tmp_path, created_event):
    topic = LocalTopic(tmp_path, "0.0.9")

    first = asyncio.run(topic.submit("0.0.9", created_event))
    second = asyncio.run(topic.submit("0.0.9", created_event))

    assert (first.sequence_number, second.sequence_number) == (1, 2)
    assert parse_consensus_timestamp(second.consensus_timestamp) > parse_consensus_timestamp(
        first.consensus_timestamp
    )


def test_local_topic_reloads_from_disk(tmp_path, created_event):
    topic = LocalTopic(tmp_path, "0.0.9")
    receipt = asyncio.run(topic.submit("0.0.9", created_event))

    reopened = LocalTopic(tmp_path, "0.0.9")

    assert len(reopened) == 1
    assert reopened.get_messages()[0].consensus_timestamp == receipt.consensus_timestamp


def test_local_topic_filters_by_timestamp(tmp_path, created_event):
    topic = LocalTopic(tmp_path, "0.0.9")
    receipts = [asyncio.run(topic.submit("0.0.9", created_event)) for _ in range(3)]

    after_first = topic.get_messages(after=receipts[0].consensus_timestamp)
    from_first = topic.get_messages(after=receipts[0].consensus_timestamp, inclusive=True, limit=2)

    assert [m.sequence_number for m in after_first] == [2, 3]
    assert [m.sequence_number for m in from_first] == [1, 2]


def test_local_topic_rejects_other_topics(tmp_path, created_event):
    topic = LocalTopic(tmp_path, "0.0.9")
    with pytest.raises(PublishError):
        asyncio.run(topic.submit("0.0.10", created_event))
