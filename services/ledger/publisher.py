"""Publishers that put events on a ledger topic."""
import base64
from typing import Protocol

import httpx
import structlog

from ..core.errors import PublishError
from ..core.events import Event, encode_message
from .models import Receipt

logger = structlog.get_logger()


class Publisher(Protocol):
    async def submit(self, topic_id: str, event: Event) -> Receipt:
        ...


class HttpPublisher:
    """Submits messages through a ledger gateway's REST API."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def submit(self, topic_id: str, event: Event) -> Receipt:
        body = {"message": base64.b64encode(encode_message(event)).decode("ascii")}
        try:
            response = await self.client.post(f"/topics/{topic_id}/messages", json=body)
        except httpx.HTTPError as e:
            logger.error("publish_transport_failed", topic_id=topic_id, error=str(e))
            raise PublishError(f"Ledger gateway unreachable: {e}") from e

        if not response.is_success:
            logger.error(
                "publish_rejected",
                topic_id=topic_id,
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise PublishError(
                f"Ledger gateway rejected message with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            return Receipt(
                sequence_number=data["sequence_number"],
                consensus_timestamp=str(data["consensus_timestamp"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise PublishError(f"Malformed ledger receipt: {e}") from e
