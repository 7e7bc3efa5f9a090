"""Mirror feed client."""
from typing import Any, Optional

import httpx
import structlog

from .errors import FeedUnavailableError

logger = structlog.get_logger()


class MirrorClient:
    """Reads topic messages from a mirror node REST API."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def fetch_messages(
        self, topic_id: str, since_cursor: Optional[str] = None, limit: int = 25
    ) -> list[dict[str, Any]]:
        """Fetch one page of messages newer than `since_cursor`."""
        messages, _ = await self._fetch_page(
            f"/api/v1/topics/{topic_id}/messages",
            params=_page_params(since_cursor, limit),
        )
        return messages

    async def fetch_since(
        self,
        topic_id: str,
        since_cursor: Optional[str] = None,
        limit: int = 25,
        max_pages: int = 4,
    ) -> list[dict[str, Any]]:
        """Fetch up to `max_pages` pages, following `links.next`."""
        url: Optional[str] = f"/api/v1/topics/{topic_id}/messages"
        params: Optional[dict] = _page_params(since_cursor, limit)
        collected = []
        pages = 0

        while url and pages < max_pages:
            messages, url = await self._fetch_page(url, params=params)
            # next links already carry the query string
            params = None
            collected.extend(messages)
            pages += 1

        logger.debug("mirror_pages_fetched", topic_id=topic_id, pages=pages, count=len(collected))
        return collected

    async def _fetch_page(
        self, url: str, params: Optional[dict] = None
    ) -> tuple[list[dict[str, Any]], Optional[str]]:
        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise FeedUnavailableError(f"Mirror request failed: {e}") from e

        if not response.is_success:
            raise FeedUnavailableError(
                f"Mirror returned status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise FeedUnavailableError(f"Mirror returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise FeedUnavailableError("Mirror returned an unexpected body")

        messages = body.get("messages") or []
        if not isinstance(messages, list):
            raise FeedUnavailableError("Mirror messages field is not a list")
        next_link = (body.get("links") or {}).get("next")
        return messages, next_link


def _page_params(since_cursor: Optional[str], limit: int) -> dict[str, Any]:
    params = {"order": "asc", "limit": limit}
    if since_cursor:
        params["timestamp"] = f"gt:{since_cursor}"
    return params
