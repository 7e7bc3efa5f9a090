"""Local append-only topic backed by a JSONL file."""
import base64
import json
import time
from pathlib import Path
from typing import Optional

import structlog

from ..core.errors import PublishError
from ..core.events import Event, encode_message, parse_consensus_timestamp
from .models import Receipt, TopicMessage

logger = structlog.get_logger()


class LocalTopic:
    """Single topic stand-in for the ledger, also readable in mirror format.

    Assigns sequence numbers and strictly increasing consensus timestamps.
    """

    def __init__(self, data_dir: Path, topic_id: str):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.topic_id = topic_id
        self.file_path = self.data_dir / f"{topic_id}.jsonl"
        self._messages: list[TopicMessage] = self._load()
        logger.info(
            "local_topic_initialized",
            topic_id=topic_id,
            file=str(self.file_path),
            messages=len(self._messages),
        )

    def _load(self) -> list[TopicMessage]:
        if not self.file_path.exists():
            return []

        messages = []
        with open(self.file_path, "r") as f:
            for line_num, line in enumerate(f, 1):
                try:
                    messages.append(TopicMessage(**json.loads(line)))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning(
                        "invalid_jsonl_line",
                        topic_id=self.topic_id,
                        line_num=line_num,
                        error=str(e),
                    )
                    continue
        return messages

    def _next_consensus_timestamp(self) -> str:
        now = time.time_ns()
        seconds, nanos = divmod(now, 1_000_000_000)
        if self._messages:
            last = parse_consensus_timestamp(self._messages[-1].consensus_timestamp)
            if (seconds, nanos) <= last:
                seconds, nanos = divmod(last[0] * 1_000_000_000 + last[1] + 1, 1_000_000_000)
        return f"{seconds}.{nanos:09d}"

    def append_message(self, body: bytes) -> Receipt:
        """Append raw message bytes and return the assigned order keys."""
        message = TopicMessage(
            consensus_timestamp=self._next_consensus_timestamp(),
            sequence_number=len(self._messages) + 1,
            topic_id=self.topic_id,
            message=base64.b64encode(body).decode("ascii"),
        )

        try:
            with open(self.file_path, "a") as f:
                f.write(message.model_dump_json() + "\n")
                f.flush()
        except OSError as e:
            raise PublishError(f"Local topic write failed: {e}") from e

        self._messages.append(message)
        logger.info(
            "message_appended",
            topic_id=self.topic_id,
            sequence_number=message.sequence_number,
            consensus_timestamp=message.consensus_timestamp,
        )
        return Receipt(
            sequence_number=message.sequence_number,
            consensus_timestamp=message.consensus_timestamp,
        )

    async def submit(self, topic_id: str, event: Event) -> Receipt:
        if topic_id != self.topic_id:
            raise PublishError(f"Unknown topic {topic_id}", status_code=404)
        return self.append_message(encode_message(event))

    def get_messages(
        self,
        after: Optional[str] = None,
        limit: Optional[int] = None,
        inclusive: bool = False,
    ) -> list[TopicMessage]:
        """Messages after a consensus timestamp, oldest first."""
        messages = self._messages
        if after is not None:
            bound = parse_consensus_timestamp(after)
            if inclusive:
                messages = [
                    m for m in messages
                    if parse_consensus_timestamp(m.consensus_timestamp) >= bound
                ]
            else:
                messages = [
                    m for m in messages
                    if parse_consensus_timestamp(m.consensus_timestamp) > bound
                ]
        if limit is not None:
            messages = messages[:limit]
        return list(messages)

    def __len__(self) -> int:
        return len(self._messages)
