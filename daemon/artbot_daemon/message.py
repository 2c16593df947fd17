"""Chat message model.

Messages arrive from the chat-platform bridge as JSON on
``{prefix}/channel/{channel_id}/message``.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any


class MessageError(ValueError):
    """Raised when message validation fails."""


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """An inbound chat message.

    Required fields: id, channel_id, content, ts. ``author`` is optional.
    """

    id: str
    channel_id: str
    content: str
    ts: int
    author: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise MessageError("id is required")
        if not self.channel_id:
            raise MessageError("channel_id is required")
        if not isinstance(self.content, str):
            raise MessageError("content must be a string")
        if not isinstance(self.ts, int) or self.ts <= 0:
            raise MessageError("ts must be a positive integer")

    def to_json(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict, omitting a None author."""
        d: dict[str, Any] = {
            "id": self.id,
            "channel_id": self.channel_id,
            "content": self.content,
            "ts": self.ts,
        }
        if self.author is not None:
            d["author"] = self.author
        return d

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ChatMessage:
        """Deserialize from a JSON-compatible dict.

        Raises MessageError on missing required fields or invalid data.
        """
        if not isinstance(data, dict):
            raise MessageError("message must be a JSON object")
        required = ("id", "channel_id", "content", "ts")
        missing = [f for f in required if f not in data]
        if missing:
            raise MessageError(f"missing required fields: {missing}")

        return cls(
            id=data["id"],
            channel_id=data["channel_id"],
            content=data["content"],
            ts=data["ts"],
            author=data.get("author"),
        )


def create_message(*, channel_id: str, content: str, author: str | None = None) -> ChatMessage:
    """Create a new message with auto-generated id and timestamp."""
    return ChatMessage(
        id=str(uuid.uuid4()),
        channel_id=channel_id,
        content=content,
        ts=int(time.time()),
        author=author,
    )
