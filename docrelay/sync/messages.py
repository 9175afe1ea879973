"""Wire messages exchanged over the relay socket.

Each frame is one JSON object tagged by `type` with an optional `payload`.
"""

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import ParseError


class MessageType(str, Enum):
    """Message discriminators."""

    HELLO = "hello"
    FULL = "full"
    PING = "ping"
    DEBUG_ECHO = "debug_echo"
    PERSISTED = "persisted"


@dataclass
class Message:
    """A single wire message."""

    type: str
    payload: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.payload is not None:
            data["payload"] = self.payload
        return data

    def encode(self) -> str:
        """Serialize to a text frame."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)


def parse_message(text: str | bytes) -> Message:
    """Parse a text frame into a Message.

    Raises:
        ParseError: If the frame is not a JSON object.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"frame is not UTF-8: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}") from e
    except RecursionError as e:
        raise ParseError("frame nests too deeply") from e

    if not isinstance(data, dict):
        raise ParseError("message must be a JSON object")

    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        msg_type = "" if msg_type is None else json.dumps(msg_type)
    return Message(type=msg_type, payload=data.get("payload"))


def full_message(serialized: str) -> Message:
    return Message(MessageType.FULL.value, serialized)


def ping_message(now: float | None = None) -> Message:
    """Ping carrying the server time in epoch milliseconds."""
    now = time.time() if now is None else now
    return Message(MessageType.PING.value, int(now * 1000))


def debug_echo_message(frame_bytes: int) -> Message:
    return Message(MessageType.DEBUG_ECHO.value, frame_bytes)


def persisted_message(summary: str, at: datetime | None = None) -> Message:
    """Acknowledgment sent to the sender after a merge was persisted."""
    at = at or datetime.now(timezone.utc)
    return Message(
        MessageType.PERSISTED.value,
        {"at": at.isoformat(), "summary": summary},
    )
