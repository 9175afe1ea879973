"""Open client connections and broadcast fan-out."""

import itertools
import logging
from typing import TYPE_CHECKING, Any, Iterator

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ..errors import SendError
from .messages import Message

if TYPE_CHECKING:
    from .pinger import LivenessPinger

logger = logging.getLogger(__name__)


class Connection:
    """One client session over a WebSocket."""

    def __init__(self, conn_id: int, websocket: WebSocket):
        self.id = conn_id
        self.websocket = websocket
        self.pinger: "LivenessPinger | None" = None
        self._closed = False

    @property
    def label(self) -> str:
        return f"client#{self.id}"

    @property
    def log_context(self) -> dict[str, str]:
        """`extra` for log records about this connection."""
        return {"client": self.label}

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send(self, message: Message) -> int:
        """Send a message as a text frame.

        Returns:
            Length of the encoded frame in characters.

        Raises:
            SendError: If the connection is closed or the write fails.
        """
        if not self.is_open:
            raise SendError(f"{self.label} is closed")

        frame = message.encode()
        try:
            await self.websocket.send_text(frame)
        except (RuntimeError, OSError, WebSocketDisconnect) as e:
            raise SendError(f"send to {self.label} failed: {e}") from e
        return len(frame)

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"Connection(id={self.id}, {state})"


class ConnectionRegistry:
    """Map of live connections keyed by id.

    Ids are assigned from a monotonically increasing counter and never
    reused within a process.
    """

    def __init__(self) -> None:
        self._connections: dict[int, Connection] = {}
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def register(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        logger.debug(f"{connection.label} registered (total: {len(self)})")

    def unregister(self, connection: Connection) -> None:
        if self._connections.pop(connection.id, None) is not None:
            logger.debug(f"{connection.label} unregistered (total: {len(self)})")

    def get(self, conn_id: int) -> Connection | None:
        return self._connections.get(conn_id)

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    async def broadcast(self, message: Message) -> int:
        """Send a message to every open connection.

        Closed connections are skipped and a failed send is logged without
        stopping delivery to the rest.

        Returns:
            Number of connections the message was delivered to.
        """
        sent = 0
        for connection in self:
            if not connection.is_open:
                logger.debug(f"Broadcast skipping closed {connection.label}")
                continue
            try:
                await connection.send(message)
            except SendError as e:
                logger.warning(f"Broadcast: {e}")
                continue
            sent += 1
        return sent

    def get_stats(self) -> dict[str, Any]:
        connections = list(self)
        return {
            "connections": len(connections),
            "open_connections": sum(1 for c in connections if c.is_open),
        }
