"""Per-connection synchronization protocol.

Protocol summary:
- On connect the server pushes its full state.
- `hello` asks for the full state again.
- `full` carries a client's full state. The server merges it, persists,
  acknowledges the sender with `persisted`, then broadcasts the merged
  state to every open connection, the sender included.
- Anything else from a client is logged and ignored.
"""

import asyncio
import logging
from typing import Any

from fastapi import WebSocket

from ..errors import DeserializeError, ParseError, SendError
from .messages import (
    MessageType,
    debug_echo_message,
    full_message,
    parse_message,
    persisted_message,
)
from .pinger import DEFAULT_PING_INTERVAL, LivenessPinger
from .registry import Connection, ConnectionRegistry
from .store import DocumentStore

logger = logging.getLogger(__name__)


class SyncSessionHandler:
    """Drives the hello/full/persisted protocol for all connections.

    The merge, persist, ack and broadcast sequence runs under one lock, so
    merges from different connections never overlap and each is fully
    broadcast before the next starts.
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: ConnectionRegistry | None = None,
        ping_interval_seconds: float = DEFAULT_PING_INTERVAL,
        debug_echo: bool = True,
    ):
        """Initialize the handler.

        Args:
            store: Store owning the shared document.
            registry: Registry of open connections.
            ping_interval_seconds: Interval between liveness pings.
            debug_echo: Reply to every frame with its byte length.
        """
        self.store = store
        self.registry = registry or ConnectionRegistry()
        self.ping_interval = ping_interval_seconds
        self.debug_echo = debug_echo
        self._sync_lock = asyncio.Lock()

    # ==================== Lifecycle ====================

    async def serve(self, websocket: WebSocket) -> None:
        """Run one WebSocket session until the client goes away."""
        await websocket.accept()
        connection = Connection(self.registry.next_id(), websocket)
        try:
            await self.on_connect(connection)
            while True:
                event = await websocket.receive()
                if event["type"] == "websocket.disconnect":
                    break
                text = event.get("text")
                if text is None:
                    text = (event.get("bytes") or b"").decode("utf-8", errors="replace")
                await self.on_message(connection, text)
        finally:
            self.on_disconnect(connection)

    async def on_connect(self, connection: Connection) -> None:
        self.registry.register(connection)
        logger.info(
            f"{connection.label} CONNECTED (total: {len(self.registry)})",
            extra=connection.log_context,
        )

        try:
            length = await connection.send(full_message(self.store.serialize()))
            logger.info(
                f"[->{connection.label}] initial FULL sent; len={length}; "
                f"summary={self.store.summary()!r}",
                extra=connection.log_context,
            )
        except SendError as e:
            logger.error(
                f"[->{connection.label}] initial send failed: {e}", extra=connection.log_context
            )

        connection.pinger = LivenessPinger(connection, self.ping_interval)
        connection.pinger.start()

    def on_disconnect(self, connection: Connection) -> None:
        # No awaits here: this runs from a finally block that may be cancelled
        connection.mark_closed()
        if connection.pinger:
            connection.pinger.cancel()
            connection.pinger = None
        self.registry.unregister(connection)
        logger.info(
            f"{connection.label} DISCONNECTED (total: {len(self.registry)})",
            extra=connection.log_context,
        )

    # ==================== Messages ====================

    async def on_message(self, connection: Connection, text: str) -> None:
        """Handle one inbound text frame."""
        logger.debug(
            f"[recv {connection.label}] len={len(text)}: {text[:120]!r}",
            extra=connection.log_context,
        )

        if self.debug_echo:
            try:
                await connection.send(debug_echo_message(len(text.encode("utf-8"))))
            except SendError as e:
                logger.error(
                    f"[debug_echo->{connection.label}] failed: {e}", extra=connection.log_context
                )

        try:
            message = parse_message(text)
        except ParseError as e:
            logger.error(f"[recv {connection.label}] {e}", extra=connection.log_context)
            return

        if message.type == MessageType.HELLO.value:
            await self._handle_hello(connection)
        elif message.type == MessageType.FULL.value:
            await self._handle_full(connection, message.payload)
        else:
            logger.info(
                f"[{connection.label}] ignoring msg type: {message.type!r}",
                extra=connection.log_context,
            )

    async def _handle_hello(self, connection: Connection) -> None:
        try:
            await connection.send(full_message(self.store.serialize()))
            logger.info(
                f"[hello->{connection.label}] FULL sent on hello; "
                f"summary={self.store.summary()!r}",
                extra=connection.log_context,
            )
        except SendError as e:
            logger.error(f"[hello->{connection.label}] failed: {e}", extra=connection.log_context)

    async def _handle_full(self, connection: Connection, payload: Any) -> None:
        async with self._sync_lock:
            before = self.store.summary()
            try:
                self.store.merge_external(payload)
            except DeserializeError as e:
                logger.error(
                    f"[recv {connection.label}] cannot load full state: {e}",
                    extra=connection.log_context,
                )
                return
            logger.info(
                f"[merge {connection.label}] before={before!r} -> after={self.store.summary()!r}",
                extra=connection.log_context,
            )

            self.store.persist()

            try:
                await connection.send(persisted_message(self.store.summary()))
                logger.info(f"[ack->{connection.label}] persisted OK", extra=connection.log_context)
            except SendError as e:
                logger.error(f"[ack->{connection.label}] failed: {e}", extra=connection.log_context)

            outgoing = full_message(self.store.serialize())
            sent = await self.registry.broadcast(outgoing)
            logger.info(
                f"[broadcast] sent to {sent} clients; summary={self.store.summary()!r}"
            )
