"""Shared fixtures for relay tests."""

import json

import pytest
from fastapi.websockets import WebSocketState

from docrelay.sync import Connection


class FakeWebSocket:
    """Records frames sent through a Connection."""

    def __init__(self, journal: list | None = None, fail: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict] = []
        self.fail = fail
        self.inbox: list[str] = []
        self._journal = journal

    async def accept(self) -> None:
        pass

    async def receive(self) -> dict:
        if not self.inbox:
            return {"type": "websocket.disconnect", "code": 1000}
        return {"type": "websocket.receive", "text": self.inbox.pop(0)}

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        message = json.loads(text)
        self.sent.append(message)
        if self._journal is not None:
            self._journal.append((self, message["type"]))

    def disconnect(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


@pytest.fixture
def journal():
    """Cross-connection record of (websocket, type) in send order."""
    return []


@pytest.fixture
def make_connection(journal):
    """Factory for connections backed by FakeWebSocket."""
    counter = iter(range(1, 1000))

    def _make(fail: bool = False) -> Connection:
        return Connection(next(counter), FakeWebSocket(journal, fail=fail))

    return _make
