"""Full-state synchronization for the shared document.

Clients push complete document states; the server merges them into its
authoritative copy, persists the result and rebroadcasts it so every
replica converges.
"""

from .document import Document, LWWMapStrategy, MergeStrategy, Register, empty_shape
from .messages import Message, MessageType, parse_message
from .persistence import SnapshotPersistence
from .pinger import LivenessPinger
from .registry import Connection, ConnectionRegistry
from .session import SyncSessionHandler
from .store import DocumentStore

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "Document",
    "DocumentStore",
    "LWWMapStrategy",
    "LivenessPinger",
    "MergeStrategy",
    "Message",
    "MessageType",
    "Register",
    "SnapshotPersistence",
    "SyncSessionHandler",
    "empty_shape",
    "parse_message",
]
