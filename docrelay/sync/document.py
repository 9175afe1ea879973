"""Mergeable document model and merge strategies.

The relay only talks to documents through a MergeStrategy. The default,
LWWMapStrategy, is a last-writer-wins map keyed by top-level field and
ordered by Lamport timestamps, so replicas converge regardless of the order
in which their states are merged.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from ..errors import DeserializeError

# Node id stamped on registers imported from a seed structure
SEED_NODE = "seed"

# Deepest list/object nesting accepted inside a register value
MAX_VALUE_DEPTH = 64

EMPTY_SHAPE: dict[str, Any] = {
    "pages": [],
    "tiles": [],
    "merges": [],
    "actions": [],
    "databases": [],
    "connections": [],
    "styles": {"theme": {}},
}


def empty_shape() -> dict[str, Any]:
    """Return a fresh copy of the empty document skeleton."""
    return copy_value(EMPTY_SHAPE)


def canonical_json(value: Any) -> str:
    """Deterministic JSON text for a value."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def copy_value(value: Any) -> Any:
    """Detached copy of a JSON value."""
    return json.loads(json.dumps(value))


def nesting_depth(value: Any) -> int:
    """Container nesting depth of a JSON value, computed without recursion.

    Scalars have depth 0, `[]` and `{}` depth 1.
    """
    deepest = 0
    stack = [(value, 1)]
    while stack:
        item, level = stack.pop()
        if isinstance(item, dict):
            children = item.values()
        elif isinstance(item, list):
            children = item
        else:
            continue
        deepest = max(deepest, level)
        stack.extend((child, level + 1) for child in children)
    return deepest


def check_depth(key: str, value: Any) -> None:
    """Raise DeserializeError if `value` nests deeper than MAX_VALUE_DEPTH."""
    if nesting_depth(value) > MAX_VALUE_DEPTH:
        raise DeserializeError(f"value of {key!r} nests deeper than {MAX_VALUE_DEPTH}")


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class Register:
    """A single last-writer-wins cell."""

    value: Any
    ts: int
    node: str

    def sort_key(self) -> tuple[int, str, str]:
        # Value text breaks ties between equal stamps so the order is total
        return (self.ts, self.node, canonical_json(self.value))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"value": self.value, "ts": self.ts, "node": self.node}

    @classmethod
    def from_dict(cls, data: Any) -> "Register":
        """Create from dictionary, validating the shape."""
        if not isinstance(data, dict) or "value" not in data:
            raise DeserializeError("register must be an object with a value")
        ts = data.get("ts")
        node = data.get("node")
        if isinstance(ts, bool) or not isinstance(ts, int) or ts < 0:
            raise DeserializeError(f"invalid register timestamp: {ts!r}")
        if not isinstance(node, str):
            raise DeserializeError(f"invalid register node: {node!r}")
        return cls(value=data["value"], ts=ts, node=node)


@dataclass(frozen=True)
class Document:
    """Immutable map of top-level keys to registers."""

    entries: dict[str, Register] = field(default_factory=dict)

    @property
    def clock(self) -> int:
        """Highest Lamport timestamp in the document."""
        return max((r.ts for r in self.entries.values()), default=0)

    def value(self) -> dict[str, Any]:
        """Plain JSON projection of the document."""
        return {key: copy_value(self.entries[key].value) for key in sorted(self.entries)}

    def get(self, key: str, default: Any = None) -> Any:
        register = self.entries.get(key)
        return copy_value(register.value) if register else default

    def set(self, key: str, value: Any, node: str) -> "Document":
        """Return a new document with `key` written by `node`.

        The write is stamped one past the current clock so it wins over
        everything this replica has seen.
        """
        entries = dict(self.entries)
        entries[key] = Register(value=copy_value(value), ts=self.clock + 1, node=node)
        return Document(entries)


class MergeStrategy(ABC):
    """Pluggable convergent merge over a document encoding.

    `merge` must be commutative, associative and idempotent.
    """

    @abstractmethod
    def from_seed(self, seed: dict[str, Any]) -> Any:
        """Build a document from a plain seed structure."""
        pass

    @abstractmethod
    def to_seed(self, document: Any) -> dict[str, Any]:
        """Project a document to its plain seed structure."""
        pass

    @abstractmethod
    def serialize(self, document: Any) -> str:
        """Encode a document as transferable text."""
        pass

    @abstractmethod
    def deserialize(self, text: Any) -> Any:
        """Decode transferable text, raising DeserializeError if malformed."""
        pass

    @abstractmethod
    def merge(self, current: Any, incoming: Any) -> Any:
        """Combine two documents into one incorporating both."""
        pass


class LWWMapStrategy(MergeStrategy):
    """Last-writer-wins map merge using Lamport timestamps.

    Seeded registers are stamped with `seed_clock()` (epoch milliseconds by
    default), so writes made after a restart outrank registers a client kept
    from before it.
    """

    def __init__(self, seed_clock: Callable[[], int] = epoch_millis):
        self._seed_clock = seed_clock

    def from_seed(self, seed: dict[str, Any]) -> Document:
        if not isinstance(seed, dict):
            raise DeserializeError("seed must be a JSON object")
        ts = self._seed_clock()
        entries = {}
        for key, value in seed.items():
            check_depth(key, value)
            entries[str(key)] = Register(value=copy_value(value), ts=ts, node=SEED_NODE)
        return Document(entries)

    def to_seed(self, document: Document) -> dict[str, Any]:
        return document.value()

    def serialize(self, document: Document) -> str:
        return canonical_json(
            {"entries": {key: r.to_dict() for key, r in document.entries.items()}}
        )

    def deserialize(self, text: Any) -> Document:
        if not isinstance(text, str):
            raise DeserializeError(f"expected string payload, got {type(text).__name__}")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DeserializeError(f"payload is not JSON: {e}") from e
        except RecursionError as e:
            raise DeserializeError("payload nests too deeply") from e

        if not isinstance(data, dict) or not isinstance(data.get("entries"), dict):
            raise DeserializeError("payload must be an object with an entries map")

        entries = {}
        for key, raw in data["entries"].items():
            register = Register.from_dict(raw)
            check_depth(key, register.value)
            entries[key] = register
        return Document(entries)

    def merge(self, current: Document, incoming: Document) -> Document:
        merged: dict[str, Register] = {}
        for key in current.entries.keys() | incoming.entries.keys():
            ours = current.entries.get(key)
            theirs = incoming.entries.get(key)
            if ours is None or theirs is None:
                merged[key] = ours or theirs
            else:
                merged[key] = max(ours, theirs, key=Register.sort_key)
        return Document(merged)
