"""Owner of the single authoritative shared document."""

import logging
from pathlib import Path
from typing import Any

from ..errors import DeserializeError, LoadError, PersistError
from .document import LWWMapStrategy, MergeStrategy, empty_shape
from .persistence import SnapshotPersistence

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_PATH = "pages.0.questionRows.0.elements.0.questionText"
MISSING_SUMMARY = "(missing)"


def resolve_path(data: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts and lists.

    Numeric segments index into lists. Raises KeyError if any segment
    does not resolve.
    """
    current = data
    for segment in path.split(".") if path else []:
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise KeyError(segment)
    return current


class DocumentStore:
    """Loads, merges, serializes and persists the shared document.

    Every other component reaches the document through this class; the
    current value is replaced in place by each successful merge.
    """

    def __init__(
        self,
        persistence: SnapshotPersistence | str | Path,
        strategy: MergeStrategy | None = None,
        summary_path: str = DEFAULT_SUMMARY_PATH,
    ):
        """Initialize the store.

        Args:
            persistence: Snapshot persistence, or a path to the snapshot file.
            strategy: Merge strategy backing the document. Defaults to
                LWWMapStrategy.
            summary_path: Dotted path into the seed projection used to
                summarize the document in acks and logs.
        """
        if not isinstance(persistence, SnapshotPersistence):
            persistence = SnapshotPersistence(persistence)
        self.persistence = persistence
        self.strategy = strategy or LWWMapStrategy()
        self.summary_path = summary_path
        self._doc: Any = self.strategy.from_seed(empty_shape())
        self._merge_count = 0
        self._last_persist_ok: bool | None = None

    @property
    def document(self) -> Any:
        """Current document. Read-only; replaced by merges."""
        return self._doc

    def load(self) -> Any:
        """Load the document from the snapshot, seeding it if needed.

        A missing or corrupt snapshot is replaced with the empty shape so
        the file always holds a valid document after startup.
        """
        try:
            seed = self.persistence.read()
        except LoadError as e:
            logger.error(f"Snapshot parse error; starting empty: {e}")
            seed = None
        else:
            if seed is None:
                logger.info(f"No snapshot at {self.persistence.path}; starting empty")

        if seed is not None:
            try:
                self._doc = self.strategy.from_seed(seed)
            except DeserializeError as e:
                logger.error(f"Snapshot parse error; starting empty: {e}")
                seed = None
            else:
                logger.info(f"Loaded snapshot {self.persistence.path}; summary={self.summary()!r}")

        if seed is None:
            self._doc = self.strategy.from_seed(empty_shape())
            self.persist()

        return self._doc

    def serialize(self) -> str:
        """Full-state transferable representation of the current document."""
        return self.strategy.serialize(self._doc)

    def seed(self) -> dict[str, Any]:
        """Plain seed projection of the current document."""
        return self.strategy.to_seed(self._doc)

    def merge_external(self, serialized: Any) -> Any:
        """Merge an external serialized state into the current document.

        Args:
            serialized: Full state as produced by a peer's serialize().

        Returns:
            The merged document, which is now current.

        Raises:
            DeserializeError: If the state is malformed. Nothing is applied.
        """
        incoming = self.strategy.deserialize(serialized)
        self._doc = self.strategy.merge(self._doc, incoming)
        self._merge_count += 1
        return self._doc

    def persist(self) -> bool:
        """Write the current document to the snapshot.

        Failures are logged and swallowed; the in-memory document stays
        authoritative and the next persist reconciles the file.

        Returns:
            True if the snapshot was written.
        """
        try:
            self.persistence.write(self.seed())
        except PersistError as e:
            logger.error(f"Persist failed: {e}")
            self._last_persist_ok = False
            return False

        self._last_persist_ok = True
        logger.info(f"Snapshot saved; summary={self.summary()!r}")
        return True

    def summary(self) -> str:
        """Short application-defined description of the current document."""
        try:
            value = resolve_path(self.seed(), self.summary_path)
        except KeyError:
            return MISSING_SUMMARY
        if value is None:
            return MISSING_SUMMARY
        return value if isinstance(value, str) else str(value)

    def get_stats(self) -> dict[str, Any]:
        """Store statistics for health reporting."""
        return {
            "snapshot_path": str(self.persistence.path),
            "merge_count": self._merge_count,
            "last_persist_ok": self._last_persist_ok,
            "summary": self.summary(),
        }
