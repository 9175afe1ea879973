"""On-disk snapshot of the shared document.

The snapshot is the plain seed projection of the document, written as
indented JSON. Every write replaces the whole file through a temporary file
and an atomic rename, so readers never see a partial document.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from ..errors import LoadError, PersistError

logger = logging.getLogger(__name__)


class SnapshotPersistence:
    """Reads and writes the JSON snapshot file."""

    def __init__(self, path: str | Path):
        """Initialize snapshot persistence.

        Args:
            path: Location of the snapshot file. Parent directories are
                created on first write.
        """
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> dict[str, Any] | None:
        """Read the snapshot.

        Returns:
            The seed structure, or None if no snapshot exists yet.

        Raises:
            LoadError: If the file cannot be read or is not a JSON object.
        """
        if not self.path.exists():
            return None

        try:
            with self.path.open("r", encoding="utf-8") as fp:
                data = json.load(fp)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise LoadError(f"cannot read snapshot {self.path}: {e}") from e
        except RecursionError as e:
            raise LoadError(f"snapshot {self.path} nests too deeply") from e

        if not isinstance(data, dict):
            raise LoadError(f"snapshot {self.path} is not a JSON object")

        return data

    def write(self, seed: dict[str, Any]) -> None:
        """Replace the snapshot with `seed`.

        Raises:
            PersistError: If the file could not be written.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise PersistError(f"cannot prepare snapshot {self.path}: {e}") from e

        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as fp:
                json.dump(seed, fp, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistError(f"cannot write snapshot {self.path}: {e}") from e
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)

        logger.debug(f"Snapshot written to {self.path}")
