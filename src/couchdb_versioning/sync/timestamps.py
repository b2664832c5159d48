"""Timestamp persistence layer.

Keeps, per document key, the logical timestamp at which this engine last
wrote that document to the store.  Layout is one flat text file per key::

    <root>/<namespace>/<key>.txt

holding the raw ISO 8601 string.  A missing file means the key was never
synchronized.  Entries are created and overwritten but never deleted.

Key design choices:

* **Best-effort writes** -- ``set()`` returns a ``TimestampWarning``
  instead of raising.  A lost entry shows up as a conflict on a later run.
* **Atomic writes** -- the file is written to a temp file in the same
  directory and moved into place with ``os.replace()``.
* **Flat keys** -- ``/`` in a key is percent-encoded so every key maps to
  exactly one file directly under its namespace.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from couchdb_versioning.exceptions import StoreUnavailable, TimestampWarning

logger = logging.getLogger(__name__)

TIMESTAMP_DIR = ".revTimestamps"
DESIGN_NAMESPACE = "_design"


def utc_now() -> str:
    """Current instant as a lexically ordered ISO 8601 string (ms, ``Z``)."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class TimestampStore:
    """Durable key -> logical timestamp mapping for one namespace.

    Args:
        root: Directory holding all namespaces (``<source>/.revTimestamps``).
        namespace: Sub-directory for this store; ``""`` for the root.
    """

    def __init__(self, root: Path, namespace: str = "") -> None:
        self._root = root
        self._dir = root / namespace if namespace else root
        self.namespace = namespace
        self.warnings: list[TimestampWarning] = []

    @property
    def directory(self) -> Path:
        return self._dir

    def ensure_dir(self) -> None:
        """Create the namespace directory.

        Raises:
            StoreUnavailable: If the directory cannot be created.
        """
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(
                f"Could not create timestamp directory {self._dir}: {exc}"
            ) from exc

    def path_for(self, key: str) -> Path:
        """Return the file holding *key*'s timestamp."""
        return self._dir / f"{quote(key, safe='')}.txt"

    def get(self, key: str) -> str | None:
        """Return the stored timestamp for *key*, or ``None`` if absent.

        Raises:
            StoreUnavailable: On any read failure other than a missing file.
        """
        path = self.path_for(key)
        try:
            value = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreUnavailable(
                f"Could not read timestamp {path}: {exc}"
            ) from exc
        return value or None

    def set(self, key: str, timestamp: str) -> TimestampWarning | None:
        """Persist *timestamp* for *key*.

        Returns:
            ``None`` on success, or the ``TimestampWarning`` describing why
            the entry could not be written.  The warning is also logged and
            appended to ``self.warnings``.
        """
        target = self.path_for(key)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._dir), suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(timestamp)
                os.replace(tmp_path, target)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except OSError as exc:
            warning = TimestampWarning(key, str(target), str(exc))
            logger.warning("WARN: %s", warning)
            self.warnings.append(warning)
            return warning
        return None
