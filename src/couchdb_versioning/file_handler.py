"""File handler module: encoding-aware reads, JSON documents, temp files.

All functions here are blocking; the sync engine calls them through
``run_sync()``.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from charset_normalizer import from_bytes

STAGING_PREFIX = "couchdb-versioning-"


# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Defaults to UTF-8 for empty files or when detection fails.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        return (raw.decode("utf-8", errors="replace"), "utf-8")

    encoding = result.encoding
    # ascii is a strict subset of utf-8
    if encoding == "ascii":
        encoding = "utf-8"
    return (str(result), encoding)


def read_json_document(path: Path) -> dict[str, Any]:
    """Read one JSON document file.

    Raises:
        ValueError: If the file is not valid JSON or its root is not an
            object.
    """
    content, _ = read_file_with_encoding(path)
    try:
        data = json.loads(content.lstrip("\ufeff"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid document in {path}: root must be a JSON object, got {type(data).__name__}"
        )
    return data


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content to a file, creating parent directories as needed.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode(encoding)
    path.write_bytes(data)
    return len(data)


# =============================================================================
# Discovery
# =============================================================================


def list_document_files(root: Path) -> list[Path]:
    """Return every ``*.json`` file under *root*, in sorted order.

    A missing *root* yields an empty list.
    """
    if not root.is_dir():
        return []
    return sorted(p for p in root.rglob("*.json") if p.is_file())


# =============================================================================
# Temp files
# =============================================================================


def temp_root() -> str:
    """Directory used for run and staging files (``$TMPDIR``, ``$TMP``, or system default)."""
    return (
        os.environ.get("TMPDIR")
        or os.environ.get("TMP")
        or tempfile.gettempdir()
    )


def create_run_dir() -> Path:
    """Create the per-run working directory."""
    return Path(tempfile.mkdtemp(suffix=".tmp", dir=temp_root()))


def create_staging_file(directory: Path | None = None) -> Path:
    """Create an empty staging file for one batch payload.

    Files go in *directory* when given, otherwise in ``temp_root()``.
    """
    fd, path = tempfile.mkstemp(
        prefix=STAGING_PREFIX,
        suffix=".tmp",
        dir=str(directory) if directory else temp_root(),
    )
    os.close(fd)
    return Path(path)
