"""Batch submission: stream a staged payload to ``_bulk_docs``."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from couchdb_versioning.core.async_utils import run_sync
from couchdb_versioning.core.client import CouchDBClient
from couchdb_versioning.exceptions import (
    BulkUpdateError,
    CouchVersioningError,
)
from couchdb_versioning.file_handler import create_staging_file

logger = logging.getLogger(__name__)


def discard(path: Path) -> None:
    """Delete a staging file; already-missing files are fine."""
    path.unlink(missing_ok=True)


@asynccontextmanager
async def staging_payload(directory: Path | None = None) -> AsyncIterator[Path]:
    """Create a staging file for one batch and delete it on exit."""
    path = await run_sync(create_staging_file, directory)
    try:
        yield path
    finally:
        await run_sync(discard, path)


class BatchSubmitter:
    """Submit staged payloads through a client handle."""

    def __init__(self, client: CouchDBClient) -> None:
        self.client = client

    async def submit(self, payload_path: Path) -> list[dict[str, Any]]:
        """Stream *payload_path* to the store, then delete it.

        The file is deleted whether or not the submission succeeds.

        Returns:
            CouchDB's per-document result rows.

        Raises:
            BulkUpdateError: If the payload could not be read or the
                store rejected the request.
        """
        try:
            return await run_sync(self._post, payload_path)
        except (CouchVersioningError, OSError) as exc:
            logger.error("ERROR: bulk update of %s failed: %s", payload_path, exc)
            raise BulkUpdateError(str(exc)) from exc
        finally:
            await run_sync(discard, payload_path)

    def _post(self, payload_path: Path) -> list[dict[str, Any]]:
        with open(payload_path, "rb") as fh:
            return self.client.bulk_docs(fh)


def rejected_rows(rows: list[dict[str, Any]]) -> dict[str, str]:
    """Map id -> reason for every row CouchDB did not accept."""
    rejected: dict[str, str] = {}
    for row in rows:
        if "error" in row:
            reason = row.get("reason") or row["error"]
            rejected[row.get("id", "")] = f"{row['error']}: {reason}"
    return rejected
