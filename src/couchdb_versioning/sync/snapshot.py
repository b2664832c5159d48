"""Remote snapshot reads: documents under a key prefix, or a batch of keys."""

from __future__ import annotations

import logging
from typing import Any

from couchdb_versioning.core.async_utils import run_sync
from couchdb_versioning.core.client import CouchDBClient

logger = logging.getLogger(__name__)


class RemoteSnapshotReader:
    """Read current remote documents through a client handle."""

    def __init__(self, client: CouchDBClient) -> None:
        self.client = client

    async def fetch_by_prefix(
        self, prefix: str = "_design"
    ) -> dict[str, dict[str, Any]]:
        """Return the immediate children of *prefix*, keyed by their name.

        Issues one ``_all_docs`` range query over ``[prefix, prefix + "0")``;
        ``"0"`` sorts right after ``"/"``, so only ``prefix/...`` ids match.

        Raises:
            StoreConnectionError: If the store is unreachable or rejects
                the session.
        """
        rows = await run_sync(
            self.client.all_docs,
            startkey=prefix,
            endkey=prefix + "0",
            include_docs=True,
        )
        snapshot: dict[str, dict[str, Any]] = {}
        for row in rows:
            doc = row.get("doc")
            _, separator, name = row["id"].partition("/")
            if doc is None or not separator:
                continue
            snapshot[name] = doc
        logger.debug(
            "Fetched %d remote documents under %s", len(snapshot), prefix
        )
        return snapshot

    async def fetch_keys(
        self, keys: list[str]
    ) -> dict[str, dict[str, Any] | None]:
        """Return the remote document for every key, ``None`` when missing or deleted."""
        rows = await run_sync(self.client.fetch, keys)
        found: dict[str, dict[str, Any] | None] = {key: None for key in keys}
        for row in rows:
            if "error" in row:
                continue
            found[row["key"]] = row.get("doc")
        return found
