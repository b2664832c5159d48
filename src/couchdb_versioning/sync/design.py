"""Design document synchronization and bootstrap.

Design documents are few and large, so they are reconciled one by one
and written with individual ``PUT`` requests instead of going through the
batch stager.  Their timestamps live in the ``_design`` namespace of the
timestamp store, keyed by design name.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Any

from couchdb_versioning.core.async_utils import run_sync
from couchdb_versioning.core.client import DESIGN_PREFIX, CouchDBClient
from couchdb_versioning.exceptions import StoreUnavailable
from couchdb_versioning.file_handler import read_json_document
from couchdb_versioning.sync.materializer import materialize, read_tree
from couchdb_versioning.sync.models import (
    ConflictInfo,
    DocumentKind,
    SyncAction,
    SyncResult,
)
from couchdb_versioning.sync.reconciler import (
    REVISION_FIELD,
    TIMESTAMP_FIELD,
    decide,
    stamp,
)
from couchdb_versioning.sync.reporter import log_conflict
from couchdb_versioning.sync.snapshot import RemoteSnapshotReader
from couchdb_versioning.sync.timestamps import TimestampStore, utc_now

logger = logging.getLogger(__name__)

DESIGN_RANGE = DESIGN_PREFIX.rstrip("/")


def load_local_designs(
    design_dir: Path,
) -> tuple[dict[str, dict[str, Any]], dict[str, str]]:
    """Read every local design document under *design_dir*.

    Two layouts are accepted side by side:

    * ``<name>/`` -- a materialized directory, folded back with
      ``read_tree()``;
    * ``<file>.json`` -- an object mapping design names to bodies.

    Returns:
        ``(designs, errors)``: bodies keyed by design name, and error
        messages keyed by the entry that could not be read.
    """
    designs: dict[str, dict[str, Any]] = {}
    errors: dict[str, str] = {}
    if not design_dir.is_dir():
        return designs, errors

    for entry in sorted(design_dir.iterdir()):
        if entry.name.startswith("."):
            continue
        try:
            if entry.is_dir():
                found = {entry.name: read_tree(entry)}
            elif entry.suffix == ".json":
                found = read_json_document(entry)
            else:
                continue
            for name, body in found.items():
                if not isinstance(body, dict):
                    raise ValueError(
                        f"design '{name}' in {entry.name} is not an object"
                    )
                if name in designs:
                    logger.warning(
                        "Design %s defined more than once; %s wins",
                        name,
                        entry.name,
                    )
                designs[name] = body
        except (OSError, ValueError) as exc:
            logger.error("Could not read design %s: %s", entry, exc)
            errors[entry.name] = str(exc)

    return designs, errors


class DesignSynchronizer:
    """Reconcile local design documents against the store.

    Args:
        client: Connected client handle.
        timestamps: Timestamp store for the ``_design`` namespace.
    """

    def __init__(
        self, client: CouchDBClient, timestamps: TimestampStore
    ) -> None:
        self.client = client
        self.reader = RemoteSnapshotReader(client)
        self.timestamps = timestamps

    async def sync(
        self,
        local_designs: dict[str, dict[str, Any]],
        now: str | None = None,
    ) -> list[SyncResult]:
        """Reconcile every design in *local_designs*.

        Raises:
            StoreConnectionError: If the remote snapshot cannot be read.
            StoreUnavailable: If the remote snapshot query fails.
        """
        now = now or utc_now()
        existing = await self.reader.fetch_by_prefix(DESIGN_RANGE)
        return list(
            await asyncio.gather(
                *(
                    self._sync_one(name, body, existing.get(name), now)
                    for name, body in local_designs.items()
                )
            )
        )

    async def _sync_one(
        self,
        name: str,
        body: dict[str, Any],
        remote: dict[str, Any] | None,
        now: str,
    ) -> SyncResult:
        doc_id = DESIGN_PREFIX + name
        local = dict(body)
        local["_id"] = doc_id

        try:
            stored = await run_sync(self.timestamps.get, name)
        except StoreUnavailable as exc:
            return self._result(doc_id, SyncAction.SKIP, False, str(exc))

        decision = decide(local, remote, stored, now)

        if decision.action == SyncAction.SKIP:
            logger.info("Skipping %s. No changes detected", doc_id)
            return self._result(doc_id, SyncAction.SKIP, True)

        if decision.action == SyncAction.CONFLICT:
            conflict = ConflictInfo(
                doc_id=doc_id,
                local_timestamp=decision.local_timestamp or "",
                remote_timestamp=decision.remote_timestamp or "",
                detected_at=utc_now(),
            )
            log_conflict(conflict)
            return self._result(
                doc_id, SyncAction.CONFLICT, False, conflict.message
            )

        logger.info("Updating %s", doc_id)
        try:
            await run_sync(self.client.insert, stamp(local, decision), doc_id)
        except StoreUnavailable as exc:
            logger.error("Could not update %s: %s", doc_id, exc)
            return self._result(doc_id, SyncAction.UPDATE, False, str(exc))

        await run_sync(self.timestamps.set, name, now)
        return self._result(doc_id, SyncAction.UPDATE, True)

    @staticmethod
    def _result(
        doc_id: str,
        action: SyncAction,
        success: bool,
        error: str | None = None,
    ) -> SyncResult:
        return SyncResult(
            doc_id=doc_id,
            kind=DocumentKind.DESIGN,
            action=action,
            success=success,
            error=error,
        )


async def bootstrap_designs(
    client: CouchDBClient,
    design_dir: Path,
    timestamps: TimestampStore,
    now: str | None = None,
) -> list[str]:
    """Create local design directories from the store's design documents.

    Every remote design document is materialized under
    ``design_dir/<name>/``; its ``revTimestamp`` (or *now*, when it was
    never stamped) goes to the timestamp store instead of the tree.

    Returns:
        Names of the materialized designs.
    """
    now = now or utc_now()
    existing = await RemoteSnapshotReader(client).fetch_by_prefix(
        DESIGN_RANGE
    )
    await run_sync(design_dir.mkdir, parents=True, exist_ok=True)

    for name, doc in existing.items():
        body = {k: v for k, v in doc.items() if k != REVISION_FIELD}
        body[TIMESTAMP_FIELD] = body.get(TIMESTAMP_FIELD) or now
        logger.info("Initializing %s%s from the database", DESIGN_PREFIX, name)
        await run_sync(
            materialize,
            body,
            design_dir / name,
            partial(timestamps.set, name),
        )
    return sorted(existing)
