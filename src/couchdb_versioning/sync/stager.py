"""Batch staging: reconcile one batch of bulk documents into a payload file.

For one batch the stager

1. fetches the remote counterparts of every document in one request,
2. reads and reconciles each local document concurrently,
3. appends every document that must change to a single
   ``{"docs": [...]}`` staging file.

Reconciliation runs in parallel but the payload has one writer: appends
go through an ``asyncio.Lock``.  The timestamp entry for a document is
advanced as soon as it is staged, before the batch is submitted.
"""

from __future__ import annotations

import asyncio
import json
import logging
from functools import partial
from pathlib import Path
from typing import IO, Any

from couchdb_versioning.core.async_utils import gather_bounded, run_sync
from couchdb_versioning.exceptions import StoreUnavailable
from couchdb_versioning.file_handler import read_json_document
from couchdb_versioning.sync.models import (
    ConflictInfo,
    DocumentKind,
    StagedBatch,
    SyncAction,
    SyncResult,
)
from couchdb_versioning.sync.reconciler import decide, stamp
from couchdb_versioning.sync.reporter import log_conflict
from couchdb_versioning.sync.snapshot import RemoteSnapshotReader
from couchdb_versioning.sync.timestamps import TimestampStore, utc_now

logger = logging.getLogger(__name__)


def doc_key(path: Path) -> str:
    """Document id for a bulk document file: its name without ``.json``."""
    return path.name.removesuffix(".json")


class PayloadWriter:
    """Append-only writer for a ``{"docs": [...]}`` staging file.

    Use as an async context manager; the closing ``]}`` is written on exit
    even when staging fails, so the file is always well-formed.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.count = 0
        self._lock = asyncio.Lock()
        self._fh: IO[str] | None = None

    async def __aenter__(self) -> PayloadWriter:
        self._fh = await run_sync(open, self.path, "w", encoding="utf-8")
        await run_sync(self._fh.write, '{"docs":[')
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._fh is None:
            return
        try:
            await run_sync(self._fh.write, "]}")
        finally:
            await run_sync(self._fh.close)
            self._fh = None

    async def append(self, doc: dict[str, Any]) -> None:
        if self._fh is None:
            raise RuntimeError("PayloadWriter used outside its context")
        record = json.dumps(doc, ensure_ascii=False)
        async with self._lock:
            separator = ", " if self.count else ""
            await run_sync(self._fh.write, separator + record)
            self.count += 1


class BatchStager:
    """Stage bulk document batches.

    Args:
        reader: Remote snapshot reader bound to the client handle.
        timestamps: Timestamp store for bulk documents.
        max_parallel: Documents reconciled at the same time.
    """

    def __init__(
        self,
        reader: RemoteSnapshotReader,
        timestamps: TimestampStore,
        max_parallel: int = 5,
    ) -> None:
        self.reader = reader
        self.timestamps = timestamps
        self.max_parallel = max_parallel

    async def stage(
        self,
        batch: list[Path],
        number: int,
        payload_path: Path,
        now: str | None = None,
    ) -> StagedBatch:
        """Reconcile *batch* and write the payload to *payload_path*.

        Args:
            batch: Local document files.
            number: 1-based batch number (for results and logs).
            payload_path: Staging file to (over)write.
            now: Timestamp stamped on every updated document.

        Returns:
            The staged batch; ``has_records`` is False when nothing changed.

        Raises:
            StoreConnectionError: If the remote fetch cannot reach the store.
            StoreUnavailable: If the remote fetch fails.
        """
        now = now or utc_now()
        keys = [doc_key(p) for p in batch]
        remote_docs = await self.reader.fetch_keys(keys)

        async with PayloadWriter(payload_path) as writer:
            results = await gather_bounded(
                [
                    partial(
                        self._stage_document,
                        path,
                        key,
                        remote_docs.get(key),
                        writer,
                        number,
                        now,
                    )
                    for path, key in zip(batch, keys)
                ],
                self.max_parallel,
            )
            included = [
                r.doc_id
                for r in results
                if r.action == SyncAction.UPDATE and r.success
            ]

        return StagedBatch(
            number=number,
            path=payload_path,
            included=included,
            results=results,
        )

    async def _stage_document(
        self,
        path: Path,
        key: str,
        remote: dict[str, Any] | None,
        writer: PayloadWriter,
        number: int,
        now: str,
    ) -> SyncResult:
        """Reconcile one document; failures stay local to this document."""
        try:
            local = await run_sync(read_json_document, path)
            stored = await run_sync(self.timestamps.get, key)
        except (OSError, ValueError, StoreUnavailable) as exc:
            logger.error("Could not read %s: %s", path, exc)
            return self._result(key, SyncAction.SKIP, False, number, str(exc))

        local["_id"] = key
        decision = decide(local, remote, stored, now)

        if decision.action == SyncAction.SKIP:
            return self._result(key, SyncAction.SKIP, True, number)

        if decision.action == SyncAction.CONFLICT:
            conflict = ConflictInfo(
                doc_id=key,
                local_timestamp=decision.local_timestamp or "",
                remote_timestamp=decision.remote_timestamp or "",
                detected_at=utc_now(),
            )
            log_conflict(conflict)
            return self._result(
                key, SyncAction.CONFLICT, False, number, conflict.message
            )

        await run_sync(self.timestamps.set, key, now)
        await writer.append(stamp(local, decision))
        return self._result(key, SyncAction.UPDATE, True, number)

    @staticmethod
    def _result(
        key: str,
        action: SyncAction,
        success: bool,
        number: int,
        error: str | None = None,
    ) -> SyncResult:
        return SyncResult(
            doc_id=key,
            kind=DocumentKind.BULK,
            action=action,
            success=success,
            error=error,
            batch=number,
        )
