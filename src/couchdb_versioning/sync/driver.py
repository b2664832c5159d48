"""Synchronization driver: one linear pass over the run state machine.

::

    INIT -> CONNECTED -> DESIGN_DOCS_SYNCED -> BULK_DOCS_SYNCED
         -> INDEXES_REBUILT -> DONE

``FAILED`` is reachable from every state.  Each stage is awaited in full
before the next one starts, and bulk batches are processed one after the
other so that at most one batch worth of files is open at any time.

Failure scope:

* ``StoreConnectionError`` anywhere ends the run (``FAILED``).
* A batch that cannot be fetched, staged or pushed is recorded and the
  next batch runs.
* A single unreadable or rejected document is a failed result.

The report always carries the run's temp directory, on failure too.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from functools import partial
from pathlib import Path
from typing import Callable

from couchdb_versioning.config import Config
from couchdb_versioning.core.async_utils import gather_bounded, run_sync
from couchdb_versioning.core.client import (
    DESIGN_PREFIX,
    CouchDBClient,
    connect,
    redact_url,
)
from couchdb_versioning.exceptions import (
    BulkUpdateError,
    CouchVersioningError,
    StoreConnectionError,
    StoreUnavailable,
)
from couchdb_versioning.file_handler import create_run_dir, list_document_files
from couchdb_versioning.sync.design import (
    DESIGN_RANGE,
    DesignSynchronizer,
    bootstrap_designs,
    load_local_designs,
)
from couchdb_versioning.sync.models import (
    BatchSummary,
    DocumentKind,
    RunState,
    SyncAction,
    SyncReport,
    SyncResult,
)
from couchdb_versioning.sync.planner import plan
from couchdb_versioning.sync.snapshot import RemoteSnapshotReader
from couchdb_versioning.sync.stager import BatchStager, doc_key
from couchdb_versioning.sync.submitter import (
    BatchSubmitter,
    rejected_rows,
    staging_payload,
)
from couchdb_versioning.sync.timestamps import (
    DESIGN_NAMESPACE,
    TIMESTAMP_DIR,
    TimestampStore,
    utc_now,
)

logger = logging.getLogger(__name__)

DESIGN_DIR = "_design"
DOCS_DIR = "docs"


class SyncDriver:
    """Run one synchronization pass for a source tree.

    Args:
        config: Validated runtime configuration.
        client_factory: Produces a connected client handle; defaults to
            :func:`~couchdb_versioning.core.client.connect`.
        clock: Returns the current logical timestamp.
    """

    def __init__(
        self,
        config: Config,
        client_factory: Callable[[Config], CouchDBClient] = connect,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self.config = config
        self.client_factory = client_factory
        self.clock = clock

        self.source_root = Path(config.source_dir)
        self.design_dir = self.source_root / DESIGN_DIR
        self.docs_dir = self.source_root / DOCS_DIR
        timestamp_root = self.source_root / TIMESTAMP_DIR
        self.design_timestamps = TimestampStore(timestamp_root, DESIGN_NAMESPACE)
        self.doc_timestamps = TimestampStore(timestamp_root)

        self.client: CouchDBClient | None = None
        self.temp_dir: Path | None = None
        self.state = RunState.INIT
        self._cancel_requested = False
        self._results: list[SyncResult] = []
        self._batches: list[BatchSummary] = []
        self._warnings: list[str] = []

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self) -> SyncReport:
        """Execute the full pass and return its report.

        Failures end in ``RunState.FAILED`` and are returned in the report,
        not raised.  Task cancellation is re-raised once the in-flight
        request has been abandoned.
        """
        now = started_at = self.clock()
        self.state = RunState.INIT
        self._results, self._batches, self._warnings = [], [], []
        failed_in: RunState | None = None
        error: str | None = None

        steps = (
            (RunState.INIT, partial(self._init, now)),
            (RunState.CONNECTED, self._connect_store),
            (RunState.DESIGN_DOCS_SYNCED, partial(self._sync_designs, now)),
            (RunState.BULK_DOCS_SYNCED, partial(self._sync_docs, now)),
            (RunState.INDEXES_REBUILT, self._rebuild_indexes),
        )
        stage = RunState.INIT
        try:
            for stage, step in steps:
                await step()
                self.state = stage
            self.state = RunState.DONE
        except asyncio.CancelledError:
            logger.warning("Sync of %s cancelled during %s", self.url, stage.value)
            raise
        except Exception as exc:
            logger.exception("Sync of %s failed during %s", self.url, stage.value)
            self.state = RunState.FAILED
            failed_in = stage
            error = str(exc) or type(exc).__name__

        if self.temp_dir:
            logger.info("Temp dir: %s", self.temp_dir)

        return SyncReport(
            url=self.url,
            started_at=started_at,
            completed_at=self.clock(),
            state=self.state,
            failed_in=failed_in,
            error=error,
            temp_dir=str(self.temp_dir) if self.temp_dir else None,
            results=self._results,
            batches=self._batches,
            warnings=self._warnings
            + [str(w) for w in self.design_timestamps.warnings]
            + [str(w) for w in self.doc_timestamps.warnings],
            cancelled=self._cancel_requested,
        )

    @property
    def url(self) -> str:
        return redact_url(self.config.url)

    def cancel(self) -> None:
        """Stop after the batch in flight; remaining batches are skipped."""
        self._cancel_requested = True

    def cleanup(self) -> None:
        """Remove the run's temp directory."""
        if self.temp_dir is None:
            return
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        logger.debug("Removed %s", self.temp_dir)
        self.temp_dir = None

    def _warn(self, message: str) -> None:
        logger.warning("WARN: %s", message)
        self._warnings.append(message)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _init(self, now: str) -> None:
        try:
            self.temp_dir = await run_sync(create_run_dir)
        except OSError as exc:
            self._warn(f"Could not create temp directory: {exc}")

        for store in (self.design_timestamps, self.doc_timestamps):
            try:
                await run_sync(store.ensure_dir)
            except StoreUnavailable as exc:
                self._warn(str(exc))

        if self.config.init_design:
            self.client = await run_sync(self.client_factory, self.config)
            names = await bootstrap_designs(
                self.client, self.design_dir, self.design_timestamps, now
            )
            logger.info(
                "Initialized %d design documents in %s",
                len(names),
                self.design_dir,
            )

    async def _connect_store(self) -> None:
        if self.client is None:
            self.client = await run_sync(self.client_factory, self.config)
        logger.info("Connected to %s", self.url)

    async def _sync_designs(self, now: str) -> None:
        designs, errors = await run_sync(load_local_designs, self.design_dir)
        for source, message in errors.items():
            self._results.append(
                SyncResult(
                    doc_id=DESIGN_PREFIX + source,
                    kind=DocumentKind.DESIGN,
                    action=SyncAction.SKIP,
                    success=False,
                    error=message,
                )
            )
        if not designs:
            logger.info("No design documents in %s", self.design_dir)
            return

        synchronizer = DesignSynchronizer(self.client, self.design_timestamps)
        self._results.extend(await synchronizer.sync(designs, now))

    async def _sync_docs(self, now: str) -> None:
        if not self.config.manage_docs:
            logger.info("Document management disabled; skipping %s", self.docs_dir)
            return

        files = await run_sync(list_document_files, self.docs_dir)
        batches = plan(files, self.config.batch_size)
        logger.info(
            "Processing %d files in %d batches", len(files), len(batches)
        )

        stager = BatchStager(
            RemoteSnapshotReader(self.client),
            self.doc_timestamps,
            self.config.max_parallel_requests,
        )
        submitter = BatchSubmitter(self.client)
        for number, batch in enumerate(batches, start=1):
            if self._cancel_requested:
                logger.warning(
                    "Cancelled; skipping %d remaining batches",
                    len(batches) - number + 1,
                )
                break
            await self._process_batch(number, batch, stager, submitter, now)

    async def _process_batch(
        self,
        number: int,
        batch: list[Path],
        stager: BatchStager,
        submitter: BatchSubmitter,
        now: str,
    ) -> None:
        logger.info("Preparing batch %d", number)
        summary = BatchSummary(number=number, size=len(batch))
        try:
            async with staging_payload(self.temp_dir) as payload_path:
                staged = await stager.stage(batch, number, payload_path, now)
                results = list(staged.results)
                summary = summary.model_copy(
                    update={"staged": len(staged.included)}
                )
                if not staged.has_records:
                    logger.info("Nothing changed in batch %d. Skipping", number)
                else:
                    logger.info(
                        "Pushing batch %d to %s", number, self.client.db_name
                    )
                    try:
                        rows = await submitter.submit(staged.path)
                    except BulkUpdateError as exc:
                        logger.warning(
                            "Timestamps of %d documents in batch %d were "
                            "advanced before the failed push",
                            len(staged.included),
                            number,
                        )
                        results = _fail_updates(results, str(exc))
                        summary = summary.model_copy(update={"error": str(exc)})
                    else:
                        results = _apply_rejections(results, rejected_rows(rows))
                        summary = summary.model_copy(update={"submitted": True})
                        logger.info("Batch %d complete", number)
        except StoreConnectionError:
            raise
        except (CouchVersioningError, OSError) as exc:
            logger.error("ERROR: batch %d failed: %s", number, exc)
            results = [
                SyncResult(
                    doc_id=doc_key(path),
                    kind=DocumentKind.BULK,
                    action=SyncAction.SKIP,
                    success=False,
                    error=str(exc),
                    batch=number,
                )
                for path in batch
            ]
            summary = summary.model_copy(update={"error": str(exc)})

        self._results.extend(results)
        self._batches.append(summary)

    async def _rebuild_indexes(self) -> None:
        if not self.config.rebuild_indexes:
            return
        designs = await RemoteSnapshotReader(self.client).fetch_by_prefix(
            DESIGN_RANGE
        )
        targets = [
            (name, next(iter(doc["views"])))
            for name, doc in designs.items()
            if isinstance(doc.get("views"), dict) and doc["views"]
        ]
        await gather_bounded(
            [partial(self._query_first_view, name, view) for name, view in targets],
            self.config.max_parallel_requests,
        )

    async def _query_first_view(self, design: str, view: str) -> None:
        try:
            await run_sync(self.client.view, design, view, limit=1)
        except StoreConnectionError:
            raise
        except CouchVersioningError as exc:
            self._warn(f"Could not rebuild indexes of {DESIGN_PREFIX}{design}: {exc}")
            return
        logger.info("Rebuilt indexes of %s%s", DESIGN_PREFIX, design)


def _fail_updates(results: list[SyncResult], error: str) -> list[SyncResult]:
    """Mark every staged update as failed with *error*."""
    return [
        r.model_copy(update={"success": False, "error": error})
        if r.action == SyncAction.UPDATE and r.success
        else r
        for r in results
    ]


def _apply_rejections(
    results: list[SyncResult], rejected: dict[str, str]
) -> list[SyncResult]:
    """Turn rows CouchDB refused into failed results."""
    if not rejected:
        return results
    updated = []
    for r in results:
        if r.action == SyncAction.UPDATE and r.doc_id in rejected:
            logger.error("ERROR: %s rejected: %s", r.doc_id, rejected[r.doc_id])
            r = r.model_copy(
                update={"success": False, "error": rejected[r.doc_id]}
            )
        updated.append(r)
    return updated
