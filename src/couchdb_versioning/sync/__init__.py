"""Timestamp-based synchronization of a local tree into CouchDB.

Architecture
------------
Local files are the source of truth.  Each document key has a *logical
timestamp* recording when this engine last wrote it; the same value is
stamped into the document as ``revTimestamp``.  A write is refused
(reported as a conflict) when the remote ``revTimestamp`` is newer than
the locally recorded one, i.e. someone else changed the document since
our last push.

Modules:

- ``driver``       -- ``SyncDriver``: the run state machine.
- ``design``       -- design document sync and bootstrap.
- ``stager``       -- ``BatchStager``: reconcile one batch into a payload.
- ``submitter``    -- ``BatchSubmitter``: stream a payload to ``_bulk_docs``.
- ``planner``      -- ``plan``: contiguous batching.
- ``reconciler``   -- ``decide``: UPDATE / SKIP / CONFLICT.
- ``timestamps``   -- ``TimestampStore``: per-key timestamp files.
- ``snapshot``     -- ``RemoteSnapshotReader``: prefix and key lookups.
- ``materializer`` -- design document <-> directory tree.
- ``models``       -- pydantic data contracts.
- ``reporter``     -- human-readable and JSON report formatting.

Usage example
-------------
::

    import asyncio
    from couchdb_versioning.config import load_config
    from couchdb_versioning.sync import SyncDriver, format_sync_report

    config = load_config(url="http://localhost:5984/app", source_dir="db")
    report = asyncio.run(SyncDriver(config).run())
    print(format_sync_report(report))
"""

from .driver import SyncDriver
from .models import (
    BatchSummary,
    ConflictInfo,
    Decision,
    RunState,
    SyncAction,
    SyncReport,
    SyncResult,
)
from .planner import plan
from .reconciler import decide
from .reporter import format_sync_report, report_to_json
from .timestamps import TimestampStore

__all__ = [
    "BatchSummary",
    "ConflictInfo",
    "Decision",
    "RunState",
    "SyncAction",
    "SyncDriver",
    "SyncReport",
    "SyncResult",
    "TimestampStore",
    "decide",
    "format_sync_report",
    "plan",
    "report_to_json",
]
