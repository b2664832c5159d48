"""Pydantic models for the synchronization engine.

Defines the data contracts shared by the sync modules:

- ``SyncAction``: Outcome of reconciling one document.
- ``DocumentKind``: Design document or bulk document.
- ``Decision``: What the reconciler decided for one document.
- ``ConflictInfo``: Timestamps behind a detected conflict.
- ``SyncResult``: Outcome of syncing one document.
- ``BatchSummary``: Outcome of staging and submitting one batch.
- ``RunState``: Driver state machine states.
- ``SyncReport``: Aggregate results for a full run.
- ``StagedBatch``: A staged bulk payload and its per-document results.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel


class SyncAction(str, Enum):
    """Possible outcomes of reconciling one document."""

    UPDATE = "update"
    SKIP = "skip"
    CONFLICT = "conflict"


class DocumentKind(str, Enum):
    DESIGN = "design"
    BULK = "bulk"


class RunState(str, Enum):
    """States of one synchronization run, in order."""

    INIT = "init"
    CONNECTED = "connected"
    DESIGN_DOCS_SYNCED = "design_docs_synced"
    BULK_DOCS_SYNCED = "bulk_docs_synced"
    INDEXES_REBUILT = "indexes_rebuilt"
    DONE = "done"
    FAILED = "failed"


class Decision(BaseModel):
    """Reconciler verdict for one document.

    Attributes:
        action: UPDATE, SKIP or CONFLICT.
        stamped_timestamp: Timestamp to stamp on the written document
            (UPDATE only).
        revision: Remote ``_rev`` to carry on overwrite (UPDATE only;
            ``None`` when the document is new).
        local_timestamp: Effective local timestamp (CONFLICT only).
        remote_timestamp: Remote ``revTimestamp`` (CONFLICT only).
    """

    action: SyncAction
    stamped_timestamp: str | None = None
    revision: str | None = None
    local_timestamp: str | None = None
    remote_timestamp: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def skip(cls) -> Decision:
        return cls(action=SyncAction.SKIP)

    @classmethod
    def update(cls, stamped_timestamp: str, revision: str | None) -> Decision:
        return cls(
            action=SyncAction.UPDATE,
            stamped_timestamp=stamped_timestamp,
            revision=revision,
        )

    @classmethod
    def conflict(cls, local_timestamp: str, remote_timestamp: str) -> Decision:
        return cls(
            action=SyncAction.CONFLICT,
            local_timestamp=local_timestamp,
            remote_timestamp=remote_timestamp,
        )


class ConflictInfo(BaseModel):
    """A document whose remote copy advanced past our last confirmed write.

    Attributes:
        doc_id: Document id, e.g. ``_design/app`` or ``user-1``.
        local_timestamp: Timestamp this engine last wrote (or ``now`` when
            the document was never written by it).
        remote_timestamp: ``revTimestamp`` currently stored remotely.
        detected_at: ISO 8601 time the conflict was detected.
    """

    doc_id: str
    local_timestamp: str
    remote_timestamp: str
    detected_at: str

    model_config = {"frozen": True}

    @property
    def message(self) -> str:
        return (
            f"{self.detected_at} {self.doc_id}._rev Conflict: "
            f"local is {self.local_timestamp} server is {self.remote_timestamp}"
        )


class SyncResult(BaseModel):
    """Result of syncing one document.

    Attributes:
        doc_id: Document id.
        kind: Design or bulk document.
        action: What the reconciler decided.
        success: Whether the decided action was carried out.
        error: Error or conflict message, if any.
        batch: 1-based batch number for bulk documents.
    """

    doc_id: str
    kind: DocumentKind
    action: SyncAction
    success: bool
    error: str | None = None
    batch: int | None = None

    model_config = {"frozen": True}


class BatchSummary(BaseModel):
    """Outcome of one bulk batch.

    Attributes:
        number: 1-based batch number.
        size: Number of document files in the batch.
        staged: Number of documents written into the payload.
        submitted: Whether the payload reached ``_bulk_docs``.
        error: Transport or staging error, if any.
    """

    number: int
    size: int
    staged: int = 0
    submitted: bool = False
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for a full run.

    ``temp_dir`` is set on success and on failure so callers can always
    inspect what the run produced.
    """

    url: str
    started_at: str
    completed_at: str | None = None
    state: RunState = RunState.INIT
    failed_in: RunState | None = None
    error: str | None = None
    temp_dir: str | None = None
    results: list[SyncResult] = []
    batches: list[BatchSummary] = []
    warnings: list[str] = []
    cancelled: bool = False

    model_config = {"frozen": True}

    @property
    def failed(self) -> bool:
        return self.state == RunState.FAILED

    @property
    def updated(self) -> list[SyncResult]:
        """Results where action is UPDATE and the write succeeded."""
        return [
            r
            for r in self.results
            if r.action == SyncAction.UPDATE and r.success
        ]

    @property
    def skipped(self) -> list[SyncResult]:
        return [r for r in self.results if r.action == SyncAction.SKIP]

    @property
    def conflicts(self) -> list[SyncResult]:
        return [
            r for r in self.results if r.action == SyncAction.CONFLICT
        ]

    @property
    def errors(self) -> list[SyncResult]:
        """Results where an attempted write or read failed."""
        return [
            r
            for r in self.results
            if not r.success and r.action != SyncAction.CONFLICT
        ]

    def summary(self) -> str:
        """Format a short multi-line summary with counts by outcome."""
        lines = [
            f"Sync report for {self.url} ({self.state.value})",
            f"  Updated:   {len(self.updated)}",
            f"  Skipped:   {len(self.skipped)}",
            f"  Conflicts: {len(self.conflicts)}",
            f"  Errors:    {len(self.errors)}",
            f"  Batches:   {len(self.batches)}",
            f"  Total:     {len(self.results)}",
        ]
        return "\n".join(lines)


class StagedBatch(BaseModel):
    """A batch payload file and the per-document decisions behind it.

    Attributes:
        number: 1-based batch number.
        path: Staging payload file (``{"docs": [...]}``).
        included: Ids written into the payload, in write order.
        results: One result per document file in the batch.
    """

    number: int
    path: Path
    included: list[str] = []
    results: list[SyncResult] = []

    model_config = {"frozen": True}

    @property
    def has_records(self) -> bool:
        return bool(self.included)
