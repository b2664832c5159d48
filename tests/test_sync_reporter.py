"""Tests for sync reporter formatting functions.

Covers:
- format_sync_report with various result combinations
- report_to_json structure and completeness
- log_conflict message format
- SyncReport summary and outcome properties
"""

from __future__ import annotations

import json
import logging

from couchdb_versioning.sync.models import (
    BatchSummary,
    ConflictInfo,
    DocumentKind,
    RunState,
    SyncAction,
    SyncReport,
    SyncResult,
)
from couchdb_versioning.sync.reporter import (
    format_sync_report,
    log_conflict,
    report_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_report(
    results: list[SyncResult] | None = None, **kwargs
) -> SyncReport:
    """Build a SyncReport with sensible defaults."""
    kwargs.setdefault("state", RunState.DONE)
    return SyncReport(
        url="http://localhost:5984/app",
        results=results or [],
        started_at="2026-03-01T12:00:00.000Z",
        completed_at="2026-03-01T12:00:05.000Z",
        **kwargs,
    )


def _result(
    action: SyncAction,
    doc_id: str = "user-1",
    success: bool = True,
    error: str | None = None,
    kind: DocumentKind = DocumentKind.BULK,
    batch: int | None = 1,
) -> SyncResult:
    return SyncResult(
        doc_id=doc_id,
        kind=kind,
        action=action,
        success=success,
        error=error,
        batch=batch,
    )


# ---------------------------------------------------------------------------
# format_sync_report
# ---------------------------------------------------------------------------


class TestFormatSyncReport:
    """Tests for format_sync_report()."""

    def test_header_contains_url(self):
        text = format_sync_report(_make_report())
        assert "Sync report for http://localhost:5984/app" in text

    def test_failed_header_names_stage(self):
        report = _make_report(
            state=RunState.FAILED,
            failed_in=RunState.CONNECTED,
            error="Could not reach CouchDB",
        )
        text = format_sync_report(report)
        assert "(FAILED during connected)" in text
        assert "Error: Could not reach CouchDB" in text

    def test_cancelled_header(self):
        text = format_sync_report(_make_report(cancelled=True))
        assert "(CANCELLED)" in text

    def test_counts_line(self):
        results = [
            _result(SyncAction.UPDATE, "a"),
            _result(SyncAction.SKIP, "b"),
            _result(SyncAction.CONFLICT, "c", success=False, error="conflict"),
            _result(SyncAction.UPDATE, "d", success=False, error="boom"),
        ]
        text = format_sync_report(_make_report(results))
        assert (
            "Processed 4 documents: 1 updated, 1 unchanged, 1 conflicts, 1 errors"
            in text
        )

    def test_updated_section_lists_ids(self):
        results = [
            _result(SyncAction.UPDATE, "_design/app", kind=DocumentKind.DESIGN),
            _result(SyncAction.UPDATE, "user-1"),
        ]
        text = format_sync_report(_make_report(results))
        assert "Updated:" in text
        assert "  _design/app" in text
        assert "  user-1" in text

    def test_skipped_documents_not_listed(self):
        text = format_sync_report(
            _make_report([_result(SyncAction.SKIP, "quiet-doc")])
        )
        assert "quiet-doc" not in text
        assert "Updated:" not in text

    def test_conflicts_and_errors_sections(self):
        results = [
            _result(SyncAction.CONFLICT, "c", success=False, error="local is T1"),
            _result(SyncAction.SKIP, "bad", success=False, error="Invalid JSON"),
        ]
        text = format_sync_report(_make_report(results))
        assert "Conflicts:\n  c: local is T1" in text
        assert "Errors:\n  bad: Invalid JSON" in text

    def test_batches_section(self):
        batches = [
            BatchSummary(number=1, size=3, staged=2, submitted=True),
            BatchSummary(number=2, size=1, staged=1, error="503"),
        ]
        text = format_sync_report(_make_report(batches=batches))
        assert "#1: 3 files, 2 staged, pushed" in text
        assert "#2: 1 files, 1 staged, not pushed (503)" in text

    def test_warnings_and_temp_dir(self):
        report = _make_report(warnings=["ignored dir"], temp_dir="/tmp/run.tmp")
        text = format_sync_report(report)
        assert "Temp dir: /tmp/run.tmp" in text
        assert "Warnings:\n  ignored dir" in text

    def test_no_trailing_whitespace(self):
        text = format_sync_report(_make_report())
        assert text == text.rstrip()


# ---------------------------------------------------------------------------
# report_to_json
# ---------------------------------------------------------------------------


class TestReportToJson:
    """Tests for report_to_json()."""

    def test_required_keys(self):
        data = report_to_json(_make_report())
        for key in (
            "url",
            "state",
            "failed_in",
            "error",
            "cancelled",
            "temp_dir",
            "started_at",
            "completed_at",
            "counts",
            "batches",
            "warnings",
            "results",
        ):
            assert key in data

    def test_enums_are_plain_strings(self):
        data = report_to_json(
            _make_report(
                [_result(SyncAction.UPDATE)],
                state=RunState.FAILED,
                failed_in=RunState.BULK_DOCS_SYNCED,
            )
        )
        assert data["state"] == "failed"
        assert data["failed_in"] == "bulk_docs_synced"
        assert data["results"][0]["action"] == "update"
        assert data["results"][0]["kind"] == "bulk"

    def test_counts(self):
        results = [
            _result(SyncAction.UPDATE, "a"),
            _result(SyncAction.UPDATE, "b"),
            _result(SyncAction.SKIP, "c"),
        ]
        data = report_to_json(
            _make_report(results, batches=[BatchSummary(number=1, size=3)])
        )
        assert data["counts"] == {
            "total": 3,
            "updated": 2,
            "skipped": 1,
            "conflicts": 0,
            "errors": 0,
            "batches": 1,
        }

    def test_optional_result_fields_omitted(self):
        data = report_to_json(
            _make_report(
                [
                    _result(
                        SyncAction.SKIP,
                        "_design/app",
                        kind=DocumentKind.DESIGN,
                        batch=None,
                    )
                ]
            )
        )
        entry = data["results"][0]
        assert "batch" not in entry
        assert "error" not in entry

    def test_serializable(self):
        report = _make_report(
            [_result(SyncAction.CONFLICT, success=False, error="conflict")],
            batches=[BatchSummary(number=1, size=1, submitted=True)],
            warnings=["w"],
        )
        json.dumps(report_to_json(report))


# ---------------------------------------------------------------------------
# log_conflict and models
# ---------------------------------------------------------------------------


class TestLogConflict:
    def test_logs_error_with_both_timestamps(self, caplog):
        conflict = ConflictInfo(
            doc_id="_design/app",
            local_timestamp="2026-01-01T00:00:00.000Z",
            remote_timestamp="2026-02-01T00:00:00.000Z",
            detected_at="2026-03-01T12:00:00.000Z",
        )
        with caplog.at_level(logging.ERROR):
            log_conflict(conflict)

        assert (
            "ERROR: 2026-03-01T12:00:00.000Z _design/app._rev Conflict: "
            "local is 2026-01-01T00:00:00.000Z server is 2026-02-01T00:00:00.000Z"
        ) in caplog.text


class TestSyncReportModel:
    def test_failed_property(self):
        assert _make_report(state=RunState.FAILED).failed
        assert not _make_report().failed

    def test_conflicts_are_not_errors(self):
        report = _make_report(
            [_result(SyncAction.CONFLICT, success=False, error="c")]
        )
        assert len(report.conflicts) == 1
        assert report.errors == []

    def test_summary(self):
        report = _make_report(
            [_result(SyncAction.UPDATE, "a"), _result(SyncAction.SKIP, "b")]
        )
        summary = report.summary()
        assert summary.startswith("Sync report for http://localhost:5984/app (done)")
        assert "Updated:   1" in summary
        assert "Skipped:   1" in summary
        assert "Total:     2" in summary
