"""Sync report formatting functions.

- ``log_conflict`` -- log one conflict with everything needed to fix it.
- ``format_sync_report`` -- human-readable post-run summary.
- ``report_to_json`` -- structured dict for machine consumers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ConflictInfo, SyncReport

logger = logging.getLogger(__name__)


def log_conflict(conflict: ConflictInfo) -> None:
    """Log a conflict at ERROR level.

    Conflicts are not applied and not resolved automatically; they are
    logged again on every run until someone reconciles the document.
    """
    logger.error("ERROR: %s", conflict.message)


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when non-empty.  Skipped documents are
    summarised by count only.
    """
    lines: list[str] = []

    header = f"Sync report for {report.url}"
    if report.failed:
        header += f" (FAILED during {report.failed_in.value if report.failed_in else 'unknown'})"
    elif report.cancelled:
        header += " (CANCELLED)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    if report.temp_dir:
        lines.append(f"Temp dir: {report.temp_dir}")
    lines.append("")

    lines.append(
        f"Processed {len(report.results)} documents: "
        f"{len(report.updated)} updated, {len(report.skipped)} unchanged, "
        f"{len(report.conflicts)} conflicts, {len(report.errors)} errors"
    )
    lines.append("")

    if report.updated:
        lines.append("Updated:")
        for r in report.updated:
            lines.append(f"  {r.doc_id}")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts:")
        for r in report.conflicts:
            lines.append(f"  {r.doc_id}: {r.error}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.doc_id}: {r.error}")
        lines.append("")

    if report.batches:
        lines.append("Batches:")
        for b in report.batches:
            status = "pushed" if b.submitted else "not pushed"
            if b.error:
                status += f" ({b.error})"
            lines.append(
                f"  #{b.number}: {b.size} files, {b.staged} staged, {status}"
            )
        lines.append("")

    if report.warnings:
        lines.append("Warnings:")
        for w in report.warnings:
            lines.append(f"  {w}")
        lines.append("")

    if report.error:
        lines.append(f"Error: {report.error}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a dict suitable for ``json.dumps``."""
    results_list = []
    for r in report.results:
        entry: dict = {
            "doc_id": r.doc_id,
            "kind": r.kind.value,
            "action": r.action.value,
            "success": r.success,
        }
        if r.batch is not None:
            entry["batch"] = r.batch
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "url": report.url,
        "state": report.state.value,
        "failed_in": report.failed_in.value if report.failed_in else None,
        "error": report.error,
        "cancelled": report.cancelled,
        "temp_dir": report.temp_dir,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "updated": len(report.updated),
            "skipped": len(report.skipped),
            "conflicts": len(report.conflicts),
            "errors": len(report.errors),
            "batches": len(report.batches),
        },
        "batches": [b.model_dump() for b in report.batches],
        "warnings": list(report.warnings),
        "results": results_list,
    }
