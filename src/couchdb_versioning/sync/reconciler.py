"""Per-document reconciliation.

Decides whether a local document should overwrite its remote copy.  The
authority for "which side is newer" is the logical timestamp this engine
cached locally on its last confirmed write, compared with the
``revTimestamp`` stamped on the remote copy.  CouchDB's own ``_rev``
changes on every write, including ours, so it cannot tell "behind a
concurrent writer" apart from "behind our own last push".
"""

from __future__ import annotations

from typing import Any

from couchdb_versioning.sync.models import Decision

TIMESTAMP_FIELD = "revTimestamp"
REVISION_FIELD = "_rev"
METADATA_FIELDS = (TIMESTAMP_FIELD, REVISION_FIELD)


def strip_metadata(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a shallow copy of *doc* without ``revTimestamp`` and ``_rev``."""
    return {k: v for k, v in doc.items() if k not in METADATA_FIELDS}


def json_equal(a: Any, b: Any) -> bool:
    """Structural equality with JSON semantics.

    Unlike ``==``, booleans never equal numbers (``True`` vs ``1``).
    Integers and floats with the same value are equal.  Object key order
    is irrelevant; array order is significant.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, dict):
        if not isinstance(b, dict) or a.keys() != b.keys():
            return False
        return all(json_equal(a[k], b[k]) for k in a)
    if isinstance(a, list):
        if not isinstance(b, list) or len(a) != len(b):
            return False
        return all(json_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


def remote_exists(remote: dict[str, Any] | None) -> bool:
    """False for ``None`` and for CouchDB ``not_found`` / deleted markers."""
    if remote is None:
        return False
    if remote.get("error") == "not_found" or remote.get("_deleted"):
        return False
    return True


def decide(
    local: dict[str, Any],
    remote: dict[str, Any] | None,
    stored_timestamp: str | None,
    now: str,
) -> Decision:
    """Decide what to do with one local document.

    Args:
        local: Local document. ``_id`` must already be set.
        remote: Current remote document, or ``None`` / a ``not_found``
            marker when absent.
        stored_timestamp: Timestamp cached for this key on our last write.
        now: Timestamp of the current run.

    Returns:
        ``SKIP`` when a timestamp is stored, the remote is stamped and
        their content matches; ``UPDATE`` when the remote is absent,
        unstamped, or not newer than the effective local timestamp;
        otherwise ``CONFLICT``.
    """
    if not remote_exists(remote):
        return Decision.update(now, None)

    remote_timestamp = remote.get(TIMESTAMP_FIELD)

    # an unstamped remote is stamped even when its content already matches
    if (
        stored_timestamp
        and remote_timestamp
        and json_equal(strip_metadata(local), strip_metadata(remote))
    ):
        return Decision.skip()

    effective = stored_timestamp or now

    if not remote_timestamp or effective >= remote_timestamp:
        return Decision.update(now, remote.get(REVISION_FIELD))

    return Decision.conflict(effective, remote_timestamp)


def stamp(
    local: dict[str, Any], decision: Decision
) -> dict[str, Any]:
    """Return the document to write for an ``UPDATE`` decision.

    The new timestamp is attached and the remote ``_rev`` carried so the
    store accepts the overwrite.  New documents are written without
    ``_rev``.
    """
    doc = strip_metadata(local)
    doc[TIMESTAMP_FIELD] = decision.stamped_timestamp
    if decision.revision is not None:
        doc[REVISION_FIELD] = decision.revision
    return doc
