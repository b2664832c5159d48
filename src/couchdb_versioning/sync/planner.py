"""Batch planning for bulk documents."""

from __future__ import annotations

from typing import Sequence, TypeVar

from couchdb_versioning.config import DEFAULT_BATCH_SIZE

T = TypeVar("T")


def plan(
    items: Sequence[T], batch_size: int = DEFAULT_BATCH_SIZE
) -> list[list[T]]:
    """Split *items* into contiguous batches of at most *batch_size*.

    Input order is preserved and every batch except the last holds
    exactly *batch_size* items.

    Raises:
        ValueError: If *batch_size* is less than 1.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [
        list(items[i : i + batch_size])
        for i in range(0, len(items), batch_size)
    ]
