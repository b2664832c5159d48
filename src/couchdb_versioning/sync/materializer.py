"""Convert design documents to and from directory trees.

A design document is edited locally as a directory: every object becomes
a directory, every other value a file.  Where a value goes is decided by
the *path* that leads to it (the chain of keys from the document root),
matched against ``ROUTES`` -- a table of path suffixes:

- ``_id`` at the root: dropped, the directory name carries it.
- ``_rev`` at the root: dropped, the store assigns it.
- ``revTimestamp`` at the root: sent to the timestamp store.
- ``validate_doc_update`` at the root: ``<key>.js``.
- ``map`` or ``reduce`` at any depth: ``<key>.js``.

Anything else that is not an object is written as ``<key>.txt``.  Strings
are written verbatim; numbers, booleans, ``null`` and arrays as JSON.

``read_tree()`` folds such a directory back into an object, dropping the
``.js`` / ``.txt`` suffixes and using file contents as string values.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from couchdb_versioning.file_handler import read_file_with_encoding, write_file

logger = logging.getLogger(__name__)


class Route(Enum):
    DIRECTORY = "directory"
    SCRIPT = "script"
    TEXT = "text"
    TIMESTAMP = "timestamp"
    IGNORE = "ignore"


FILE_SUFFIXES = {Route.SCRIPT: ".js", Route.TEXT: ".txt"}


@dataclass(frozen=True)
class PathRule:
    suffix: tuple[str, ...]
    route: Route
    anchored: bool = False

    def matches(self, path: tuple[str, ...]) -> bool:
        if self.anchored:
            return path == self.suffix
        return path[-len(self.suffix) :] == self.suffix


ROUTES: tuple[PathRule, ...] = (
    PathRule(("_id",), Route.IGNORE, anchored=True),
    PathRule(("_rev",), Route.IGNORE, anchored=True),
    PathRule(("revTimestamp",), Route.TIMESTAMP, anchored=True),
    PathRule(("map",), Route.SCRIPT),
    PathRule(("reduce",), Route.SCRIPT),
    PathRule(("validate_doc_update",), Route.SCRIPT, anchored=True),
)


def route_for(path: tuple[str, ...], value: Any) -> Route:
    """Return where the value reached by *path* is written."""
    for rule in ROUTES:
        if rule.matches(path):
            return rule.route
    if isinstance(value, dict):
        return Route.DIRECTORY
    return Route.TEXT


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def materialize(
    doc: dict[str, Any],
    directory: Path,
    on_timestamp: Callable[[str], Any] | None = None,
) -> list[Path]:
    """Write *doc* as a directory tree rooted at *directory*.

    Args:
        doc: Design document body.
        directory: Target directory (created if needed).
        on_timestamp: Receives the ``revTimestamp`` value instead of it
            being written into the tree.

    Returns:
        Files written, in walk order.
    """
    written: list[Path] = []
    _walk(doc, (), directory, on_timestamp, written)
    logger.debug("Materialized %s (%d files)", directory, len(written))
    return written


def _walk(
    node: dict[str, Any],
    path: tuple[str, ...],
    directory: Path,
    on_timestamp: Callable[[str], Any] | None,
    written: list[Path],
) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for key, value in node.items():
        child = path + (key,)
        route = route_for(child, value)
        if route is Route.IGNORE:
            continue
        if route is Route.TIMESTAMP:
            if on_timestamp is not None and value:
                on_timestamp(str(value))
            continue
        if route is Route.DIRECTORY:
            _walk(value, child, directory / key, on_timestamp, written)
            continue
        target = directory / f"{key}{FILE_SUFFIXES[route]}"
        write_file(target, _render(value))
        written.append(target)


def read_tree(directory: Path) -> dict[str, Any]:
    """Fold a materialized directory back into an object.

    Hidden entries (``.DS_Store``, editor swap files) are ignored.
    """
    result: dict[str, Any] = {}
    for entry in sorted(directory.iterdir()):
        if entry.name.startswith("."):
            continue
        if entry.is_dir():
            result[entry.name] = read_tree(entry)
            continue
        key = entry.name
        if entry.suffix in (".js", ".txt"):
            key = entry.stem
        content, _ = read_file_with_encoding(entry)
        result[key] = content
    return result
