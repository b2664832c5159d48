"""Shared pytest fixtures for couchdb-versioning tests."""

from __future__ import annotations

import json
import threading
from typing import IO, Any

import pytest

from couchdb_versioning.config import Config
from couchdb_versioning.exceptions import StoreUnavailable

NOW = "2026-03-01T12:00:00.000Z"


class FakeCouchClient:
    """Minimal CouchDBClient replacement for testing.

    Simulates one database with an in-memory dict.  Revisions follow
    CouchDB's ``<n>-<suffix>`` shape and are checked on every write, so a
    stale or missing ``_rev`` is rejected the way the real server does.
    """

    def __init__(self, docs: dict[str, dict[str, Any]] | None = None) -> None:
        self.db_name = "app"
        self.db_url = "http://localhost:5984/app"
        self.docs: dict[str, dict[str, Any]] = {}
        self.insert_calls: list[tuple[str, dict[str, Any]]] = []
        self.bulk_calls: list[list[dict[str, Any]]] = []
        self.view_calls: list[tuple[str, str, dict[str, Any]]] = []
        self.fetch_error: Exception | None = None
        self.bulk_error: Exception | None = None
        self.view_error: Exception | None = None
        self._lock = threading.Lock()
        for doc_id, doc in (docs or {}).items():
            self.seed(doc_id, doc)

    def seed(self, doc_id: str, doc: dict[str, Any]) -> dict[str, Any]:
        """Store *doc* as if another client had written it."""
        stored = dict(doc, _id=doc_id)
        stored["_rev"] = self._next_rev(doc_id)
        self.docs[doc_id] = stored
        return stored

    def _next_rev(self, doc_id: str) -> str:
        current = self.docs.get(doc_id, {}).get("_rev", "0-x")
        return f"{int(current.split('-')[0]) + 1}-fake"

    def _write(self, doc_id: str, doc: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            current = self.docs.get(doc_id)
            if current is not None and doc.get("_rev") != current["_rev"]:
                return {
                    "id": doc_id,
                    "error": "conflict",
                    "reason": "Document update conflict.",
                }
            stored = dict(doc, _id=doc_id)
            stored["_rev"] = self._next_rev(doc_id)
            self.docs[doc_id] = stored
            return {"ok": True, "id": doc_id, "rev": stored["_rev"]}

    def all_docs(
        self,
        startkey: str | None = None,
        endkey: str | None = None,
        include_docs: bool = True,
    ) -> list[dict[str, Any]]:
        rows = []
        for doc_id in sorted(self.docs):
            if startkey is not None and doc_id < startkey:
                continue
            if endkey is not None and doc_id > endkey:
                continue
            doc = self.docs[doc_id]
            row = {"id": doc_id, "key": doc_id, "value": {"rev": doc["_rev"]}}
            if include_docs:
                row["doc"] = dict(doc)
            rows.append(row)
        return rows

    def fetch(self, keys: list[str]) -> list[dict[str, Any]]:
        if self.fetch_error is not None:
            raise self.fetch_error
        rows = []
        for key in keys:
            doc = self.docs.get(key)
            if doc is None:
                rows.append({"key": key, "error": "not_found"})
            else:
                rows.append(
                    {
                        "id": key,
                        "key": key,
                        "value": {"rev": doc["_rev"]},
                        "doc": dict(doc),
                    }
                )
        return rows

    def insert(
        self, doc: dict[str, Any], doc_id: str | None = None
    ) -> dict[str, Any]:
        doc_id = doc_id or doc["_id"]
        self.insert_calls.append((doc_id, dict(doc)))
        result = self._write(doc_id, doc)
        if "error" in result:
            raise StoreUnavailable(f"PUT {doc_id} returned 409: {result['reason']}")
        return result

    def bulk_docs(self, stream: IO[bytes]) -> list[dict[str, Any]]:
        payload = json.load(stream)
        self.bulk_calls.append(payload["docs"])
        if self.bulk_error is not None:
            raise self.bulk_error
        return [self._write(doc["_id"], doc) for doc in payload["docs"]]

    def view(
        self, design_name: str, view_name: str, **params: Any
    ) -> dict[str, Any]:
        self.view_calls.append((design_name, view_name, params))
        if self.view_error is not None:
            raise self.view_error
        return {"total_rows": 0, "offset": 0, "rows": []}


@pytest.fixture
def mock_config(tmp_path):
    """Create a Config pointing at a temp source tree."""
    return Config(
        url="http://localhost:5984/app",
        source_dir=str(tmp_path / "couchdb"),
    )


@pytest.fixture
def fake_client():
    return FakeCouchClient()


@pytest.fixture
def clock():
    """A fixed clock returning ``NOW``."""
    return lambda: NOW


@pytest.fixture
def write_json():
    """Factory fixture writing a JSON document file."""

    def _write(path, doc):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(doc), encoding="utf-8")
        return path

    return _write
