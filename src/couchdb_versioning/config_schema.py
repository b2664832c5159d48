"""Unified configuration schema for couchdb_versioning.

Defines Pydantic models for the YAML config file, with dedicated
sections for the CouchDB connection, sync options and logging, plus an
adapter that flattens them into fallbacks for ``load_config()``.

Usage:
    from couchdb_versioning.config_schema import build_config, to_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from .config import DEFAULT_BATCH_SIZE, MAX_BATCH_SIZE

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class CouchDBConfig(BaseModel):
    """CouchDB connection settings.

    All fields are optional so env vars and CLI args can supply them at
    runtime instead.
    """

    url: str | None = Field(
        default=None, description="Database URL (http://host:5984/db)"
    )
    username: str | None = Field(default=None, description="Username")
    password: str | None = Field(default=None, description="Password")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Options controlling what a run synchronizes."""

    source_dir: str | None = Field(
        default=None,
        description="Directory holding _design/, docs/ and .revTimestamps/",
    )
    init_design: bool = Field(
        default=False,
        description="Create local design directories from the database",
    )
    manage_docs: bool = Field(
        default=True, description="Synchronize the docs/ tree"
    )
    rebuild_indexes: bool = Field(
        default=True,
        description="Query the first view of every design doc after syncing",
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        ge=1,
        le=MAX_BATCH_SIZE,
        description="Documents per bulk batch (1-10000)",
    )
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Concurrent document reads within a batch (1-100)",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    couchdb: CouchDBConfig = Field(default_factory=CouchDBConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def to_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten the ``couchdb`` and ``sync`` sections into one dict.

    ``None`` values are dropped so they never mask a built-in default.
    """
    merged = {
        **unified.couchdb.model_dump(),
        **unified.sync.model_dump(),
    }
    return {k: v for k, v in merged.items() if v is not None}
