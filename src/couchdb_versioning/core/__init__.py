"""CouchDB client handle and async bridging shared by the sync engine."""

from .async_utils import gather_bounded, run_sync
from .client import CouchDBClient, connect

__all__ = ["CouchDBClient", "connect", "gather_bounded", "run_sync"]
