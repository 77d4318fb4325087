"""Record store adapters for OpenTag.

This module contains storage adapters that implement the RecordStorePort
interface for online tags.
"""

from opentag.adapters.storage.duckdb_adapter import DuckDBRecordStore
from opentag.adapters.storage.memory_adapter import InMemoryRecordStore

__all__ = ["DuckDBRecordStore", "InMemoryRecordStore"]
