"""
Storage module for project and build records.

This module provides the BuildStore interface with two backends:
- ParquetBuildStore: columnar Parquet files managed with Polars
- MemoryBuildStore: in-process dictionaries for tests and ephemeral servers

All backend failures surface as StorageError.
"""

from .base import BuildStore
from .factory import create_store
from .memory_store import MemoryBuildStore
from .parquet_store import ParquetBuildStore

__all__ = ["BuildStore", "MemoryBuildStore", "ParquetBuildStore", "create_store"]
