"""
Factory for creating build store instances.
"""

import logging

from ..models.config import StoreConfig
from .base import BuildStore
from .memory_store import MemoryBuildStore
from .parquet_store import ParquetBuildStore

logger = logging.getLogger(__name__)


def create_store(config: StoreConfig) -> BuildStore:
    """
    Create a build store for the configured backend.

    Args:
        config: The `[storage]` configuration section

    Returns:
        BuildStore instance (not yet started)

    Raises:
        ValueError: If an unsupported backend is specified
    """
    if config.backend == "parquet":
        logger.debug(f"Creating ParquetBuildStore in {config.data_dir} with compression: {config.compression}")
        return ParquetBuildStore(
            data_dir=config.data_dir,
            builds_collection=config.builds_collection,
            projects_collection=config.projects_collection,
            compression=config.compression,
            reconnect_interval=config.reconnect_interval,
        )
    elif config.backend == "memory":
        logger.debug("Creating MemoryBuildStore")
        return MemoryBuildStore(reconnect_interval=config.reconnect_interval)
    else:
        raise ValueError(f"Unsupported storage backend: {config.backend}")
