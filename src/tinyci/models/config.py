"""
Configuration data models.

Each component receives only its own section, passed at construction. All
configuration objects are frozen so no component can change another's view.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal, Optional

from .build import Project


@dataclass(frozen=True)
class StoreConfig:
    """
    Build store settings, loaded from the `[storage]` section.
    """

    # "parquet" persists tables under data_dir, "memory" keeps them in-process.
    backend: Literal["parquet", "memory"] = "parquet"
    data_dir: Path = Path("data")
    builds_collection: str = "builds"
    projects_collection: str = "projects"
    compression: Literal["snappy", "gzip", "brotli", "lz4", "zstd"] = "snappy"
    # Seconds between connection attempts until the store is ready.
    reconnect_interval: float = 5.0


@dataclass(frozen=True)
class PipelineConfig:
    """
    Build pipeline settings, loaded from the `[tasks]` section.
    """

    build_root_directory: Path = Path("builds")
    # Seconds between checks for pending builds.
    check_interval: float = 1.0
    install_command: str = "npm install"
    test_command: str = "npm test"
    # Output is persisted every Nth chunk and when a stream closes.
    output_flush_every: int = 5
    # Shell used to run commands; None means the platform default.
    shell: Optional[str] = None


@dataclass(frozen=True)
class TriggerConfig:
    """
    HTTP trigger listener settings, loaded from the `[triggers]` section.
    """

    host: str = "0.0.0.0"
    port: int = 8088


@dataclass(frozen=True)
class LoggingConfig:
    """Logging settings, loaded from the `[logging]` section."""

    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)-5.5s] %(name)s:%(filename)s:%(lineno)d\t %(message)s"


@dataclass(frozen=True)
class AppConfig:
    """
    The root configuration object that aggregates all loaded settings.
    """

    store: StoreConfig
    pipeline: PipelineConfig
    triggers: TriggerConfig
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    # Projects registered in the store at startup.
    projects: List[Project] = field(default_factory=list)
