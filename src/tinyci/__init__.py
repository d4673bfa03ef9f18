"""
tinyci: a minimal continuous-integration server.

HTTP triggers enqueue builds for registered projects; builds run one at a
time through clone, install, test and optional deployment stages, with a
per-build timeout and forced termination of the whole process tree.

The package is organized into specialized modules:
- config: Configuration loading and validation
- models: Project, build and configuration records
- validation: Input validation and error handling
- system: Scheduling, process execution and process tree termination
- storage: Build store backends
- tasks: The build pipeline and output log batching
- orchestration: The single-flight task runner and the server composition
- triggers: HTTP trigger intake
- cli: Command-line interface

Usage:
    From command line:
        tinyci --config conf/config.toml

    Programmatically:
        from tinyci import BuildServer, get_config
        server = BuildServer(get_config())
        asyncio.run(server.run())
"""

# Main interfaces
from .config import get_config, clear_config_cache, set_config_path
from .orchestration import BuildServer, TaskRunner
from .cli import main_cli

# Model classes for external use
from .models import (
    AppConfig,
    Build,
    BuildState,
    LoggingConfig,
    PipelineConfig,
    Project,
    StoreConfig,
    TriggerConfig,
)

# Components
from .storage import BuildStore, MemoryBuildStore, ParquetBuildStore, create_store
from .tasks import BuildTask
from .system import ProcessExecutor, Scheduler

# Validation utilities
from .validation import ProcessTimeoutError, StorageError, ValidationError

__version__ = "1.0.0"

__all__ = [
    # Main interfaces
    "get_config",
    "clear_config_cache",
    "set_config_path",
    "BuildServer",
    "TaskRunner",
    "main_cli",
    # Models
    "AppConfig",
    "Build",
    "BuildState",
    "LoggingConfig",
    "PipelineConfig",
    "Project",
    "StoreConfig",
    "TriggerConfig",
    # Components
    "BuildStore",
    "MemoryBuildStore",
    "ParquetBuildStore",
    "create_store",
    "BuildTask",
    "ProcessExecutor",
    "Scheduler",
    # Validation
    "ProcessTimeoutError",
    "StorageError",
    "ValidationError",
]
