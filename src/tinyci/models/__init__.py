"""
Data models for the build server.

Record models:
- Project and Build records with the BuildState lifecycle enumeration

Configuration models:
- Frozen per-component configuration sections and the AppConfig root
"""

from .build import Build, BuildState, Project, build_workspace_path
from .config import AppConfig, LoggingConfig, PipelineConfig, StoreConfig, TriggerConfig

__all__ = [
    # Records
    "Build",
    "BuildState",
    "Project",
    "build_workspace_path",
    # Configuration
    "AppConfig",
    "LoggingConfig",
    "PipelineConfig",
    "StoreConfig",
    "TriggerConfig",
]
