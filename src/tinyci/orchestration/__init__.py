"""
Orchestration of builds.

Components:
- TaskRunner: single-flight scheduling of pending builds
- BuildServer: composition of store, runner and trigger intake
"""

from .build_server import BuildServer
from .task_runner import TaskRunner

__all__ = ["BuildServer", "TaskRunner"]
