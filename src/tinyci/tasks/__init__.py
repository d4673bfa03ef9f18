"""
Build execution: the per-build pipeline and its batched output log.
"""

from .build_task import BuildTask
from .output import BatchedOutput

__all__ = ["BuildTask", "BatchedOutput"]
