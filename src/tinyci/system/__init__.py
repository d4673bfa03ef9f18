"""
System interaction utilities for running build commands.

This module provides:

- A cancellable asyncio Scheduler for polling loops and timeouts
- Shell command execution in a dedicated session with piped output
- Process tree termination built on psutil
- Command line preparation for pipeline stages
"""

from .commands import build_clone_command, check_git_installed
from .processes import ProcessExecutor, ProcessHandle, kill_process_tree, wait_for_termination
from .scheduler import Scheduler

__all__ = [
    # Scheduling
    "Scheduler",
    # Processes
    "ProcessExecutor",
    "ProcessHandle",
    "kill_process_tree",
    "wait_for_termination",
    # Commands
    "build_clone_command",
    "check_git_installed",
]
