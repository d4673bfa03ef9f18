"""
Child process execution and process tree termination.

Commands run through the shell in their own session so that the whole tree
(shell, package manager, test runner and anything they spawn) can be killed
at once. Process tree inspection uses psutil.
"""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import List, Optional

import psutil

from ..validation import ProcessTimeoutError

logger = logging.getLogger(__name__)

# Seconds to wait for killed processes to disappear
TERMINATION_WAIT_TIMEOUT = 3.0


def _is_process_alive(process: psutil.Process) -> bool:
    """Safely check if a process is still alive and not a zombie."""
    try:
        if not process.is_running():
            return False
        return process.status() not in [psutil.STATUS_ZOMBIE, psutil.STATUS_DEAD]
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def _get_process_children(parent: psutil.Process) -> List[psutil.Process]:
    """Safely get all children of a process, handling race conditions."""
    children = []
    try:
        for child in parent.children(recursive=True):
            if _is_process_alive(child):
                children.append(child)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        # Parent or children may have terminated during enumeration
        pass
    return children


def _kill_process_group(pid: int) -> None:
    try:
        os.killpg(pid, signal.SIGKILL)
        logger.debug(f"Sent SIGKILL to process group {pid}")
    except ProcessLookupError:
        pass
    except PermissionError:
        logger.debug(f"No permission to kill process group {pid}")


def kill_process_tree(pid: int, name: str = "process") -> List[psutil.Process]:
    """
    Send SIGKILL to a process, its process group and all of its descendants.

    Children are collected before anything is signalled so that descendants
    which moved to another session are still reached.

    Args:
        pid: PID of the root process
        name: Human-readable name for log messages

    Returns:
        The processes that were signalled
    """
    if pid <= 0:
        logger.warning(f"Invalid PID {pid} for {name}, skipping termination")
        return []

    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        logger.debug(f"Process {name} (PID: {pid}) already terminated")
        _kill_process_group(pid)
        return []

    children = _get_process_children(parent)
    logger.info(f"Killing {name} (PID: {pid}) and {len(children)} children")

    _kill_process_group(pid)

    signalled = []
    for process in [parent] + children:
        try:
            process.kill()
            signalled.append(process)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning(f"Access denied sending SIGKILL to PID {process.pid}")
    return signalled


def wait_for_termination(processes: List[psutil.Process], timeout: float = TERMINATION_WAIT_TIMEOUT) -> List[psutil.Process]:
    """Wait for processes to terminate and return any that are still alive."""
    if not processes:
        return []
    _, still_alive = psutil.wait_procs(processes, timeout=timeout)
    return [process for process in still_alive if _is_process_alive(process)]


class ProcessHandle:
    """
    A running shell command with piped output.

    terminate() kills the whole process tree; wait() enforces the optional
    per-command timeout.
    """

    def __init__(self, process: asyncio.subprocess.Process, command: str, timeout: Optional[float] = None):
        self._process = process
        self.command = command
        self.timeout = timeout

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> Optional[asyncio.StreamReader]:
        return self._process.stdout

    @property
    def stderr(self) -> Optional[asyncio.StreamReader]:
        return self._process.stderr

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    def terminate(self) -> List[psutil.Process]:
        """
        Kill the command and everything it spawned.

        Once the shell has exited only its process group is signalled, which
        reaches background children it left behind.

        Returns:
            The descendants that were signalled; the shell itself is left to wait()
        """
        if self._process.returncode is not None:
            _kill_process_group(self.pid)
            return []
        signalled = kill_process_tree(self.pid, f"command '{self.command}'")
        return [process for process in signalled if process.pid != self.pid]

    async def wait(self) -> int:
        """
        Wait for the command to exit.

        Returns:
            The exit code (negative signal number when killed)

        Raises:
            ProcessTimeoutError: If the command outlives its timeout; the
                process tree is killed before raising
        """
        if self.timeout is None:
            return await self._process.wait()
        try:
            return await asyncio.wait_for(self._process.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Command '{self.command}' exceeded {self.timeout}s, killing it")
            self.terminate()
            await self._process.wait()
            raise ProcessTimeoutError(self.command, self.timeout)


class ProcessExecutor:
    """Spawns shell commands as ProcessHandles."""

    def __init__(self, shell: Optional[str] = None):
        self.shell = shell

    async def execute(self, command: str, cwd: Path, timeout: Optional[float] = None) -> ProcessHandle:
        """
        Start a shell command in its own session.

        Raises:
            OSError: If the process cannot be spawned (e.g. missing cwd)
        """
        logger.debug(f"Executing command: '{command}' in '{cwd}'")
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
            executable=self.shell,
        )
        logger.debug(f"Command started with PID: {process.pid}")
        return ProcessHandle(process, command, timeout)
