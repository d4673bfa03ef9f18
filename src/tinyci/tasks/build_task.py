"""
Build task: runs one build through the pipeline.

The pipeline is create workspace, clone, install, test, then the optional
pre-deployment script, post-deployment script and deployment copy. The task
owns the build's state machine:

    pending -> in progress -> success | failed | error | timeout | killed

Every state change is persisted through the `persist` callable before the
state-changed listeners are notified. A change whose persistence fails is not
announced. Output log flushes go through `save_output` instead; a failed flush
is logged and the build carries on.
"""

import asyncio
import codecs
import inspect
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TextIO, Tuple

import psutil

from ..models.build import Build, BuildState, build_workspace_path
from ..models.config import PipelineConfig
from ..system.commands import build_clone_command
from ..system.processes import ProcessExecutor, ProcessHandle, wait_for_termination
from ..system.scheduler import Scheduler
from ..validation import ErrorSeverity, ProcessTimeoutError, handle_error, handle_subprocess_error
from .output import BatchedOutput

logger = logging.getLogger(__name__)

StateHandler = Callable[["BuildTask", BuildState], Any]

# Bytes requested per read from a child's output pipe
READ_CHUNK_SIZE = 4096
# Seconds to wait for output pipes to drain after a command exits
PIPE_DRAIN_TIMEOUT = 5.0


class BuildTask:
    """
    Pipeline state machine for a single build.

    Cancellation (timeout or kill) is idempotent: whichever of stop(),
    the timeout and a failing stage happens first decides the terminal state.
    """

    def __init__(
        self,
        build: Build,
        config: PipelineConfig,
        persist: Callable[[Build], Awaitable[None]],
        executor: Optional[ProcessExecutor] = None,
        save_output: Optional[Callable[[Build], Awaitable[None]]] = None,
    ):
        self.build = build
        self.config = config
        self.executor = executor or ProcessExecutor(shell=config.shell)
        self.workspace = build_workspace_path(config.build_root_directory, build)
        self._persist = persist
        self._save_output = save_output or persist
        self._handlers: List[StateHandler] = []
        # Live processes, most recent first
        self._processes: List[ProcessHandle] = []
        self._finished = False
        self._finished_event = asyncio.Event()
        self._state_lock = asyncio.Lock()
        # Final transition, scheduled by stop()
        self._finish_future: Optional[asyncio.Future] = None
        self._timeout = Scheduler(build.timeout_seconds, 0, self._on_timeout, name=f"timeout-{build.id}")

    def __repr__(self) -> str:
        return f"BuildTask({self.label}, state={self.state})"

    @property
    def label(self) -> str:
        return f'Project "{self.build.name}" build #{self.build.number}'

    @property
    def state(self) -> BuildState:
        return self.build.state

    @property
    def is_finished(self) -> bool:
        return self._finished

    # --- Listeners ---

    def on_state_changed(self, handler: StateHandler) -> None:
        """Register handler(task, state); it may be a coroutine function."""
        self._handlers.append(handler)

    def remove_all_listeners(self) -> None:
        self._handlers.clear()

    async def _emit(self, state: BuildState) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(self, state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                handle_error(
                    error=e,
                    context=f"{self.label} state listener",
                    severity=ErrorSeverity.ERROR,
                    reraise=False,
                    logger=logger
                )

    # --- State machine ---

    async def _change_state(self, state: BuildState) -> bool:
        """Persist then announce a state. Returns False if persistence failed."""
        async with self._state_lock:
            if self._finished and not state.is_terminal:
                return False
            self.build.state = state
            try:
                await self._persist(self.build)
            except Exception as e:
                logger.error(f"{self.label}: could not persist state '{state}': {e}")
                return False
            await self._emit(state)
            return True

    def stop(self, state: BuildState) -> None:
        """
        End the build in the given terminal state.

        Kills every live process and schedules the final state transition.
        Does nothing once the task is finished.
        """
        if self._finished:
            return
        self._finished = True
        self._timeout.stop()
        signalled = []
        for handle in list(self._processes):
            try:
                signalled.extend(handle.terminate())
            except Exception as e:
                handle_subprocess_error(
                    error=e,
                    command=handle.command,
                    severity=ErrorSeverity.WARNING,
                    reraise=False,
                    logger=logger
                )
        self._finish_future = asyncio.ensure_future(self._finish(state, signalled))

    def kill(self) -> None:
        self.stop(BuildState.KILLED)

    async def wait(self) -> BuildState:
        """Wait until the terminal transition has been processed."""
        await self._finished_event.wait()
        if self._finish_future is not None:
            await self._finish_future
        return self.build.state

    async def _finish(self, state: BuildState, signalled: List[psutil.Process]) -> None:
        try:
            survivors = await self._run_blocking(wait_for_termination, signalled) if signalled else []
            if survivors:
                logger.warning(
                    f"{self.label}: {len(survivors)} processes still alive after kill: "
                    f"{[process.pid for process in survivors]}"
                )
            if await self._change_state(state):
                logger.info(f"{self.label}: {state}")
        finally:
            self._finished_event.set()

    def _on_timeout(self) -> None:
        if self._finished:
            return
        logger.warning(f"{self.label}: timed out after {self.build.timeout_seconds:g}s")
        self.stop(BuildState.TIMEOUT)

    # --- Pipeline ---

    def _stages(self) -> List[Tuple[str, Callable[[], Awaitable[Any]]]]:
        stages = [
            ("creating workspace", self._create_workspace),
            ("cloning", self._clone),
            ("installing dependencies", self._install),
            ("testing", self._test),
        ]
        if self.build.pre_deployment_script:
            stages.append(("running pre-deployment script", self._pre_deploy))
        if self.build.post_deployment_script:
            stages.append(("running post-deployment script", self._post_deploy))
        if self.build.deployment_path:
            stages.append(("deploying", self._deploy))
        return stages

    async def run(self) -> BuildState:
        """
        Run the pipeline to completion.

        Returns:
            The terminal state of the build
        """
        if not self._finished:
            self._timeout.start()
            try:
                await self._change_state(BuildState.IN_PROGRESS)
                for name, stage in self._stages():
                    if self._finished:
                        break
                    logger.info(f"{self.label}: {name}")
                    await stage()
                self.stop(BuildState.SUCCESS)
            except ProcessTimeoutError as e:
                logger.warning(f"{self.label}: {e}")
                self.stop(BuildState.TIMEOUT)
            except Exception as e:
                handle_error(
                    error=e,
                    context=f"{self.label} pipeline",
                    severity=ErrorSeverity.ERROR,
                    reraise=False,
                    logger=logger
                )
                self.stop(BuildState.ERROR)
        await self._finished_event.wait()
        return self.build.state

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def _create_workspace(self) -> None:
        await self._run_blocking(lambda: self.workspace.mkdir(parents=True, exist_ok=True))

    async def _clone(self) -> None:
        await self._exec_command(build_clone_command(self.build, self.workspace), self.workspace.parent)

    async def _install(self) -> None:
        await self._exec_command(self.build.install_command or self.config.install_command, self.workspace)

    async def _test(self) -> None:
        await self._exec_command(self.build.test_command or self.config.test_command, self.workspace)

    async def _pre_deploy(self) -> None:
        await self._exec_command(self.build.pre_deployment_script, self.workspace)

    async def _post_deploy(self) -> None:
        await self._exec_command(self.build.post_deployment_script, self.workspace)

    async def _deploy(self) -> None:
        source = (self.workspace / (self.build.deployment_root or ".")).resolve()
        target = Path(self.build.deployment_path)
        logger.info(f"{self.label}: copying {source} to {target}")
        await self._run_blocking(_copy_tree, source, target)

    # --- Processes ---

    async def _exec_command(self, command: str, cwd: Path) -> int:
        """
        Run one command, stream its output into the build log and wait for it.

        A non-zero exit code ends the build as failed.
        """
        handle = await self.executor.execute(command, cwd, timeout=self.build.timeout_seconds)
        self._processes.insert(0, handle)
        if self._finished:
            handle.terminate()

        output = BatchedOutput(self.build, self._flush_output, self.config.output_flush_every)
        pumps = [
            asyncio.ensure_future(self._pump(reader, mirror, output))
            for reader, mirror in ((handle.stdout, sys.stdout), (handle.stderr, sys.stderr))
            if reader is not None
        ]
        try:
            exit_code = await handle.wait()
        finally:
            if not await self._drain(pumps):
                # Background children still hold the pipes
                handle.terminate()
            if handle in self._processes:
                self._processes.remove(handle)

        if exit_code != 0 and not self._finished:
            logger.warning(f"{self.label}: '{command}' exited with code {exit_code}")
            self.stop(BuildState.FAILED)
        return exit_code

    async def _pump(self, reader: asyncio.StreamReader, mirror: TextIO, output: BatchedOutput) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                mirror.write(text)
                mirror.flush()
                await output.write(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            mirror.write(tail)
            await output.write(tail)
        await output.close()

    async def _drain(self, pumps: List[asyncio.Future]) -> bool:
        """Wait for the output pumps to finish. Returns False if any had to be abandoned."""
        if not pumps:
            return True
        done, pending = await asyncio.wait(pumps, timeout=PIPE_DRAIN_TIMEOUT)
        for pump in pending:
            logger.warning(f"{self.label}: output pipe still open after exit, abandoning it")
            pump.cancel()
        for pump in done:
            if not pump.cancelled() and pump.exception() is not None:
                handle_error(
                    error=pump.exception(),
                    context=f"{self.label} output stream",
                    severity=ErrorSeverity.WARNING,
                    reraise=False,
                    logger=logger
                )
        return not pending

    async def _flush_output(self) -> None:
        await self._save_output(self.build)


def _copy_tree(source: Path, target: Path) -> None:
    target.mkdir(parents=True, exist_ok=True)
    if source.is_dir():
        shutil.copytree(source, target, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target)
