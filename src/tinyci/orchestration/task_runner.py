"""
Task runner: turns triggers into pending builds and runs them one at a time.

The runner holds a single active-task slot. While the slot is empty it polls
the store for the next pending build; starting a build stops polling and
releasing the slot restarts it, so at most one build runs at any time.
"""

import asyncio
import logging
from typing import Optional

from ..models.build import Build, BuildState
from ..models.config import PipelineConfig
from ..storage.base import BuildStore
from ..system.processes import ProcessExecutor
from ..system.scheduler import Scheduler
from ..tasks.build_task import BuildTask
from ..validation import ErrorSeverity, StorageError, handle_error, handle_storage_error

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Single-flight scheduler of build tasks.
    """

    def __init__(self, store: BuildStore, config: PipelineConfig, executor: Optional[ProcessExecutor] = None):
        self.store = store
        self.config = config
        self.executor = executor
        self.current_task: Optional[BuildTask] = None
        self._drive_future: Optional[asyncio.Future] = None
        self._stopped = False
        self._poller = Scheduler(0, config.check_interval, self._check_pending_build, name="pending-builds")

    @property
    def is_busy(self) -> bool:
        return self.current_task is not None

    def start(self) -> None:
        """Start polling for pending builds."""
        self._stopped = False
        self._poller.start()
        logger.info(f"Task runner started, checking for pending builds every {self.config.check_interval:g}s")

    async def handle_trigger(self, key: str) -> Optional[Build]:
        """
        Create a pending build for the project registered under `key`.

        Unknown keys are logged and ignored. Storage failures are logged and
        never propagate to the trigger source.

        Returns:
            The inserted build, or None if nothing was queued
        """
        try:
            project = await self.store.increment_and_fetch_project_counter(key)
            if project is None:
                logger.info(f'No project registered for trigger "{key}"')
                return None
            build = Build.from_project(project)
            await self.store.insert_build(build)
        except StorageError as e:
            handle_storage_error(
                error=e,
                context=f'queueing build for trigger "{key}"',
                severity=ErrorSeverity.ERROR,
                reraise=False,
                logger=logger
            )
            return None
        logger.info(f'Project "{build.name}" build #{build.number}: queued')
        return build

    async def _check_pending_build(self) -> None:
        if self.current_task is not None:
            return
        try:
            build = await self.store.find_pending_build_ordered()
        except StorageError as e:
            handle_storage_error(
                error=e,
                context="looking up pending builds",
                severity=ErrorSeverity.WARNING,
                reraise=False,
                logger=logger
            )
            return
        if build is None or self.current_task is not None or self._stopped:
            return
        self._start_task(build)

    def _start_task(self, build: Build) -> None:
        self._poller.stop()
        task = BuildTask(
            build,
            self.config,
            persist=self._save_build,
            executor=self.executor,
            save_output=self._save_output,
        )
        task.on_state_changed(self._state_changed_handler)
        self.current_task = task
        logger.info(f"{task.label}: starting")
        self._drive_future = asyncio.ensure_future(self._drive(task))

    async def _drive(self, task: BuildTask) -> None:
        try:
            await task.run()
        except Exception as e:
            handle_error(
                error=e,
                context=f"{task.label} run",
                severity=ErrorSeverity.ERROR,
                reraise=False,
                logger=logger
            )
        finally:
            if self.current_task is task:
                logger.error(
                    f"{task.label}: ended as '{task.state}' without a persisted terminal state, releasing runner"
                )
                task.remove_all_listeners()
                await self._record_final_state(task)
                self._release(task)

    async def _record_final_state(self, task: BuildTask) -> None:
        # Keeps a build whose last write failed from being picked up again as pending
        try:
            await self.store.set_build_state(task.build.id, task.state)
        except StorageError as e:
            handle_storage_error(
                error=e,
                context=f"recording final state of {task.label}",
                severity=ErrorSeverity.ERROR,
                reraise=False,
                logger=logger
            )

    async def _save_build(self, build: Build) -> None:
        """State persist callback handed to the active task; a failure kills the build."""
        try:
            await self.store.save_build(build)
        except StorageError as e:
            logger.error(f'Project "{build.name}" build #{build.number}: persistence failed: {e}')
            task = self.current_task
            if task is not None and task.build is build:
                task.kill()
            raise

    async def _save_output(self, build: Build) -> None:
        """Output flush callback; failures propagate to the task, which logs them."""
        if not await self.store.save_build_output(build.id, build.output):
            logger.warning(f'Project "{build.name}" build #{build.number}: no stored record for output')

    async def _state_changed_handler(self, task: BuildTask, state: BuildState) -> None:
        try:
            await self.store.set_build_state(task.build.id, state)
        except StorageError as e:
            logger.error(f"{task.label}: could not record state '{state}', killing build: {e}")
            task.kill()
            return
        if task.is_finished and state.is_terminal:
            self._release(task)

    def _release(self, task: BuildTask) -> None:
        if self.current_task is not task:
            return
        task.remove_all_listeners()
        self.current_task = None
        logger.debug(f"{task.label}: released")
        if not self._stopped:
            self._poller.start()

    async def recover_interrupted_builds(self) -> int:
        """
        Mark builds left in progress by a previous process as errored.

        Returns:
            The number of builds recovered
        """
        builds = await self.store.find_builds(BuildState.IN_PROGRESS)
        for build in builds:
            await self.store.set_build_state(build.id, BuildState.ERROR)
            logger.warning(f'Project "{build.name}" build #{build.number}: interrupted by restart, marked as error')
        return len(builds)

    async def shutdown(self) -> None:
        """Stop polling and kill the active build, waiting for its final state."""
        self._stopped = True
        self._poller.stop()
        task = self.current_task
        if task is not None:
            logger.info(f"{task.label}: killing for shutdown")
            task.kill()
            await task.wait()
        if self._drive_future is not None:
            await asyncio.gather(self._drive_future, return_exceptions=True)
        logger.info("Task runner stopped")
