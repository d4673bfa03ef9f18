"""
Build server: wires the store, the task runner and the trigger listener.
"""

import asyncio
import logging
from typing import Optional

from ..models.config import AppConfig
from ..storage import BuildStore, create_store
from ..system.processes import ProcessExecutor
from ..triggers.listener import TriggerListener
from ..validation import ErrorSeverity, StorageError, handle_storage_error
from .task_runner import TaskRunner

logger = logging.getLogger(__name__)


class BuildServer:
    """
    Composition root of a running server.

    run() serves HTTP triggers until request_shutdown() is called, then kills
    any active build and closes the store.
    """

    def __init__(
        self,
        config: AppConfig,
        store: Optional[BuildStore] = None,
        executor: Optional[ProcessExecutor] = None,
    ):
        self.config = config
        self.store = store or create_store(config.store)
        self.runner = TaskRunner(
            self.store,
            config.pipeline,
            executor=executor or ProcessExecutor(shell=config.pipeline.shell),
        )
        self.listener = TriggerListener(config.triggers, self.runner.handle_trigger)
        self._startup: Optional[asyncio.Future] = None

    async def start(self) -> None:
        """Connect the store and start the runner once it is ready."""
        await self.store.start()
        self._startup = asyncio.ensure_future(self._bootstrap())

    async def _bootstrap(self) -> None:
        await self.store.when_ready()
        try:
            for project in self.config.projects:
                registered = await self.store.register_project(project)
                logger.info(
                    f'Registered project "{registered.name}" (trigger "{registered.trigger}", '
                    f"last build #{registered.last_build})"
                )
            recovered = await self.runner.recover_interrupted_builds()
            if recovered:
                logger.warning(f"Marked {recovered} interrupted builds as error")
        except StorageError as e:
            handle_storage_error(
                error=e,
                context="server startup",
                severity=ErrorSeverity.ERROR,
                reraise=False,
                logger=logger
            )
        self.runner.start()

    async def run(self) -> None:
        await self.start()
        try:
            await self.listener.serve()
        finally:
            await self.shutdown()

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self.listener.stop()

    async def shutdown(self) -> None:
        if self._startup is not None and not self._startup.done():
            self._startup.cancel()
            await asyncio.gather(self._startup, return_exceptions=True)
        await self.runner.shutdown()
        await self.store.close()
        logger.info("Build server stopped")
