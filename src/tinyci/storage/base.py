"""
Abstract base class for build store implementations.

This module defines the BuildStore abstract base class which serves as the
interface for all storage backends. The public coroutines wait until the
backend is ready, delegate to the backend-specific `_`-prefixed methods and
wrap any backend failure in StorageError.

The interface includes methods for:
- Registering projects and atomically advancing their build counters
- Inserting, saving and querying build records
- Writing a build's output log on its own
- Selecting the next pending build in build-number order
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional

from ..models.build import Build, BuildState, Project
from ..system.scheduler import Scheduler
from ..validation import StorageError

logger = logging.getLogger(__name__)


class BuildStore(ABC):
    """
    Persistent storage for projects and builds.

    Connection is attempted right away on start() and retried every
    reconnect_interval seconds until it succeeds. Operations issued before
    then wait for readiness.
    """

    def __init__(self, reconnect_interval: float = 5.0):
        self.reconnect_interval = reconnect_interval
        self._ready = asyncio.Event()
        self._connector = Scheduler(0, reconnect_interval, self._try_connect, name="store-connect")

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def start(self) -> None:
        """Begin connecting in the background."""
        self._connector.start()

    async def when_ready(self) -> None:
        """Wait until the backend is connected."""
        await self._ready.wait()

    async def close(self) -> None:
        self._connector.stop()
        if self._ready.is_set():
            self._ready.clear()
            await self._disconnect()
            logger.info("Build store closed")

    async def _try_connect(self) -> None:
        try:
            await self._connect()
        except Exception as e:
            logger.warning(f"Build store not ready, retrying in {self.reconnect_interval}s: {e}")
            return
        self._connector.stop()
        self._ready.set()
        logger.info(f"Build store ready ({type(self).__name__})")

    async def _call(self, operation: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        await self.when_ready()
        try:
            return await func(*args)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Build store operation '{operation}' failed: {e}", operation=operation) from e

    # --- Public interface ---

    async def register_project(self, project: Project) -> Project:
        """
        Insert or update a project, keyed by its trigger.

        An already registered project keeps its id and build counter.
        """
        return await self._call("register_project", self._register_project, project)

    async def list_projects(self) -> List[Project]:
        return await self._call("list_projects", self._list_projects)

    async def increment_and_fetch_project_counter(self, trigger: str) -> Optional[Project]:
        """
        Atomically increment the build counter of the project with this trigger.

        Returns:
            The project after the increment, or None if no project matches
        """
        return await self._call("increment_and_fetch_project_counter", self._increment_and_fetch_project_counter, trigger)

    async def insert_build(self, build: Build) -> Build:
        return await self._call("insert_build", self._insert_build, build)

    async def save_build(self, build: Build) -> None:
        """Replace the stored record that has the build's id."""
        await self._call("save_build", self._save_build, build)

    async def save_build_output(self, build_id: str, output: str) -> bool:
        """
        Replace only the output log of a stored build.

        Returns:
            False if no build has this id
        """
        return await self._call("save_build_output", self._save_build_output, build_id, output)

    async def set_build_state(self, build_id: str, state: BuildState) -> Optional[Build]:
        """
        Update only the state of a stored build.

        Returns:
            The updated build, or None if no build has this id
        """
        return await self._call("set_build_state", self._set_build_state, build_id, BuildState(state))

    async def get_build(self, build_id: str) -> Optional[Build]:
        return await self._call("get_build", self._get_build, build_id)

    async def find_builds(self, state: Optional[BuildState] = None) -> List[Build]:
        """All builds, optionally restricted to one state, in build-number order."""
        return await self._call("find_builds", self._find_builds, BuildState(state) if state else None)

    async def find_pending_build_ordered(self) -> Optional[Build]:
        """
        The pending build with the lowest number (ties broken by creation time).
        """
        return await self._call("find_pending_build_ordered", self._find_pending_build_ordered)

    # --- Backend interface ---

    @abstractmethod
    async def _connect(self) -> None:
        """Open the backend. Raising here schedules a retry."""
        pass

    @abstractmethod
    async def _disconnect(self) -> None:
        pass

    @abstractmethod
    async def _register_project(self, project: Project) -> Project:
        pass

    @abstractmethod
    async def _list_projects(self) -> List[Project]:
        pass

    @abstractmethod
    async def _increment_and_fetch_project_counter(self, trigger: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def _insert_build(self, build: Build) -> Build:
        pass

    @abstractmethod
    async def _save_build(self, build: Build) -> None:
        pass

    @abstractmethod
    async def _save_build_output(self, build_id: str, output: str) -> bool:
        pass

    @abstractmethod
    async def _set_build_state(self, build_id: str, state: BuildState) -> Optional[Build]:
        pass

    @abstractmethod
    async def _get_build(self, build_id: str) -> Optional[Build]:
        pass

    @abstractmethod
    async def _find_builds(self, state: Optional[BuildState]) -> List[Build]:
        pass

    @abstractmethod
    async def _find_pending_build_ordered(self) -> Optional[Build]:
        pass
