"""
In-process build store.

Records live in dictionaries for the lifetime of the server. Every value
crossing the store boundary is copied so callers never share state with the
stored records.
"""

import asyncio
import dataclasses
import logging
from typing import Dict, List, Optional

from ..models.build import Build, BuildState, Project
from .base import BuildStore

logger = logging.getLogger(__name__)


def _build_sort_key(build: Build):
    return (build.number, build.time)


class MemoryBuildStore(BuildStore):
    """Dictionary-backed BuildStore, mainly for tests and throwaway servers."""

    def __init__(self, reconnect_interval: float = 5.0):
        super().__init__(reconnect_interval)
        self._projects: Dict[str, Project] = {}
        self._builds: Dict[str, Build] = {}
        self._lock = asyncio.Lock()

    async def _connect(self) -> None:
        logger.debug("Using in-memory build store")

    async def _disconnect(self) -> None:
        pass

    async def _register_project(self, project: Project) -> Project:
        async with self._lock:
            existing = self._projects.get(project.trigger)
            if existing is not None:
                project = dataclasses.replace(project, id=existing.id, last_build=existing.last_build)
            self._projects[project.trigger] = dataclasses.replace(project)
            return dataclasses.replace(project)

    async def _list_projects(self) -> List[Project]:
        async with self._lock:
            return [dataclasses.replace(project) for project in self._projects.values()]

    async def _increment_and_fetch_project_counter(self, trigger: str) -> Optional[Project]:
        async with self._lock:
            project = self._projects.get(trigger)
            if project is None:
                return None
            project.last_build += 1
            return dataclasses.replace(project)

    async def _insert_build(self, build: Build) -> Build:
        async with self._lock:
            self._builds[build.id] = build.copy()
            return build

    async def _save_build(self, build: Build) -> None:
        async with self._lock:
            self._builds[build.id] = build.copy()

    async def _save_build_output(self, build_id: str, output: str) -> bool:
        async with self._lock:
            build = self._builds.get(build_id)
            if build is None:
                return False
            build.output = output
            return True

    async def _set_build_state(self, build_id: str, state: BuildState) -> Optional[Build]:
        async with self._lock:
            build = self._builds.get(build_id)
            if build is None:
                return None
            build.state = state
            return build.copy()

    async def _get_build(self, build_id: str) -> Optional[Build]:
        async with self._lock:
            build = self._builds.get(build_id)
            return build.copy() if build else None

    async def _find_builds(self, state: Optional[BuildState]) -> List[Build]:
        async with self._lock:
            builds = [b for b in self._builds.values() if state is None or b.state == state]
            return [b.copy() for b in sorted(builds, key=_build_sort_key)]

    async def _find_pending_build_ordered(self) -> Optional[Build]:
        async with self._lock:
            pending = [b for b in self._builds.values() if b.state == BuildState.PENDING]
            if not pending:
                return None
            return min(pending, key=_build_sort_key).copy()
