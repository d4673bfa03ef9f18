"""
Pytest configuration and shared fixtures for the tinyci test suite.

This module provides common fixtures, a scripted fake process executor and
helpers shared by the unit and integration tests.
"""

import asyncio
import itertools
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
import toml

# Add src to Python path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tinyci.models.build import Project  # noqa: E402
from tinyci.models.config import PipelineConfig  # noqa: E402
from tinyci.storage.memory_store import MemoryBuildStore  # noqa: E402
from tinyci.validation import ProcessTimeoutError  # noqa: E402


# ============================================================================
# Test Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def sample_config_data():
    """Sample main configuration data for testing."""
    return {
        "paths": {"projects_config": "projects.toml"},
        "storage": {
            "backend": "memory",
            "data_dir": "data",
            "builds_collection": "builds",
            "projects_collection": "projects",
            "compression": "zstd",
            "reconnect_interval": 0.5,
        },
        "tasks": {
            "build_root_directory": "builds",
            "check_interval": 0.25,
            "install_command": "yarn install",
            "test_command": "yarn test",
            "output_flush_every": 10,
        },
        "triggers": {"host": "127.0.0.1", "port": 9099},
        "logging": {"level": "debug"},
    }


@pytest.fixture
def sample_projects_data():
    """Sample projects configuration for testing."""
    return {
        "projects": [
            {
                "name": "web",
                "git": "https://example.com/acme/web.git",
                "branch": "main",
                "trigger": "web-key",
                "timeout": 60000,
                "deployment_path": "/srv/web",
                "deployment_root": "dist",
            },
            {
                "name": "api",
                "git": "https://example.com/acme/api.git",
                "trigger": "api-key",
                "timeout": 120000,
                "test_command": "npm run test:ci",
            },
        ]
    }


@pytest.fixture
def config_files(temp_dir, sample_config_data, sample_projects_data):
    """Write config.toml and projects.toml and return the main config path."""
    config_path = temp_dir / "config.toml"
    with open(config_path, "w") as f:
        toml.dump(sample_config_data, f)
    with open(temp_dir / "projects.toml", "w") as f:
        toml.dump(sample_projects_data, f)
    return config_path


@pytest.fixture
def pipeline_config(temp_dir):
    """Pipeline configuration rooted in a temporary build directory."""
    return PipelineConfig(
        build_root_directory=temp_dir / "builds",
        check_interval=0.01,
        install_command="npm install",
        test_command="npm test",
        output_flush_every=5,
    )


@pytest.fixture
def sample_project():
    return Project(
        name="web",
        git="https://example.com/acme/web.git",
        branch="master",
        trigger="abc",
        timeout=60000,
    )


@pytest_asyncio.fixture
async def memory_store():
    """A connected in-memory build store."""
    store = MemoryBuildStore(reconnect_interval=0.05)
    await store.start()
    await store.when_ready()
    yield store
    await store.close()


# ============================================================================
# Fake Process Executor
# ============================================================================


_pids = itertools.count(40000)


class FakeHandle:
    """
    Scripted stand-in for ProcessHandle.

    Output is fed into real asyncio stream readers. A hanging handle only
    exits when terminated, which yields exit code -9. With pipes_open the
    command exits but its streams stay open until terminate(), like a shell
    whose background children still hold the pipes.
    """

    def __init__(
        self,
        command: str,
        executor: "FakeExecutor",
        exit_code: int = 0,
        stdout: bytes = b"",
        stderr: bytes = b"",
        hang: bool = False,
        command_timeout: bool = False,
        pipes_open: bool = False,
    ):
        self.command = command
        self.pid = next(_pids)
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: Optional[int] = None
        self.terminated = False
        self._executor = executor
        self._exit_code = exit_code
        self._hang = hang
        self._command_timeout = command_timeout
        self._exited = asyncio.Event()
        if stdout:
            self.stdout.feed_data(stdout)
        if stderr:
            self.stderr.feed_data(stderr)
        if not hang and not pipes_open:
            self._close_streams()

    def _close_streams(self) -> None:
        self.stdout.feed_eof()
        self.stderr.feed_eof()

    def terminate(self) -> list:
        self.terminated = True
        self._close_streams()
        if self.returncode is None and not self._exited.is_set():
            self._exit_code = -9
            self._exited.set()
        return []

    async def wait(self) -> int:
        try:
            if self._command_timeout:
                self.terminate()
                raise ProcessTimeoutError(self.command, 1.0)
            if not self._hang:
                self._exited.set()
            await self._exited.wait()
            self.returncode = self._exit_code
            return self._exit_code
        finally:
            self._executor.active -= 1


class FakeExecutor:
    """
    Process executor returning FakeHandles scripted by command substring.

    scripts maps a substring of the command to FakeHandle keyword arguments;
    errors maps a substring to an exception raised when spawning.
    """

    def __init__(self, scripts: Optional[Dict[str, Dict[str, Any]]] = None,
                 errors: Optional[Dict[str, Exception]] = None):
        self.scripts = scripts or {}
        self.errors = errors or {}
        self.commands: List[str] = []
        self.cwds: List[Path] = []
        self.timeouts: List[Optional[float]] = []
        self.handles: List[FakeHandle] = []
        self.active = 0
        self.max_active = 0

    async def execute(self, command: str, cwd: Path, timeout: Optional[float] = None) -> FakeHandle:
        self.commands.append(command)
        self.cwds.append(Path(cwd))
        self.timeouts.append(timeout)
        for pattern, error in self.errors.items():
            if pattern in command:
                raise error
        script = next((spec for pattern, spec in self.scripts.items() if pattern in command), {})
        handle = FakeHandle(command, self, **script)
        self.handles.append(handle)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        return handle

    def commands_matching(self, pattern: str) -> List[str]:
        return [command for command in self.commands if pattern in command]


@pytest.fixture
def fake_executor():
    return FakeExecutor()


async def wait_until(condition: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll condition() until it is true, failing the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
