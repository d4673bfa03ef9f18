"""
Project and build records.

A Project is a registered repository configuration reachable through its
trigger key. A Build is a by-value snapshot of a Project taken when a trigger
fires, carrying its own sequence number, state and accumulated output.
"""

import os
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class BuildState(str, Enum):
    """Lifecycle states of a build."""

    PENDING = "pending"
    IN_PROGRESS = "in progress"
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"
    TIMEOUT = "timeout"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        """True for states after which no further transition occurs."""
        return self not in (BuildState.PENDING, BuildState.IN_PROGRESS)

    def __str__(self) -> str:
        return self.value


def _new_id() -> str:
    return uuid.uuid4().hex


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Project:
    """
    A repository registered for continuous integration.
    """

    name: str
    git: str
    trigger: str
    # Build timeout in milliseconds.
    timeout: int
    branch: str = "master"
    pre_deployment_script: Optional[str] = None
    post_deployment_script: Optional[str] = None
    deployment_path: Optional[str] = None
    deployment_root: Optional[str] = None
    # Per-project overrides of the pipeline-wide commands.
    install_command: Optional[str] = None
    test_command: Optional[str] = None
    last_build: int = 0
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class Build:
    """
    One execution record of a project's pipeline.
    """

    name: str
    git: str
    timeout: int
    number: int
    branch: str = "master"
    pre_deployment_script: Optional[str] = None
    post_deployment_script: Optional[str] = None
    deployment_path: Optional[str] = None
    deployment_root: Optional[str] = None
    install_command: Optional[str] = None
    test_command: Optional[str] = None
    project_id: Optional[str] = None
    time: int = field(default_factory=_now_ms)
    state: BuildState = BuildState.PENDING
    output: str = ""
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        self.state = BuildState(self.state)
        if self.output is None:
            self.output = ""

    @classmethod
    def from_project(cls, project: Project) -> "Build":
        """
        Snapshot a project into a new pending build.

        The build number is the project's (already incremented) counter. Later
        changes to the build never reach the project.
        """
        return cls(
            name=project.name,
            git=project.git,
            branch=project.branch or "master",
            timeout=project.timeout,
            number=project.last_build,
            pre_deployment_script=project.pre_deployment_script,
            post_deployment_script=project.post_deployment_script,
            deployment_path=project.deployment_path,
            deployment_root=project.deployment_root,
            install_command=project.install_command,
            test_command=project.test_command,
            project_id=project.id,
        )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout / 1000.0

    @property
    def repository_name(self) -> str:
        """Last path component of the git URL without a trailing '.git'."""
        name = os.path.basename(self.git.rstrip("/"))
        if name.endswith(".git"):
            name = name[:-len(".git")]
        return name

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Build":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def copy(self) -> "Build":
        return Build.from_dict(self.to_dict())


def build_workspace_path(build_root: Path, build: Build) -> Path:
    """
    Derive the workspace directory of a build.

    The sequence number makes the path unique per build, so two builds of the
    same project and branch never share a workspace.
    """
    branch = (build.branch or "master").replace("/", "_")
    return Path(build_root).resolve() / f"{build.repository_name}-{branch}-{build.number}"
