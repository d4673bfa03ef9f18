"""
Command line preparation for the build pipeline stages.
"""

import shlex
import shutil
from pathlib import Path

from ..models.build import Build


def build_clone_command(build: Build, workspace: Path) -> str:
    """Shell command that clones the build's branch (with submodules) into workspace."""
    return (
        f"git clone --branch {shlex.quote(build.branch)} --recursive "
        f"{shlex.quote(build.git)} {shlex.quote(str(workspace))}"
    )


def check_git_installed() -> bool:
    """Check whether a git executable is available on PATH."""
    return shutil.which("git") is not None
