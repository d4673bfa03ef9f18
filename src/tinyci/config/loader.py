"""
Configuration file loading utilities.

This module handles the low-level loading and parsing of TOML configuration
files: the main config.toml and the projects.toml registry seed.
"""

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..validation import ErrorSeverity, handle_config_error

logger = logging.getLogger(__name__)


def load_toml_file(file_path: Path, description: str = "configuration file") -> Dict[str, Any]:
    """
    Load and parse a TOML file with error handling.

    Args:
        file_path: Path to the TOML file to load
        description: Human-readable description for error messages

    Returns:
        Parsed TOML data as a dictionary

    Raises:
        FileNotFoundError: If the file doesn't exist
        tomllib.TOMLDecodeError: If the file is malformed
    """
    logger.info(f"Loading {description} from: {file_path}")

    if not file_path.exists():
        logger.error(f"{description} not found: {file_path}")
        raise FileNotFoundError(f"{description} not found: {file_path}")

    try:
        with open(file_path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        handle_config_error(
            error=e,
            context=f"parsing {description}",
            severity=ErrorSeverity.CRITICAL,
            reraise=True,
            logger=logger
        )
        raise


def load_main_config(config_path: Path) -> Dict[str, Any]:
    """Load the main configuration file (config.toml)."""
    return load_toml_file(config_path, "main configuration file")


def load_projects_config(projects_path: Path) -> List[Dict[str, Any]]:
    """
    Load the projects configuration file (projects.toml).

    Returns:
        List of project configuration dictionaries
    """
    projects_data = load_toml_file(projects_path, "projects configuration file")
    return projects_data.get("projects", [])


def get_projects_path(main_config_data: Dict[str, Any], config_dir: Path) -> Optional[Path]:
    """
    Resolve the projects.toml path from the `[paths]` section.

    Returns None when no projects file is configured; projects are then
    expected to exist in the store already.
    """
    paths_data = main_config_data.get("paths", {})
    projects_file = paths_data.get("projects_config")
    if not projects_file:
        return None
    return config_dir / projects_file
