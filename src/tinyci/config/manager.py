"""
Configuration management and singleton pattern.

This module provides the main configuration loading and management interface,
implementing a singleton pattern to ensure configuration is loaded only once.
"""

import logging
from pathlib import Path
from typing import Optional

from ..models.config import AppConfig
from ..validation import ErrorSeverity, handle_config_error
from .loader import get_projects_path, load_main_config, load_projects_config
from .validators import (
    validate_logging_config,
    validate_pipeline_config,
    validate_projects_config,
    validate_store_config,
    validate_trigger_config,
)

logger = logging.getLogger(__name__)

# --- Global Singleton for Configuration ---

_CONFIG: Optional[AppConfig] = None

# Default path of the main configuration file, relative to this script's location.
# Overridden by the CLI --config option and by tests.
_CONFIG_FILE_PATH = Path(__file__).parent.parent.parent.parent / "conf" / "config.toml"


def set_config_path(config_path: Path) -> None:
    """
    Set a custom configuration file path.

    Args:
        config_path: Path to the main config.toml file

    Note:
        Clears any cached configuration so the next get_config() call
        loads from the new path.
    """
    global _CONFIG_FILE_PATH, _CONFIG
    _CONFIG_FILE_PATH = Path(config_path)
    _CONFIG = None
    logger.info(f"Configuration path set to: {config_path}")


def clear_config_cache() -> None:
    """Clear the cached configuration, forcing a reload on next access."""
    global _CONFIG
    _CONFIG = None
    logger.debug("Configuration cache cleared")


def load_config(config_path: Path) -> AppConfig:
    """
    Load the complete application configuration from TOML files.

    Args:
        config_path: Path to the main config.toml file

    Returns:
        Fully validated AppConfig instance

    Raises:
        FileNotFoundError: If configuration files are missing
        ValidationError: If configuration validation fails
        tomllib.TOMLDecodeError: If TOML files are malformed
    """
    try:
        main_config_data = load_main_config(config_path)
        config_dir = config_path.parent.resolve()

        store_config = validate_store_config(main_config_data.get("storage", {}), config_dir)
        pipeline_config = validate_pipeline_config(main_config_data.get("tasks", {}), config_dir)
        trigger_config = validate_trigger_config(main_config_data.get("triggers", {}))
        logging_config = validate_logging_config(main_config_data.get("logging", {}))

        projects = []
        projects_path = get_projects_path(main_config_data, config_dir)
        if projects_path is not None:
            projects = validate_projects_config(load_projects_config(projects_path))

        app_config = AppConfig(
            store=store_config,
            pipeline=pipeline_config,
            triggers=trigger_config,
            logging=logging_config,
            projects=projects,
        )

        logger.info(f"Successfully loaded configuration with {len(projects)} projects")
        return app_config

    except FileNotFoundError as e:
        handle_config_error(
            error=e,
            context="loading configuration file",
            severity=ErrorSeverity.CRITICAL,
            reraise=True,
            logger=logger
        )
        raise
    except Exception as e:
        handle_config_error(
            error=e,
            context="processing configuration",
            severity=ErrorSeverity.CRITICAL,
            reraise=True,
            logger=logger
        )
        raise


def get_config() -> AppConfig:
    """
    Get the global application configuration, loading it if necessary.

    Returns:
        The singleton AppConfig instance
    """
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config(_CONFIG_FILE_PATH)
    return _CONFIG


def is_config_loaded() -> bool:
    """Check if configuration has been loaded and cached."""
    return _CONFIG is not None


def get_config_info() -> dict:
    """
    Get information about the current configuration state.

    Returns:
        Dictionary with configuration metadata
    """
    return {
        "config_loaded": is_config_loaded(),
        "config_path": str(_CONFIG_FILE_PATH),
        "projects_count": len(_CONFIG.projects) if _CONFIG else 0,
        "storage_backend": _CONFIG.store.backend if _CONFIG else None,
    }
