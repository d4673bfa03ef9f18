"""
Configuration management for the tinyci package.

This module provides a clean interface for loading, validating, and accessing
configuration data from TOML files with singleton pattern management.
"""

from .manager import (
    clear_config_cache,
    get_config,
    get_config_info,
    is_config_loaded,
    load_config,
    set_config_path,
)

from .loader import (
    get_projects_path,
    load_main_config,
    load_projects_config,
    load_toml_file,
)
from .validators import (
    validate_logging_config,
    validate_pipeline_config,
    validate_projects_config,
    validate_store_config,
    validate_trigger_config,
)

__all__ = [
    # Main interface
    "get_config",
    "set_config_path",
    "clear_config_cache",
    "is_config_loaded",
    "get_config_info",
    "load_config",
    # Advanced interface
    "load_toml_file",
    "load_main_config",
    "load_projects_config",
    "get_projects_path",
    "validate_store_config",
    "validate_pipeline_config",
    "validate_trigger_config",
    "validate_logging_config",
    "validate_projects_config",
]
