"""
Validation and error handling for the tinyci package.

This module provides configuration value validation and the error types
shared across the build server.
"""

from .exceptions import (
    ErrorSeverity,
    ProcessTimeoutError,
    StorageError,
    ValidationError,
    handle_cli_error,
    handle_config_error,
    handle_error,
    handle_storage_error,
    handle_subprocess_error,
)

from .validators import (
    resolve_path,
    validate_enum_choice,
    validate_non_empty_string,
    validate_optional_string,
    validate_positive_float,
    validate_positive_integer,
)

__all__ = [
    # Errors
    "ErrorSeverity",
    "ProcessTimeoutError",
    "StorageError",
    "ValidationError",
    "handle_cli_error",
    "handle_config_error",
    "handle_error",
    "handle_storage_error",
    "handle_subprocess_error",
    # Validators
    "resolve_path",
    "validate_enum_choice",
    "validate_non_empty_string",
    "validate_optional_string",
    "validate_positive_float",
    "validate_positive_integer",
]
