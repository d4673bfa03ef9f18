"""
Command-line interface for the tinyci package.

This module provides the main CLI entry point for the build server.
"""

from .main import main_cli

__all__ = [
    "main_cli",
]
