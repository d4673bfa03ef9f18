"""
Command-line interface for the tinyci build server.

This module provides the `tinyci` entry point: it loads configuration, sets
up logging, installs signal handlers for graceful shutdown and runs the build
server on an asyncio event loop until interrupted.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from ..config import get_config, set_config_path
from ..models.config import AppConfig
from ..orchestration import BuildServer
from ..system.commands import check_git_installed
from ..validation import ValidationError, handle_cli_error

# --- Logging Setup ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)-5.5s] %(name)s:%(filename)s:%(lineno)d\t %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


def configure_logging(app_config: AppConfig, level_override: Optional[str] = None) -> None:
    """Apply the `[logging]` section (or the --log-level override) to the root logger."""
    level = (level_override or app_config.logging.level).upper()
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(app_config.logging.format, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in root.handlers:
        handler.setFormatter(formatter)


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    error = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if error is not None:
        logger.error(f"{message}: {error}", exc_info=error)
    else:
        logger.error(message)


async def serve(app_config: AppConfig) -> None:
    """Run the build server until SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_log_loop_exception)

    server = BuildServer(app_config)
    shutdown_requested = False

    def signal_handler(signum: int) -> None:
        nonlocal shutdown_requested
        if shutdown_requested:
            logger.warning("Shutdown already in progress. Please be patient.")
            return
        logger.info(f"Signal {signal.strsignal(signum)} received. Initiating graceful shutdown...")
        shutdown_requested = True
        server.request_shutdown()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)

    await server.run()


def main_cli() -> None:
    """
    Main command-line interface for the tinyci build server.

    Raises:
        SystemExit: On configuration errors.
    """
    parser = argparse.ArgumentParser(
        description="Minimal continuous-integration server driven by HTTP triggers."
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="Path to the main config.toml file.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the log level from the configuration.",
    )
    args = parser.parse_args()

    if args.config:
        set_config_path(args.config)

    try:
        app_config = get_config()
    except (FileNotFoundError, ValidationError) as e:
        handle_cli_error(
            error=e,
            context="configuration loading",
            exit_code=1,
            logger=logger,
        )

    configure_logging(app_config, args.log_level)

    if not check_git_installed():
        logger.warning("git was not found on PATH; clone stages will fail")

    logger.info(f"Starting tinyci with {len(app_config.projects)} configured projects")
    asyncio.run(serve(app_config))
    logger.info("tinyci exited")


if __name__ == "__main__":
    main_cli()
