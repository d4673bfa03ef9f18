"""
Cancellable periodic scheduling on the asyncio event loop.

A Scheduler runs an action after an initial delay and then repeatedly at a
fixed interval until stopped. An interval of zero or less makes it a
one-shot timer. At most one loop is ever active per scheduler.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from ..validation import ErrorSeverity, handle_error

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Periodic (or one-shot) action runner.

    stop() may be called from within the action itself; the loop then exits
    once the action returns instead of cancelling the running action.
    """

    def __init__(self, delay: float, interval: float, action: Callable[[], Any], name: str = "scheduler"):
        self.delay = delay
        self.interval = interval
        self.action = action
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop. Does nothing if the scheduler is already running."""
        if self.is_running:
            return
        self._task = asyncio.ensure_future(self._run())
        logger.debug(f"Scheduler '{self.name}' started (delay={self.delay}s, interval={self.interval}s)")

    def stop(self) -> None:
        """Stop the loop. Safe to call repeatedly and from inside the action."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        if task is not _current_task():
            task.cancel()
        logger.debug(f"Scheduler '{self.name}' stopped")

    async def _run(self) -> None:
        me = asyncio.current_task()
        try:
            if self.delay > 0:
                await asyncio.sleep(self.delay)
            while self._task is me:
                await self._invoke()
                if self.interval <= 0 or self._task is not me:
                    break
                await asyncio.sleep(self.interval)
        finally:
            if self._task is me:
                self._task = None

    async def _invoke(self) -> None:
        try:
            result = self.action()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            handle_error(
                error=e,
                context=f"scheduled action '{self.name}'",
                severity=ErrorSeverity.ERROR,
                reraise=False,
                logger=logger
            )


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
