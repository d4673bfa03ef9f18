"""
Batched persistence of a build's output log.
"""

import logging
from typing import Awaitable, Callable

from ..models.build import Build
from ..validation import ErrorSeverity, handle_storage_error

logger = logging.getLogger(__name__)


class BatchedOutput:
    """
    Appends output chunks to a build and persists it every Nth chunk.

    close() persists the tail, but only when chunks arrived since the last
    write; a close right on a batch boundary does not write twice. Both output
    streams of one command share an instance, so every stream close calls
    close().
    """

    def __init__(self, build: Build, flush: Callable[[], Awaitable[None]], flush_every: int = 5):
        self.build = build
        self.flush_every = flush_every
        self._flush = flush
        self.chunks = 0
        self.writes = 0
        self._pending = 0

    async def write(self, text: str) -> None:
        self.build.output += text
        self.chunks += 1
        self._pending += 1
        if self.chunks % self.flush_every == 0:
            await self._persist()

    async def close(self) -> None:
        if self._pending:
            await self._persist()

    async def _persist(self) -> None:
        self._pending = 0
        self.writes += 1
        try:
            await self._flush()
        except Exception as e:
            handle_storage_error(
                error=e,
                context=f"flushing output of build #{self.build.number}",
                severity=ErrorSeverity.WARNING,
                reraise=False,
                logger=logger
            )
