"""What a capability can reach while it runs.

A capability receives an :class:`ExecutionContext` as its first argument. It
can report progress at a log level and hand back text meant for the end user
through :meth:`ExecutionContext.output`. Neither affects the observation the
reasoning engine sees.
"""

import logging
from abc import ABC, abstractmethod


class ExecutionContext(ABC):
    @abstractmethod
    async def emit(self, level: int, content: str):
        """Report *content* at a :mod:`logging` level."""

    @abstractmethod
    async def output(self, content: str):
        """Hand *content* to the end user."""

    async def debug(self, content: str):
        await self.emit(logging.DEBUG, content)

    async def info(self, content: str):
        await self.emit(logging.INFO, content)

    async def warning(self, content: str):
        await self.emit(logging.WARNING, content)

    async def error(self, content: str):
        await self.emit(logging.ERROR, content)


class LoggingExecutionContext(ExecutionContext):
    """Sends messages to a logger and keeps user output in :attr:`outputs`."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)
        self.outputs: list[str] = []

    async def emit(self, level: int, content: str):
        self._logger.log(level, content)

    async def output(self, content: str):
        self.outputs.append(content)
        self._logger.info(content)
