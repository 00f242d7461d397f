"""Registry mapping capability names to their descriptors."""

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator

from agentloop.exceptions import CapabilityNotFound, DuplicateCapabilityError, RegistryFrozenError
from agentloop.tool.base import SchematicTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """An explicitly constructed set of capabilities.

    Capabilities are registered between runs. While a run is in progress the
    owning agent freezes the registry, so it may be shared read-only by any
    number of concurrently running agents.
    """

    def __init__(self, tools: Iterable[SchematicTool] = ()):
        self._tools: dict[str, SchematicTool] = {}
        self._freeze_count = 0
        for t in tools:
            self.register(t)

    def register(self, tool: SchematicTool) -> SchematicTool:
        if self.frozen:
            raise RegistryFrozenError(tool.name)
        tool.check()
        if tool.name in self._tools:
            raise DuplicateCapabilityError(tool.name)
        self._tools[tool.name] = tool
        logger.debug("Registered capability %s", tool.name)
        return tool

    def unregister(self, name: str) -> SchematicTool:
        if self.frozen:
            raise RegistryFrozenError(name)
        if name not in self._tools:
            raise CapabilityNotFound(name, self.names())
        return self._tools.pop(name)

    def get(self, name: str) -> SchematicTool:
        try:
            return self._tools[name]
        except KeyError:
            raise CapabilityNotFound(name, self.names()) from None

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def copy(self) -> 'ToolRegistry':
        return ToolRegistry(self._tools.values())

    @property
    def frozen(self) -> bool:
        return self._freeze_count > 0

    @contextmanager
    def freeze(self) -> Iterator['ToolRegistry']:
        """Reject modifications for the duration of the block."""
        self._freeze_count += 1
        try:
            yield self
        finally:
            self._freeze_count -= 1

    def describe(self) -> list[dict]:
        return [t.describe() for t in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[SchematicTool]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)
