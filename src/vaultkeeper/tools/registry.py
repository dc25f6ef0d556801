"""
Tool registry for vaultkeeper.

Maps primitive names (ToolName values) to Tool instances. The engine resolves
every step through a registry, so tests can swap in fakes by building their
own.

Usage:
    from vaultkeeper.tools.registry import default_registry

    tool = default_registry.get("vault_add_to_section")
"""

from typing import Iterator

from vaultkeeper.errors import ToolNotFoundError
from vaultkeeper.tools.base import Tool


class ToolRegistry:
    """
    Registry for looking up primitives by name.

    Attributes:
        _tools: Internal mapping of names to tool instances
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """
        Register a primitive, replacing any existing one with the same name.

        Raises:
            ValueError: If tool is None or has an empty name
        """
        if tool is None:
            msg = "Cannot register None as a tool"
            raise ValueError(msg)

        name = tool.name
        if not name:
            msg = "Tool must have a non-empty name"
            raise ValueError(msg)

        self._tools[name] = tool

    def get(self, name: str) -> Tool:
        """
        Look up a primitive by name.

        Raises:
            ToolNotFoundError: If no primitive with that name is registered
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(tool=name)
        return tool

    def has(self, name: str) -> bool:
        return name in self._tools

    def unregister(self, name: str) -> bool:
        """Remove a primitive. Returns False if it wasn't registered."""
        if name in self._tools:
            del self._tools[name]
            return True
        return False

    def list_tools(self) -> list[str]:
        """Registered names in sorted order."""
        return sorted(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __repr__(self) -> str:
        tools = ", ".join(self.list_tools())
        return f"<ToolRegistry: [{tools}]>"


# Registry used by the engine unless one is passed in
default_registry = ToolRegistry()


def get_tool(name: str) -> Tool:
    """
    Get a primitive from the default registry.

    Raises:
        ToolNotFoundError: If no primitive with that name is registered
    """
    return default_registry.get(name)
