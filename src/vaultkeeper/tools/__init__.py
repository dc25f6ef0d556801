"""
Tools module for vaultkeeper.

Tools are the mutation primitives that policy steps invoke. Each ToolName has
exactly one registered Tool.

Architecture:
    - Tool: Abstract base class defining the primitive interface
    - ToolRegistry: Central registry for looking up primitives by name
    - ToolContext: Runtime context passed to primitives (vault root, policy)
    - ToolOutput: Standardized result format from a primitive

Each primitive is responsible for:
    1. Validating its parameters
    2. Reading, changing and writing the note
    3. Returning a standardized ToolOutput
"""

from vaultkeeper.tools.base import Tool, ToolContext, ToolOutput
from vaultkeeper.tools.registry import (
    ToolRegistry,
    default_registry,
    get_tool,
)
from vaultkeeper.tools.vault import VAULT_TOOLS, register_vault_tools

# Register built-in primitives
register_vault_tools()

__all__ = [
    "Tool",
    "ToolContext",
    "ToolOutput",
    "ToolRegistry",
    "VAULT_TOOLS",
    "default_registry",
    "get_tool",
    "register_vault_tools",
]
