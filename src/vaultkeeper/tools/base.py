"""
Base classes for the primitive interface.

This module defines the core abstractions for vault primitives:
- Tool: Abstract base class that every primitive implements
- ToolContext: Runtime context passed to primitives during execution
- ToolOutput: Standardized result format from primitive execution

Design Principles:
    - Tools are stateless - all state comes from ToolContext and the vault
    - Tools receive fully interpolated parameters
    - Tools return ToolOutput - never raise exceptions for expected failures
    - Tools are registered by name - the registry handles lookup
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class ToolOutput:
    """
    Standardized output from a primitive.

    Attributes:
        success: Whether the primitive completed
        message: Human-readable outcome
        path: Vault-relative path the primitive touched (if any)
        preview: Short excerpt of what changed
        outputs: Values published to later steps as steps.<id>.<key>
    """

    success: bool
    message: str = ""
    path: str | None = None
    preview: str | None = None
    outputs: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        message: str,
        path: str | None = None,
        preview: str | None = None,
        **outputs: Any,
    ) -> "ToolOutput":
        """Create a successful output."""
        return cls(success=True, message=message, path=path, preview=preview, outputs=outputs)

    @classmethod
    def fail(cls, message: str, path: str | None = None) -> "ToolOutput":
        """Create a failed output."""
        return cls(success=False, message=message, path=path)


@dataclass
class ToolContext:
    """
    Runtime context passed to primitives.

    Attributes:
        vault_path: Root directory of the vault
        policy_name: Policy being executed (None for direct calls)
        metadata: Additional context-specific metadata
    """

    vault_path: Path
    policy_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Tool(ABC):
    """
    Abstract base class for all vault primitives.

    Subclasses must implement:
    - name property: Returns the primitive's identifier (a ToolName value)
    - execute(): Performs the mutation

    Example:
        class TouchTool(Tool):
            @property
            def name(self) -> str:
                return "vault_touch"

            def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
                return ToolOutput.ok("touched", path=args["path"])
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        The unique identifier for this primitive.

        Returns:
            The primitive's name, e.g. "vault_add_to_section"
        """
        ...

    @property
    def description(self) -> str:
        return f"Tool: {self.name}"

    @abstractmethod
    def execute(self, args: dict[str, Any], context: ToolContext) -> ToolOutput:
        """
        Execute the primitive with the given parameters.

        Args:
            args: Interpolated step parameters
            context: Runtime context with the vault root

        Returns:
            ToolOutput indicating success or failure

        Note:
            - Do NOT raise exceptions for expected failures (missing note, etc.)
            - Use ToolOutput.fail() for expected errors
        """
        ...

    def validate_args(self, args: dict[str, Any]) -> list[str]:
        """
        Validate parameters before execution.

        Returns:
            List of validation error messages (empty if valid)
        """
        return []

    def __repr__(self) -> str:
        return f"<Tool: {self.name}>"
