"""
Exception hierarchy for vaultkeeper.

All vaultkeeper exceptions inherit from VaultkeeperError, allowing callers to
catch every library-specific exception with a single except clause.

Exception Categories:
    - PolicyValidationError / PolicyNotFoundError / PolicyExistsError: policy documents
    - VariableError: caller-supplied variables that don't match their declaration
    - NoteNotFoundError / PathTraversalError / WriteConflictError /
      SectionNotFoundError / InvalidFrontmatterError: vault documents
    - GitError / GitLockError: the version-control collaborator
    - ToolNotFoundError / ToolExecutionError: primitive dispatch

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (policy, path, tool where applicable)
    - All errors provide actionable suggestions where possible
    - The engine converts these into result objects; only the store and the
      collaborators raise them to callers
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Policy errors: 1xxx
ERROR_POLICY_INVALID = 1001
ERROR_POLICY_NOT_FOUND = 1002
ERROR_POLICY_EXISTS = 1003

# Variable errors: 2xxx
ERROR_VARIABLE_INVALID = 2001

# Vault errors: 3xxx
ERROR_NOTE_NOT_FOUND = 3001
ERROR_PATH_TRAVERSAL = 3002
ERROR_WRITE_CONFLICT = 3003
ERROR_SECTION_NOT_FOUND = 3004
ERROR_INVALID_FRONTMATTER = 3005

# Git errors: 4xxx
ERROR_GIT_FAILED = 4001
ERROR_GIT_LOCKED = 4002

# Tool errors: 5xxx
ERROR_TOOL_NOT_FOUND = 5001
ERROR_TOOL_EXECUTION_FAILED = 5002


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class VaultkeeperError(Exception):
    """
    Base exception for all vaultkeeper errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Policy Errors
# =============================================================================


@dataclass
class PolicyError(VaultkeeperError):
    """
    Base class for policy document errors.

    Attributes:
        policy_name: Name of the policy involved (if known)
    """

    policy_name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["policy_name"] = self.policy_name


@dataclass
class PolicyValidationError(PolicyError):
    """Raised when a policy document fails structural or semantic validation."""

    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            detail = "; ".join(self.errors) if self.errors else "unknown error"
            self.message = f"Invalid policy: {detail}"
        if self.code == 0:
            self.code = ERROR_POLICY_INVALID
        if not self.suggestion:
            self.suggestion = "Run 'vaultkeeper validate' on the file for a full report"
        super().__post_init__()
        self.context["errors"] = list(self.errors)


@dataclass
class PolicyNotFoundError(PolicyError):
    """Raised when a named policy does not exist in the store."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy not found: {self.policy_name}"
        if self.code == 0:
            self.code = ERROR_POLICY_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Run 'vaultkeeper list' to see available policies"
        super().__post_init__()


@dataclass
class PolicyExistsError(PolicyError):
    """Raised when saving over an existing policy without overwrite."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy already exists: {self.policy_name}"
        if self.code == 0:
            self.code = ERROR_POLICY_EXISTS
        if not self.suggestion:
            self.suggestion = "Pass overwrite=True (or --overwrite) to replace it"
        super().__post_init__()


# =============================================================================
# Variable Errors
# =============================================================================


@dataclass
class VariableError(VaultkeeperError):
    """Raised when provided variables don't satisfy their declarations."""

    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Variable validation failed: {'; '.join(self.errors)}"
        if self.code == 0:
            self.code = ERROR_VARIABLE_INVALID
        self.context["errors"] = list(self.errors)


# =============================================================================
# Vault Errors
# =============================================================================


@dataclass
class VaultError(VaultkeeperError):
    """
    Base class for errors touching a document in the vault.

    Attributes:
        path: Vault-relative path of the document
    """

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["path"] = self.path


@dataclass
class NoteNotFoundError(VaultError):
    """Raised when a document does not exist."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"File not found: {self.path}"
        if self.code == 0:
            self.code = ERROR_NOTE_NOT_FOUND
        super().__post_init__()


@dataclass
class PathTraversalError(VaultError):
    """Raised when a path escapes the vault root."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid path: {self.path} (path traversal not allowed)"
        if self.code == 0:
            self.code = ERROR_PATH_TRAVERSAL
        if not self.suggestion:
            self.suggestion = "Use a relative path inside the vault"
        super().__post_init__()


@dataclass
class WriteConflictError(VaultError):
    """Raised when a document changed on disk between read and write."""

    expected_hash: str = ""
    actual_hash: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Write conflict: {self.path} was modified by another process"
        if self.code == 0:
            self.code = ERROR_WRITE_CONFLICT
        if not self.suggestion:
            self.suggestion = "Re-read the document and retry the operation"
        super().__post_init__()
        self.context.update({
            "expected_hash": self.expected_hash,
            "actual_hash": self.actual_hash,
        })


@dataclass
class InvalidFrontmatterError(VaultError):
    """Raised when a note's frontmatter is not a valid YAML mapping."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid frontmatter in {self.path}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_INVALID_FRONTMATTER
        if not self.suggestion:
            self.suggestion = "Fix the YAML between the --- fences"
        super().__post_init__()
        self.context["reason"] = self.reason


@dataclass
class SectionNotFoundError(VaultError):
    """Raised when a heading section does not exist in a document."""

    section: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Section '{self.section}' not found in {self.path}"
        if self.code == 0:
            self.code = ERROR_SECTION_NOT_FOUND
        super().__post_init__()
        self.context["section"] = self.section


# =============================================================================
# Git Errors
# =============================================================================


@dataclass
class GitError(VaultkeeperError):
    """Raised when a git command fails."""

    command: str = ""
    stderr: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"git {self.command} failed: {self.stderr.strip()}"
        if self.code == 0:
            self.code = ERROR_GIT_FAILED
        self.context.update({
            "command": self.command,
            "stderr": self.stderr,
        })


@dataclass
class GitLockError(GitError):
    """Raised when the git index lock is held by another process."""

    age_ms: int | None = None
    stale: bool = False

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            if self.stale:
                self.message = f"Git index.lock is stale ({self.age_ms}ms old)"
            else:
                self.message = "Git index.lock exists (another process is committing)"
        if self.code == 0:
            self.code = ERROR_GIT_LOCKED
        if not self.suggestion:
            self.suggestion = "Retry shortly; remove .git/index.lock if no git process is running"
        super().__post_init__()
        self.context.update({
            "age_ms": self.age_ms,
            "stale": self.stale,
        })


# =============================================================================
# Tool Errors
# =============================================================================


@dataclass
class ToolError(VaultkeeperError):
    """
    Base class for primitive dispatch errors.

    Attributes:
        tool: Name of the primitive
        tool_args: Arguments that were provided
    """

    tool: str = ""
    tool_args: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "tool": self.tool,
            "tool_args": self.tool_args,
        })


@dataclass
class ToolNotFoundError(ToolError):
    """Raised when a primitive is not registered."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool not found: {self.tool}"
        if self.code == 0:
            self.code = ERROR_TOOL_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check tool name spelling or register the tool"
        super().__post_init__()


@dataclass
class ToolExecutionError(ToolError):
    """Raised when a primitive fails unexpectedly."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Tool execution failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_TOOL_EXECUTION_FAILED
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error
