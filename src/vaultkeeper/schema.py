"""
Schema definitions for vaultkeeper.

This module defines the Pydantic models shared across the engine:
- PolicyDefinition and its parts: what a policy declares
- ValidationIssue/ValidationResult: the outcome of validating a document
- PolicyMetadata: the lightweight listing record for stored policies
- EngineConfig: tunables for the transaction manager and the store

Design Decisions:
    - Policy documents are immutable once loaded (frozen=True)
    - Unknown keys are rejected (extra="forbid") so typos surface at validation
    - The closed set of primitives is an Enum; unknown tool names never reach
      dispatch
    - Cross-field rules (enum values, required condition fields) live in
      model validators next to the fields they guard
"""

import re
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================


class VariableType(str, Enum):
    """Declared type of a policy variable."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    ENUM = "enum"


class ConditionCheck(str, Enum):
    """Kinds of predicate a condition can evaluate against the vault."""

    FILE_EXISTS = "file_exists"
    FILE_NOT_EXISTS = "file_not_exists"
    SECTION_EXISTS = "section_exists"
    SECTION_NOT_EXISTS = "section_not_exists"
    FRONTMATTER_EXISTS = "frontmatter_exists"
    FRONTMATTER_NOT_EXISTS = "frontmatter_not_exists"
    FRONTMATTER_EQUALS = "frontmatter_equals"


class ToolName(str, Enum):
    """
    The closed set of mutation primitives a step may invoke.

    Each member maps to exactly one registered Tool.
    """

    ADD_TO_SECTION = "vault_add_to_section"
    REMOVE_FROM_SECTION = "vault_remove_from_section"
    REPLACE_IN_SECTION = "vault_replace_in_section"
    CREATE_NOTE = "vault_create_note"
    DELETE_NOTE = "vault_delete_note"
    TOGGLE_TASK = "vault_toggle_task"
    ADD_TASK = "vault_add_task"
    UPDATE_FRONTMATTER = "vault_update_frontmatter"
    ADD_FRONTMATTER_FIELD = "vault_add_frontmatter_field"


# Which optional fields each condition kind requires
CONDITION_REQUIRED_FIELDS: dict[ConditionCheck, tuple[str, ...]] = {
    ConditionCheck.FILE_EXISTS: ("path",),
    ConditionCheck.FILE_NOT_EXISTS: ("path",),
    ConditionCheck.SECTION_EXISTS: ("path", "section"),
    ConditionCheck.SECTION_NOT_EXISTS: ("path", "section"),
    ConditionCheck.FRONTMATTER_EXISTS: ("path", "field"),
    ConditionCheck.FRONTMATTER_NOT_EXISTS: ("path", "field"),
    ConditionCheck.FRONTMATTER_EQUALS: ("path", "field", "value"),
}

# Policy names are also file stems in the policy store
POLICY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


# =============================================================================
# Policy Models
# =============================================================================


class PolicyVariable(BaseModel):
    """
    Declaration of a caller-supplied policy variable.

    Attributes:
        type: Declared value type
        required: Whether the caller must supply a value (unless a default exists)
        default: Value used when the caller omits the variable
        enum: Allowed values when type is enum
        description: Human-readable description
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: VariableType = Field(..., description="Declared value type")
    required: bool = Field(default=False, description="Whether a value must be supplied")
    default: str | int | float | bool | list[str] | None = Field(
        default=None,
        description="Default value when omitted",
    )
    enum: list[str] | None = Field(default=None, description="Allowed values for enum type")
    description: str | None = Field(default=None, description="Human-readable description")

    @model_validator(mode="after")
    def validate_enum_values(self) -> "PolicyVariable":
        """Enum variables must list at least one allowed value."""
        if self.type == VariableType.ENUM and not self.enum:
            msg = "enum type requires a non-empty 'enum' list"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def validate_default_type(self) -> "PolicyVariable":
        """A default must be a value the variable itself would accept."""
        if self.default is None:
            return self
        value = self.default
        if self.type == VariableType.STRING:
            ok = isinstance(value, str)
        elif self.type == VariableType.NUMBER:
            ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        elif self.type == VariableType.BOOLEAN:
            ok = isinstance(value, bool)
        elif self.type == VariableType.ARRAY:
            ok = isinstance(value, list)
        else:
            ok = isinstance(value, str) and value in (self.enum or [])
        if not ok:
            msg = f"default {value!r} does not match type '{self.type.value}'"
            raise ValueError(msg)
        return self


class PolicyCondition(BaseModel):
    """
    A named predicate over vault state, evaluated once before any step runs.

    Attributes:
        id: Identifier referenced from step `when` clauses
        check: Kind of predicate
        path: Document path (may contain template expressions)
        section: Heading name for section checks
        field: Frontmatter key for frontmatter checks
        value: Expected value for frontmatter_equals
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Condition identifier")
    check: ConditionCheck = Field(..., description="Kind of predicate")
    path: str | None = Field(default=None, description="Document path")
    section: str | None = Field(default=None, description="Heading name")
    field: str | None = Field(default=None, description="Frontmatter key")
    value: Any = Field(default=None, description="Expected frontmatter value")

    @model_validator(mode="after")
    def validate_required_fields(self) -> "PolicyCondition":
        """Each check kind needs its own set of fields."""
        missing = [
            name for name in CONDITION_REQUIRED_FIELDS[self.check]
            if getattr(self, name) is None
        ]
        if missing:
            msg = f"{self.check.value} condition requires: {', '.join(missing)}"
            raise ValueError(msg)
        return self


class PolicyStep(BaseModel):
    """
    One primitive invocation inside a policy.

    Steps run sequentially in document order.

    Attributes:
        id: Unique step identifier (outputs are published under steps.<id>)
        tool: The primitive to invoke
        when: Optional gating clause of the form {{conditions.<id>}}
        params: Tool parameters (string leaves may contain template expressions)
        description: Human-readable description
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, description="Step identifier")
    tool: ToolName = Field(..., description="Primitive to invoke")
    when: str | None = Field(default=None, description="Condition gating clause")
    params: dict[str, Any] = Field(default_factory=dict, description="Tool parameters")
    description: str | None = Field(default=None, description="Human-readable description")


class PolicyOutput(BaseModel):
    """What a policy reports after a successful run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    summary: str | None = Field(default=None, description="Summary template")
    files: list[str] | None = Field(default=None, description="Files of interest")


class PolicyDefinition(BaseModel):
    """
    A complete, validated policy document.

    Attributes:
        version: Schema version, must be "1.0"
        name: Policy name (also its storage key)
        description: What the policy does
        variables: Declared caller-supplied variables
        conditions: Predicates evaluated before execution
        steps: Ordered primitive invocations (at least one)
        output: Optional output summary configuration
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: Literal["1.0"] = Field(..., description="Policy schema version")
    name: str = Field(..., min_length=1, description="Policy name")
    description: str = Field(..., min_length=1, description="What the policy does")
    variables: dict[str, PolicyVariable] = Field(
        default_factory=dict,
        description="Declared variables",
    )
    conditions: list[PolicyCondition] = Field(
        default_factory=list,
        description="Conditions evaluated before any step",
    )
    steps: list[PolicyStep] = Field(
        ...,
        min_length=1,
        description="Ordered list of steps to execute",
    )
    output: PolicyOutput | None = Field(default=None, description="Output configuration")

    @field_validator("version", mode="before")
    @classmethod
    def coerce_numeric_version(cls, v: Any) -> Any:
        """YAML reads an unquoted 1.0 as a float."""
        if isinstance(v, float) and v == 1.0:
            return "1.0"
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """The name doubles as the storage file stem."""
        if not POLICY_NAME_PATTERN.match(v):
            msg = f"invalid policy name {v!r} (letters, digits, '.', '_' and '-' only)"
            raise ValueError(msg)
        return v


# =============================================================================
# Validation Results
# =============================================================================


ErrorType = Literal["schema", "variable", "step", "condition", "template"]
WarningType = Literal["deprecated", "unused", "suggestion"]


class ValidationIssue(BaseModel):
    """
    One error or warning found while validating a policy.

    Attributes:
        type: Issue category
        message: Human-readable description
        path: Location inside the document (e.g. "steps[0].id")
    """

    model_config = ConfigDict(frozen=True)

    type: str
    message: str
    path: str | None = None

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.message}"
        return self.message


class ValidationResult(BaseModel):
    """
    Outcome of validating a raw policy document.

    `policy` is set only when the document is valid.
    """

    model_config = ConfigDict(frozen=True)

    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    policy: PolicyDefinition | None = None


class PolicyMetadata(BaseModel):
    """Lightweight listing record for a stored policy."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    path: str
    last_modified: str
    version: str
    variables: list[str] = Field(default_factory=list)
    required_variables: list[str] = Field(default_factory=list)


# =============================================================================
# Configuration
# =============================================================================


class EngineConfig(BaseModel):
    """
    Tunables for the engine and the policy store.

    Attributes:
        policies_dir: Policy directory, relative to the vault root
        stale_lock_seconds: Age after which a git index.lock counts as stale
        lock_retry_after_ms: Suggested retry delay when the lock is held
        stale_lock_retry_after_ms: Suggested retry delay when the lock is stale
        commit_retry_after_ms: Suggested retry delay after a lock-related commit failure
        git_timeout_seconds: Timeout for each git subprocess
        commit_max_attempts: Commit attempts when git reports lock contention
        commit_retry_base_ms: Base delay for the commit backoff
        commit_message_prefix: Tag used in commit subjects ([<prefix>:<name>])
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policies_dir: str = Field(default=".vaultkeeper/policies", min_length=1)
    stale_lock_seconds: float = Field(default=30.0, gt=0)
    lock_retry_after_ms: int = Field(default=500, ge=0)
    stale_lock_retry_after_ms: int = Field(default=100, ge=0)
    commit_retry_after_ms: int = Field(default=500, ge=0)
    git_timeout_seconds: int = Field(default=30, gt=0, le=600)
    commit_max_attempts: int = Field(default=3, ge=1, le=10)
    commit_retry_base_ms: int = Field(default=100, ge=0)
    commit_message_prefix: str = Field(default="Policy", min_length=1)


def load_config(path: Path | str) -> EngineConfig:
    """
    Load engine configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated EngineConfig object

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return EngineConfig.model_validate(data or {})


def load_config_from_string(content: str) -> EngineConfig:
    """Load engine configuration from a YAML string."""
    data = yaml.safe_load(content)
    return EngineConfig.model_validate(data or {})
