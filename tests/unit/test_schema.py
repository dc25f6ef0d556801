"""
Unit tests for schema models.

Tests cover:
- PolicyVariable, PolicyCondition and PolicyStep validation
- PolicyDefinition parsing, version coercion and immutability
- ValidationIssue formatting
- EngineConfig defaults and YAML loading
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from vaultkeeper.schema import (
    ConditionCheck,
    EngineConfig,
    PolicyCondition,
    PolicyDefinition,
    PolicyStep,
    PolicyVariable,
    ToolName,
    ValidationIssue,
    VariableType,
    load_config,
    load_config_from_string,
)


def _minimal(**overrides) -> dict:
    data = {
        "version": "1.0",
        "name": "p",
        "description": "d",
        "steps": [{"id": "s1", "tool": "vault_create_note", "params": {"path": "a.md"}}],
    }
    data.update(overrides)
    return data


# =============================================================================
# PolicyVariable Tests
# =============================================================================


class TestPolicyVariable:
    """Tests for variable declarations."""

    def test_defaults(self) -> None:
        """Only type is required."""
        var = PolicyVariable(type="string")
        assert var.type == VariableType.STRING
        assert var.required is False
        assert var.default is None

    def test_enum_requires_values(self) -> None:
        """Enum variables must list their values."""
        with pytest.raises(ValidationError, match="enum"):
            PolicyVariable(type="enum")

    def test_enum_with_values(self) -> None:
        """Enum variables with values are valid."""
        var = PolicyVariable(type="enum", enum=["low", "high"])
        assert var.enum == ["low", "high"]

    def test_unknown_type_rejected(self) -> None:
        """Only the declared types are accepted."""
        with pytest.raises(ValidationError):
            PolicyVariable(type="date")

    def test_extra_keys_rejected(self) -> None:
        """Typos in declarations surface as errors."""
        with pytest.raises(ValidationError):
            PolicyVariable(type="string", requried=True)

    @pytest.mark.parametrize(
        "declaration",
        [
            {"type": "string", "default": "Hello"},
            {"type": "number", "default": 0},
            {"type": "number", "default": 2.5},
            {"type": "boolean", "default": False},
            {"type": "array", "default": ["a", "b"]},
            {"type": "enum", "enum": ["low", "high"], "default": "low"},
        ],
    )
    def test_default_matches_type(self, declaration: dict) -> None:
        """Defaults of the declared type are kept as given."""
        var = PolicyVariable(**declaration)
        assert var.default == declaration["default"]
        assert type(var.default) is type(declaration["default"])

    @pytest.mark.parametrize(
        "declaration",
        [
            {"type": "string", "default": 5},
            {"type": "number", "default": "5"},
            {"type": "number", "default": True},
            {"type": "boolean", "default": "yes"},
            {"type": "array", "default": "a"},
            {"type": "enum", "enum": ["low", "high"], "default": "medium"},
        ],
    )
    def test_default_type_mismatch(self, declaration: dict) -> None:
        """A default the variable itself would reject is a schema error."""
        with pytest.raises(ValidationError, match="does not match type"):
            PolicyVariable(**declaration)

    def test_default_mapping_rejected(self) -> None:
        """Defaults are scalars or lists of strings."""
        with pytest.raises(ValidationError):
            PolicyVariable(type="string", default={"a": 1})


# =============================================================================
# PolicyCondition Tests
# =============================================================================


class TestPolicyCondition:
    """Tests for condition declarations."""

    def test_file_check_requires_path(self) -> None:
        """file_exists needs a path."""
        with pytest.raises(ValidationError, match="path"):
            PolicyCondition(id="c", check="file_exists")

    def test_section_check_requires_section(self) -> None:
        """section_exists needs a section."""
        with pytest.raises(ValidationError, match="section"):
            PolicyCondition(id="c", check="section_exists", path="a.md")

    def test_frontmatter_equals_requires_value(self) -> None:
        """frontmatter_equals needs a value."""
        with pytest.raises(ValidationError, match="value"):
            PolicyCondition(id="c", check="frontmatter_equals", path="a.md", field="status")

    def test_valid_condition(self) -> None:
        """Complete declarations parse."""
        cond = PolicyCondition(id="c", check="frontmatter_equals", path="a.md", field="status", value="done")
        assert cond.check == ConditionCheck.FRONTMATTER_EQUALS

    def test_falsy_value_counts_as_present(self) -> None:
        """A value of False satisfies frontmatter_equals."""
        cond = PolicyCondition(id="c", check="frontmatter_equals", path="a.md", field="done", value=False)
        assert cond.value is False


# =============================================================================
# PolicyStep / PolicyDefinition Tests
# =============================================================================


class TestPolicyStep:
    """Tests for step declarations."""

    def test_tool_enum(self) -> None:
        """Tool names map onto the ToolName enum."""
        step = PolicyStep(id="s", tool="vault_add_task", params={"path": "a.md"})
        assert step.tool == ToolName.ADD_TASK

    def test_unknown_tool_rejected(self) -> None:
        """Tools outside the closed set are rejected."""
        with pytest.raises(ValidationError):
            PolicyStep(id="s", tool="shell_run")

    def test_empty_id_rejected(self) -> None:
        """Step ids cannot be empty."""
        with pytest.raises(ValidationError):
            PolicyStep(id="", tool="vault_add_task")


class TestPolicyDefinition:
    """Tests for whole policy documents."""

    def test_minimal(self) -> None:
        """Version, name, description and one step are enough."""
        policy = PolicyDefinition.model_validate(_minimal())
        assert policy.name == "p"
        assert policy.variables == {}
        assert policy.conditions == []
        assert len(policy.steps) == 1

    def test_numeric_version_coerced(self) -> None:
        """An unquoted YAML 1.0 is accepted."""
        policy = PolicyDefinition.model_validate(_minimal(version=1.0))
        assert policy.version == "1.0"

    @pytest.mark.parametrize("name", ["Daily Review", "../escape", ".hidden", "a/b"])
    def test_unstorable_names_rejected(self, name: str) -> None:
        """Names must be usable as a policy file stem."""
        with pytest.raises(ValidationError, match="invalid policy name"):
            PolicyDefinition.model_validate(_minimal(name=name))

    def test_name_characters(self) -> None:
        """Letters, digits, dots, underscores and hyphens are allowed."""
        assert PolicyDefinition.model_validate(_minimal(name="weekly_review-v2.1")).name == "weekly_review-v2.1"

    def test_other_versions_rejected(self) -> None:
        """Only version 1.0 exists."""
        with pytest.raises(ValidationError):
            PolicyDefinition.model_validate(_minimal(version="2.0"))

    def test_empty_steps_rejected(self) -> None:
        """A policy needs at least one step."""
        with pytest.raises(ValidationError):
            PolicyDefinition.model_validate(_minimal(steps=[]))

    def test_steps_keep_order(self) -> None:
        """Steps are kept in document order."""
        steps = [
            {"id": f"s{i}", "tool": "vault_create_note", "params": {"path": f"{i}.md"}}
            for i in range(5)
        ]
        policy = PolicyDefinition.model_validate(_minimal(steps=steps))
        assert [s.id for s in policy.steps] == ["s0", "s1", "s2", "s3", "s4"]

    def test_frozen(self) -> None:
        """Loaded policies are immutable."""
        policy = PolicyDefinition.model_validate(_minimal())
        with pytest.raises(ValidationError):
            policy.name = "other"


# =============================================================================
# ValidationIssue Tests
# =============================================================================


class TestValidationIssue:
    """Tests for issue formatting."""

    def test_str_with_path(self) -> None:
        """Issues with a location are prefixed by it."""
        issue = ValidationIssue(type="schema", message="Field required", path="steps[0].id")
        assert str(issue) == "steps[0].id: Field required"

    def test_str_without_path(self) -> None:
        """Issues without a location are just the message."""
        assert str(ValidationIssue(type="schema", message="bad")) == "bad"


# =============================================================================
# EngineConfig Tests
# =============================================================================


class TestEngineConfig:
    """Tests for engine configuration."""

    def test_defaults(self) -> None:
        """Defaults match the documented lock and retry timings."""
        config = EngineConfig()
        assert config.policies_dir == ".vaultkeeper/policies"
        assert config.stale_lock_seconds == 30
        assert config.lock_retry_after_ms == 500
        assert config.stale_lock_retry_after_ms == 100
        assert config.commit_message_prefix == "Policy"

    def test_load_from_string(self) -> None:
        """Overrides come from YAML."""
        config = load_config_from_string("policies_dir: automation\nlock_retry_after_ms: 250\n")
        assert config.policies_dir == "automation"
        assert config.lock_retry_after_ms == 250

    def test_empty_string_gives_defaults(self) -> None:
        """An empty document is the default config."""
        assert load_config_from_string("") == EngineConfig()

    def test_unknown_key_rejected(self) -> None:
        """Unknown settings are errors."""
        with pytest.raises(ValidationError):
            load_config_from_string("retry: 5\n")

    def test_load_from_file(self, temp_dir: Path) -> None:
        """Config files are read from disk."""
        path = temp_dir / "config.yaml"
        path.write_text("git_timeout_seconds: 5\n")
        assert load_config(path).git_timeout_seconds == 5

    def test_missing_file(self, temp_dir: Path) -> None:
        """Missing config files raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(temp_dir / "nope.yaml")
