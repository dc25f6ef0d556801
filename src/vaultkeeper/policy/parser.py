"""
YAML parsing and serialization for policy documents.

Parsing never raises: YAML syntax errors and unreadable files come back as a
ValidationResult with a single `schema` error. serialize_policy() writes keys
in declaration order, leaves out defaults, and uses literal block style for
multi-line strings, so parse_policy_string(serialize_policy(p)).policy == p.
"""

from pathlib import Path
from typing import Any

import yaml

from vaultkeeper.policy.validator import validate_policy
from vaultkeeper.schema import PolicyDefinition, ValidationIssue, ValidationResult


def _schema_failure(message: str) -> ValidationResult:
    return ValidationResult(valid=False, errors=[ValidationIssue(type="schema", message=message)])


def parse_yaml(content: str) -> Any:
    """
    Decode a YAML document.

    Raises:
        yaml.YAMLError: On malformed YAML
    """
    return yaml.safe_load(content)


def parse_policy_string(content: str) -> ValidationResult:
    """Parse and validate a policy from YAML text."""
    try:
        data = parse_yaml(content)
    except yaml.YAMLError as e:
        return _schema_failure(f"Failed to parse YAML: {e}")
    return validate_policy(data)


def load_policy_file(path: Path | str) -> ValidationResult:
    """Parse and validate a policy file."""
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return _schema_failure(f"Policy file not found: {path}")
    except (OSError, UnicodeDecodeError) as e:
        return _schema_failure(f"Failed to read policy file: {e}")
    return parse_policy_string(content)


def quick_validate_yaml(content: str) -> str | None:
    """Return a YAML syntax error message, or None if the text parses."""
    try:
        parse_yaml(content)
    except yaml.YAMLError as e:
        return str(e)
    return None


# =============================================================================
# Serialization
# =============================================================================


class _PolicyDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, value: str) -> yaml.ScalarNode:
    if "\n" in value:
        return dumper.represent_scalar("tag:yaml.org,2002:str", value, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", value)


_PolicyDumper.add_representer(str, _represent_str)


def policy_to_dict(policy: PolicyDefinition) -> dict[str, Any]:
    """Plain-data form of a policy with defaults left out."""
    return policy.model_dump(mode="json", exclude_defaults=True)


def serialize_policy(policy: PolicyDefinition) -> str:
    """Render a policy as YAML."""
    return yaml.dump(
        policy_to_dict(policy),
        Dumper=_PolicyDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


# =============================================================================
# Metadata
# =============================================================================


def extract_policy_metadata(content: str) -> dict[str, Any]:
    """
    Pull listing fields out of policy text without full validation.

    Returns:
        Any of name, description, version, variables, required_variables
        that could be read; an empty dict if the YAML doesn't parse
    """
    try:
        data = parse_yaml(content)
    except yaml.YAMLError:
        return {}
    if not isinstance(data, dict):
        return {}

    metadata: dict[str, Any] = {}
    for key in ("name", "description"):
        if isinstance(data.get(key), str):
            metadata[key] = data[key]
    version = data.get("version")
    if isinstance(version, str):
        metadata["version"] = version
    elif isinstance(version, float):
        metadata["version"] = str(version)

    variables = data.get("variables")
    if isinstance(variables, dict):
        metadata["variables"] = list(variables)
        metadata["required_variables"] = [
            name for name, spec in variables.items()
            if isinstance(spec, dict) and spec.get("required") and spec.get("default") is None
        ]
    return metadata
