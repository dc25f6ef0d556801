"""
Policy validation.

validate_policy() runs two passes over a raw (already YAML-decoded) document:

1. Structural: the PolicyDefinition model. Every pydantic error becomes a
   `schema` issue with a location such as `steps[0].tool`.
2. Semantic, on a structurally valid document:
   - duplicate step ids (step) and condition ids (condition)
   - `when` clauses that are malformed or name an undeclared condition (step)
   - empty template expressions (template)
   - step parameters that name an undeclared variable (suggestion warning)
   - unknown template filters (suggestion warning)
   - declared variables and conditions nothing refers to (unused warning)

validate_variables() and resolve_variables() check and complete the values a
caller supplies for one invocation.

Validation is pure: the same input always yields the same result.
"""

from typing import Any

from pydantic import ValidationError

from vaultkeeper.errors import VariableError
from vaultkeeper.policy.conditions import parse_when
from vaultkeeper.policy.template import (
    FILTER_PATTERN,
    FILTERS,
    collect_strings,
    extract_expressions,
    extract_variable_refs,
    render_value,
)
from vaultkeeper.schema import PolicyDefinition, ValidationIssue, ValidationResult, VariableType


def _format_location(loc: tuple[Any, ...]) -> str:
    """('steps', 0, 'id') -> 'steps[0].id'"""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path


def _schema_issues(error: ValidationError) -> list[ValidationIssue]:
    issues = []
    for item in error.errors():
        message = item["msg"].removeprefix("Value error, ")
        issues.append(ValidationIssue(
            type="schema",
            message=message,
            path=_format_location(tuple(item["loc"])) or None,
        ))
    return issues


def _filter_names(expr: str) -> list[str]:
    names = []
    while True:
        match = FILTER_PATTERN.match(expr.strip())
        if not match:
            return names
        names.insert(0, match.group(2))
        expr = match.group(1)


def validate_policy(raw: Any) -> ValidationResult:
    """
    Validate a decoded policy document.

    Args:
        raw: The document as loaded from YAML (normally a dict)

    Returns:
        ValidationResult; `policy` is set only when there are no errors
    """
    if not isinstance(raw, dict):
        return ValidationResult(
            valid=False,
            errors=[ValidationIssue(type="schema", message="Policy must be a YAML mapping")],
        )

    try:
        policy = PolicyDefinition.model_validate(raw)
    except ValidationError as e:
        return ValidationResult(valid=False, errors=_schema_issues(e))

    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    seen_steps: set[str] = set()
    for i, step in enumerate(policy.steps):
        if step.id in seen_steps:
            errors.append(ValidationIssue(type="step", message=f"Duplicate step id: {step.id}", path=f"steps[{i}].id"))
        seen_steps.add(step.id)

    condition_ids: set[str] = set()
    for i, condition in enumerate(policy.conditions):
        if condition.id in condition_ids:
            errors.append(ValidationIssue(
                type="condition",
                message=f"Duplicate condition id: {condition.id}",
                path=f"conditions[{i}].id",
            ))
        condition_ids.add(condition.id)

    used_conditions: set[str] = set()
    for i, step in enumerate(policy.steps):
        if step.when is None:
            continue
        ref = parse_when(step.when)
        if ref is None:
            errors.append(ValidationIssue(
                type="step",
                message=f"Invalid when clause: {step.when} (expected {{{{conditions.<id>}}}})",
                path=f"steps[{i}].when",
            ))
        elif ref not in condition_ids:
            errors.append(ValidationIssue(
                type="step",
                message=f"Step references unknown condition: {ref}",
                path=f"steps[{i}].when",
            ))
        else:
            used_conditions.add(ref)

    declared = set(policy.variables)
    used_variables: set[str] = set()
    for i, step in enumerate(policy.steps):
        reported: set[str] = set()
        for text in collect_strings(step.params):
            for expr in extract_expressions(text):
                if not expr:
                    errors.append(ValidationIssue(
                        type="template",
                        message="Empty template expression",
                        path=f"steps[{i}].params",
                    ))
                for name in _filter_names(expr):
                    if name not in FILTERS:
                        warnings.append(ValidationIssue(
                            type="suggestion",
                            message=f"Unknown filter '{name}' will pass its value through unchanged",
                            path=f"steps[{i}].params",
                        ))
            for name in extract_variable_refs(text):
                used_variables.add(name)
                if name not in declared and name not in reported:
                    reported.add(name)
                    warnings.append(ValidationIssue(
                        type="suggestion",
                        message=f"Step references undefined variable: {name}",
                        path=f"steps[{i}].params",
                    ))

    if policy.output and policy.output.summary:
        used_variables.update(extract_variable_refs(policy.output.summary))

    for name in policy.variables:
        if name not in used_variables:
            warnings.append(ValidationIssue(
                type="unused",
                message=f"Variable '{name}' is defined but never used",
                path=f"variables.{name}",
            ))

    for i, condition in enumerate(policy.conditions):
        if condition.id not in used_conditions:
            warnings.append(ValidationIssue(
                type="unused",
                message=f"Condition '{condition.id}' is defined but never used",
                path=f"conditions[{i}]",
            ))

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        policy=policy if not errors else None,
    )


# =============================================================================
# Variables
# =============================================================================


def _is_missing(values: dict[str, Any], name: str) -> bool:
    return name not in values


def _type_error(name: str, expected: str, value: Any) -> str:
    return f"Variable '{name}' must be {expected}, got {type(value).__name__}"


def validate_variables(policy: PolicyDefinition, provided: dict[str, Any]) -> list[str]:
    """
    Check caller-supplied values against the policy's declarations.

    Type checks only apply to values the caller actually supplied; an omitted
    variable is fine if it isn't required or has a default. An explicit None
    counts as supplied and is type-checked like any other value.

    Returns:
        Error messages (empty if valid)
    """
    errors = []
    for name, spec in policy.variables.items():
        if _is_missing(provided, name):
            if spec.required and spec.default is None:
                errors.append(f"Required variable '{name}' is not provided")
            continue

        value = provided[name]
        if spec.type == VariableType.STRING and not isinstance(value, str):
            errors.append(_type_error(name, "a string", value))
        elif spec.type == VariableType.NUMBER and (
            isinstance(value, bool) or not isinstance(value, (int, float))
        ):
            errors.append(_type_error(name, "a number", value))
        elif spec.type == VariableType.BOOLEAN and not isinstance(value, bool):
            errors.append(_type_error(name, "a boolean", value))
        elif spec.type == VariableType.ARRAY and not isinstance(value, (list, tuple)):
            errors.append(_type_error(name, "an array", value))
        elif spec.type == VariableType.ENUM and render_value(value) not in (spec.enum or []):
            errors.append(f"Variable '{name}' must be one of: {', '.join(spec.enum or [])}")
    return errors


def check_variables(policy: PolicyDefinition, provided: dict[str, Any]) -> None:
    """
    Reject caller-supplied values that don't satisfy the declarations.

    Raises:
        VariableError: Listing every problem validate_variables finds
    """
    errors = validate_variables(policy, provided)
    if errors:
        raise VariableError(errors=errors)


def resolve_variables(policy: PolicyDefinition, provided: dict[str, Any]) -> dict[str, Any]:
    """
    Apply declared defaults to omitted variables.

    Explicitly supplied values are never replaced, including falsy ones such
    as None, 0, False and "".
    """
    resolved = dict(provided)
    for name, spec in policy.variables.items():
        if _is_missing(resolved, name) and spec.default is not None:
            resolved[name] = spec.default
    return resolved
