"""
Condition evaluation against live vault state.

Conditions are evaluated once per invocation, before any step runs, and the
results are frozen into the context. A note that doesn't exist counts as
absence for every check kind; any other read problem makes the condition
"not met" with a logged reason. Evaluation never raises.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vaultkeeper.errors import VaultkeeperError
from vaultkeeper.policy.template import PolicyContext, TemplateResolver, render_value
from vaultkeeper.schema import ConditionCheck, PolicyCondition
from vaultkeeper.vault import notes
from vaultkeeper.vault.sections import find_section

WHEN_PATTERN = re.compile(r"^\{\{\s*conditions\.([\w-]+)\s*\}\}$")


@dataclass(frozen=True)
class ConditionResult:
    met: bool
    reason: str


def parse_when(when: str) -> str | None:
    """Condition id named by a when clause, or None if the clause is malformed."""
    match = WHEN_PATTERN.match(when.strip())
    return match.group(1) if match else None


def compare_values(actual: Any, expected: Any) -> bool:
    """
    Type-tolerant equality for frontmatter values.

    Exact equality first, then string forms (so 5 matches "5" and True
    matches "true"), then element-wise for lists and key-wise for mappings.
    """
    if actual == expected and type(actual) is type(expected):
        return True
    if render_value(actual) == render_value(expected):
        return True
    if isinstance(actual, (list, tuple)) and isinstance(expected, (list, tuple)):
        return len(actual) == len(expected) and all(
            compare_values(a, e) for a, e in zip(actual, expected)
        )
    if isinstance(actual, dict) and isinstance(expected, dict):
        return actual.keys() == expected.keys() and all(
            compare_values(actual[k], expected[k]) for k in actual
        )
    return False


class ConditionEvaluator:
    """
    Evaluates PolicyConditions for one vault.

    Attributes:
        vault_path: Vault root
        resolver: Used to interpolate path, section and field
        logger: Receives reasons for read errors
    """

    def __init__(
        self,
        vault_path: Path | str,
        resolver: TemplateResolver | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.vault_path = Path(vault_path)
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.resolver = resolver if resolver is not None else TemplateResolver(logger=self.logger)

    def evaluate(self, condition: PolicyCondition, ctx: PolicyContext) -> ConditionResult:
        """
        Evaluate one condition.

        Args:
            condition: The declaration
            ctx: Context used to interpolate path, section and field

        Returns:
            ConditionResult with a human-readable reason
        """
        path = self.resolver.interpolate(condition.path or "", ctx)
        try:
            if condition.check in (ConditionCheck.FILE_EXISTS, ConditionCheck.FILE_NOT_EXISTS):
                return self._check_file(path, condition.check == ConditionCheck.FILE_EXISTS)
            if condition.check in (ConditionCheck.SECTION_EXISTS, ConditionCheck.SECTION_NOT_EXISTS):
                section = self.resolver.interpolate(condition.section or "", ctx)
                return self._check_section(path, section, condition.check == ConditionCheck.SECTION_EXISTS)
            field_name = self.resolver.interpolate(condition.field or "", ctx)
            if condition.check == ConditionCheck.FRONTMATTER_EQUALS:
                expected = self.resolver.interpolate_object(condition.value, ctx)
                return self._check_frontmatter_equals(path, field_name, expected)
            return self._check_frontmatter(
                path, field_name, condition.check == ConditionCheck.FRONTMATTER_EXISTS,
            )
        except (VaultkeeperError, OSError, UnicodeDecodeError, ValueError) as e:
            reason = f"Error reading file: {e}"
            self.logger.warning("Condition '%s' not met: %s", condition.id, reason)
            return ConditionResult(met=False, reason=reason)

    def evaluate_all(self, conditions: list[PolicyCondition], ctx: PolicyContext) -> dict[str, bool]:
        """Evaluate every condition once; returns {id: met}."""
        results = {}
        for condition in conditions:
            result = self.evaluate(condition, ctx)
            self.logger.debug("Condition '%s': %s (%s)", condition.id, result.met, result.reason)
            results[condition.id] = result.met
        return results

    def _read(self, path: str) -> notes.Note | None:
        if not notes.validate_path(self.vault_path, path):
            raise ValueError(f"Invalid path: {path} (path traversal not allowed)")
        if not notes.note_exists(self.vault_path, path):
            return None
        return notes.read_note(self.vault_path, path)

    def _check_file(self, path: str, expect_exists: bool) -> ConditionResult:
        if not notes.validate_path(self.vault_path, path):
            raise ValueError(f"Invalid path: {path} (path traversal not allowed)")
        exists = notes.note_exists(self.vault_path, path)
        reason = f"File exists: {path}" if exists else f"File does not exist: {path}"
        return ConditionResult(met=exists == expect_exists, reason=reason)

    def _check_section(self, path: str, section: str, expect_exists: bool) -> ConditionResult:
        note = self._read(path)
        if note is None:
            return ConditionResult(met=not expect_exists, reason=f"File does not exist: {path}")
        exists = find_section(note.content, section) is not None
        reason = (
            f"Section '{section}' exists in {path}" if exists
            else f"Section '{section}' does not exist in {path}"
        )
        return ConditionResult(met=exists == expect_exists, reason=reason)

    def _check_frontmatter(self, path: str, field_name: str, expect_exists: bool) -> ConditionResult:
        note = self._read(path)
        if note is None:
            return ConditionResult(met=not expect_exists, reason=f"File does not exist: {path}")
        exists = field_name in note.frontmatter
        reason = (
            f"Frontmatter field '{field_name}' exists in {path}" if exists
            else f"Frontmatter field '{field_name}' does not exist in {path}"
        )
        return ConditionResult(met=exists == expect_exists, reason=reason)

    def _check_frontmatter_equals(self, path: str, field_name: str, expected: Any) -> ConditionResult:
        note = self._read(path)
        if note is None:
            return ConditionResult(met=False, reason=f"File does not exist: {path}")
        if field_name not in note.frontmatter:
            return ConditionResult(
                met=False,
                reason=f"Frontmatter field '{field_name}' does not exist in {path}",
            )
        actual = note.frontmatter[field_name]
        if compare_values(actual, expected):
            return ConditionResult(met=True, reason=f"Frontmatter '{field_name}' equals expected value")
        return ConditionResult(
            met=False,
            reason=f"Frontmatter '{field_name}' is {render_value(actual)!r}, expected {render_value(expected)!r}",
        )


def should_step_execute(
    when: str | None,
    condition_map: dict[str, bool],
    logger: logging.Logger | None = None,
) -> tuple[bool, str | None]:
    """
    Gate a step on its when clause.

    Returns:
        (execute, skip_reason). A step runs only if it has no clause or the
        referenced condition is exactly True. Unknown or malformed references
        skip the step.
    """
    if when is None or not when.strip():
        return True, None

    log = logger if logger is not None else logging.getLogger(__name__)
    condition_id = parse_when(when)
    if condition_id is None:
        reason = f"Invalid when clause format: {when}"
        log.warning(reason)
        return False, reason
    if condition_id not in condition_map:
        reason = f"Unknown condition: {condition_id}"
        log.warning(reason)
        return False, reason
    if condition_map[condition_id] is True:
        return True, None
    return False, f"Condition '{condition_id}' was not met"
