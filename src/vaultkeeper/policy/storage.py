"""
Policy store: named policy documents inside the vault.

Policies live as `<vault>/<policies_dir>/<name>.yaml` (`.yml` is also read).
The store is the only owner of policy documents; the engine receives loaded,
validated definitions and never writes them.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from vaultkeeper.errors import PolicyExistsError, PolicyNotFoundError, PolicyValidationError
from vaultkeeper.policy.parser import (
    extract_policy_metadata,
    load_policy_file,
    parse_policy_string,
    serialize_policy,
)
from vaultkeeper.schema import (
    POLICY_NAME_PATTERN,
    EngineConfig,
    PolicyDefinition,
    PolicyMetadata,
    ValidationIssue,
    ValidationResult,
)

logger = logging.getLogger(__name__)

POLICY_EXTENSIONS = (".yaml", ".yml")


@dataclass
class PolicyDiff:
    """Identifier-level differences between two policies."""

    variables_added: list[str] = field(default_factory=list)
    variables_removed: list[str] = field(default_factory=list)
    variables_changed: list[str] = field(default_factory=list)
    steps_added: list[str] = field(default_factory=list)
    steps_removed: list[str] = field(default_factory=list)
    steps_changed: list[str] = field(default_factory=list)
    conditions_added: list[str] = field(default_factory=list)
    conditions_removed: list[str] = field(default_factory=list)
    conditions_changed: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return any(getattr(self, name) for name in self.__dataclass_fields__)

    def to_dict(self) -> dict[str, list[str]]:
        return asdict(self)


def _diff_keyed(old: dict[str, Any], new: dict[str, Any]) -> tuple[list[str], list[str], list[str]]:
    added = [key for key in new if key not in old]
    removed = [key for key in old if key not in new]
    changed = [key for key in new if key in old and old[key] != new[key]]
    return added, removed, changed


def diff_policies(old: PolicyDefinition, new: PolicyDefinition) -> PolicyDiff:
    """Compare two policies by variable name, step id and condition id."""
    diff = PolicyDiff()
    diff.variables_added, diff.variables_removed, diff.variables_changed = _diff_keyed(
        dict(old.variables), dict(new.variables),
    )
    diff.steps_added, diff.steps_removed, diff.steps_changed = _diff_keyed(
        {s.id: s for s in old.steps}, {s.id: s for s in new.steps},
    )
    diff.conditions_added, diff.conditions_removed, diff.conditions_changed = _diff_keyed(
        {c.id: c for c in old.conditions}, {c.id: c for c in new.conditions},
    )
    return diff


class PolicyStore:
    """
    Reads and writes policy documents for one vault.

    Attributes:
        vault_path: Vault root
        policies_dir: Absolute policy directory
    """

    def __init__(self, vault_path: Path | str, config: EngineConfig | None = None) -> None:
        self.vault_path = Path(vault_path)
        self.config = config or EngineConfig()
        self.policies_dir = self.vault_path / self.config.policies_dir

    def _check_name(self, name: str) -> None:
        if not POLICY_NAME_PATTERN.match(name):
            raise PolicyValidationError(
                policy_name=name,
                errors=[f"Invalid policy name: {name!r} (letters, digits, '.', '_' and '-' only)"],
            )

    def get_path(self, name: str) -> Path | None:
        """Path of a stored policy, or None if it doesn't exist."""
        self._check_name(name)
        for extension in POLICY_EXTENSIONS:
            candidate = self.policies_dir / f"{name}{extension}"
            if candidate.is_file():
                return candidate
        return None

    def exists(self, name: str) -> bool:
        return self.get_path(name) is not None

    def list_policies(self) -> list[PolicyMetadata]:
        """
        Lightweight metadata for every stored policy, sorted by name.

        Files are not validated; unreadable fields fall back to the file stem,
        'No description' and version 1.0.
        """
        if not self.policies_dir.is_dir():
            return []

        policies = []
        for path in self.policies_dir.iterdir():
            if path.suffix not in POLICY_EXTENSIONS or not path.is_file():
                continue
            metadata = extract_policy_metadata(path.read_text(encoding="utf-8"))
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
            policies.append(PolicyMetadata(
                name=metadata.get("name") or path.stem,
                description=metadata.get("description") or "No description",
                path=path.name,
                last_modified=modified.isoformat(),
                version=metadata.get("version") or "1.0",
                variables=metadata.get("variables", []),
                required_variables=metadata.get("required_variables", []),
            ))
        return sorted(policies, key=lambda p: p.name.lower())

    def load(self, name: str) -> ValidationResult:
        """
        Load and validate a stored policy.

        Raises:
            PolicyNotFoundError: If no policy with that name exists
        """
        path = self.get_path(name)
        if path is None:
            raise PolicyNotFoundError(policy_name=name)
        return load_policy_file(path)

    def load_valid(self, name: str) -> PolicyDefinition:
        """
        Load a stored policy that must be valid.

        Raises:
            PolicyNotFoundError: If no policy with that name exists
            PolicyValidationError: If the stored document is invalid
        """
        result = self.load(name)
        if result.policy is None:
            raise PolicyValidationError(policy_name=name, errors=[str(e) for e in result.errors])
        return result.policy

    def save(self, policy: PolicyDefinition, overwrite: bool = False) -> Path:
        """
        Serialize a policy to <name>.yaml.

        Raises:
            PolicyExistsError: If it exists and overwrite is False
        """
        return self._write(policy.name, serialize_policy(policy), overwrite)

    def delete(self, name: str) -> None:
        """
        Remove a stored policy.

        Raises:
            PolicyNotFoundError: If no policy with that name exists
        """
        path = self.get_path(name)
        if path is None:
            raise PolicyNotFoundError(policy_name=name)
        path.unlink()
        logger.info("Deleted policy %s", name)

    def read_raw(self, name: str) -> str:
        """
        Stored document text, unparsed.

        Raises:
            PolicyNotFoundError: If no policy with that name exists
        """
        path = self.get_path(name)
        if path is None:
            raise PolicyNotFoundError(policy_name=name)
        return path.read_text(encoding="utf-8")

    def write_raw(self, name: str, content: str, overwrite: bool = False) -> Path:
        """
        Store document text verbatim after validating it.

        Raises:
            PolicyExistsError: If it exists and overwrite is False
            PolicyValidationError: If the text is not a valid policy
        """
        self._check_name(name)
        if not overwrite and self.exists(name):
            raise PolicyExistsError(policy_name=name)
        result = parse_policy_string(content)
        if not result.valid:
            raise PolicyValidationError(policy_name=name, errors=_messages(result.errors))
        return self._write(name, content, overwrite)

    def import_policy(self, content: str, overwrite: bool = False) -> PolicyDefinition:
        """
        Validate policy text and save it under the name it declares.

        Raises:
            PolicyValidationError: If the text is not a valid policy
            PolicyExistsError: If it exists and overwrite is False
        """
        result = parse_policy_string(content)
        if result.policy is None:
            raise PolicyValidationError(errors=_messages(result.errors))
        self.save(result.policy, overwrite=overwrite)
        return result.policy

    def export_policy(self, name: str) -> str:
        """Stored document text, for sharing."""
        return self.read_raw(name)

    def diff(self, old_name: str, new_name: str) -> PolicyDiff:
        """
        Compare two stored policies.

        Raises:
            PolicyNotFoundError: If either policy doesn't exist
            PolicyValidationError: If either policy is invalid
        """
        return diff_policies(self.load_valid(old_name), self.load_valid(new_name))

    def _write(self, name: str, content: str, overwrite: bool) -> Path:
        self._check_name(name)
        existing = self.get_path(name)
        if existing is not None and not overwrite:
            raise PolicyExistsError(policy_name=name)

        self.policies_dir.mkdir(parents=True, exist_ok=True)
        path = self.policies_dir / f"{name}.yaml"
        path.write_text(content, encoding="utf-8")
        if existing is not None and existing != path:
            existing.unlink()
        logger.info("Saved policy %s to %s", name, path)
        return path


def _messages(issues: list[ValidationIssue]) -> list[str]:
    return [str(issue) for issue in issues]
