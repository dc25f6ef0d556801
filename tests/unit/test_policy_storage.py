"""
Unit tests for the policy store.

Tests cover:
- Save, load, list, exists and delete
- Import, export and verbatim writes
- Name validation and existence errors
- Identifier-level diffs
"""

from pathlib import Path

import pytest

from vaultkeeper.errors import PolicyExistsError, PolicyNotFoundError, PolicyValidationError
from vaultkeeper.policy.parser import parse_policy_string
from vaultkeeper.policy.storage import PolicyStore, diff_policies
from vaultkeeper.schema import EngineConfig


@pytest.fixture
def store(vault: Path) -> PolicyStore:
    """A store over the sample vault."""
    return PolicyStore(vault)


class TestSaveLoad:
    """Tests for saving and loading policies."""

    def test_default_location(self, store: PolicyStore, vault: Path) -> None:
        """Policies live under .vaultkeeper/policies by default."""
        assert store.policies_dir == vault / ".vaultkeeper" / "policies"

    def test_configured_location(self, vault: Path) -> None:
        """The directory is configurable."""
        store = PolicyStore(vault, EngineConfig(policies_dir="automation"))
        assert store.policies_dir == vault / "automation"

    def test_save_and_load(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """A saved policy loads back equal."""
        policy = parse_policy_string(sample_policy_yaml).policy
        path = store.save(policy)
        assert path.name == "daily-log.yaml"
        assert store.exists("daily-log")
        assert store.load_valid("daily-log") == policy

    def test_save_existing(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """Saving over an existing policy needs overwrite."""
        policy = parse_policy_string(sample_policy_yaml).policy
        store.save(policy)
        with pytest.raises(PolicyExistsError):
            store.save(policy)
        store.save(policy, overwrite=True)

    def test_yml_extension_read(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """.yml files are found too."""
        store.policies_dir.mkdir(parents=True)
        (store.policies_dir / "daily-log.yml").write_text(sample_policy_yaml)
        assert store.load("daily-log").valid

    def test_get_path(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """get_path returns the stored file or None."""
        assert store.get_path("daily-log") is None
        store.policies_dir.mkdir(parents=True)
        (store.policies_dir / "daily-log.yml").write_text(sample_policy_yaml)
        assert store.get_path("daily-log") == store.policies_dir / "daily-log.yml"
        assert store.exists("daily-log")

    def test_load_missing(self, store: PolicyStore) -> None:
        """Unknown names raise PolicyNotFoundError."""
        with pytest.raises(PolicyNotFoundError):
            store.load("nope")

    def test_load_invalid_document(self, store: PolicyStore, invalid_policy_yaml: str) -> None:
        """load returns the failed result; load_valid raises."""
        store.policies_dir.mkdir(parents=True)
        (store.policies_dir / "broken.yaml").write_text(invalid_policy_yaml)
        assert not store.load("broken").valid
        with pytest.raises(PolicyValidationError):
            store.load_valid("broken")

    @pytest.mark.parametrize("name", ["../escape", "a/b", "", ".hidden"])
    def test_invalid_names(self, store: PolicyStore, name: str) -> None:
        """Names that aren't plain identifiers are rejected."""
        with pytest.raises(PolicyValidationError):
            store.exists(name)


class TestList:
    """Tests for list_policies."""

    def test_empty(self, store: PolicyStore) -> None:
        """A missing directory lists nothing."""
        assert store.list_policies() == []

    def test_sorted_with_fallbacks(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """Listings are sorted; unreadable fields fall back."""
        store.policies_dir.mkdir(parents=True)
        (store.policies_dir / "daily-log.yaml").write_text(sample_policy_yaml)
        (store.policies_dir / "Another.yaml").write_text("not: [valid")
        (store.policies_dir / "notes.txt").write_text("ignored")

        listing = store.list_policies()
        assert [p.name for p in listing] == ["Another", "daily-log"]
        assert listing[0].description == "No description"
        assert listing[0].version == "1.0"
        assert listing[1].required_variables == ["entry"]


class TestDelete:
    """Tests for delete."""

    def test_delete(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """Deleted policies are gone."""
        store.import_policy(sample_policy_yaml)
        store.delete("daily-log")
        assert not store.exists("daily-log")

    def test_delete_missing(self, store: PolicyStore) -> None:
        """Deleting an unknown policy raises."""
        with pytest.raises(PolicyNotFoundError):
            store.delete("nope")


class TestImportExport:
    """Tests for import, export and raw writes."""

    def test_import(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """Imported policies are stored under their declared name."""
        policy = store.import_policy(sample_policy_yaml)
        assert policy.name == "daily-log"
        assert store.exists("daily-log")

    def test_import_invalid(self, store: PolicyStore, invalid_policy_yaml: str) -> None:
        """Invalid text is not stored."""
        with pytest.raises(PolicyValidationError) as exc_info:
            store.import_policy(invalid_policy_yaml)
        assert exc_info.value.errors
        assert store.list_policies() == []

    def test_import_unstorable_name(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """A name that can't be a file stem fails validation before anything is written."""
        content = sample_policy_yaml.replace("name: daily-log", "name: Daily Review")
        assert not parse_policy_string(content).valid
        with pytest.raises(PolicyValidationError) as exc_info:
            store.import_policy(content)
        assert any("invalid policy name" in error for error in exc_info.value.errors)
        assert not store.policies_dir.exists()

    def test_import_existing(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """Re-importing needs overwrite."""
        store.import_policy(sample_policy_yaml)
        with pytest.raises(PolicyExistsError):
            store.import_policy(sample_policy_yaml)

    def test_export_is_verbatim(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """write_raw keeps text (and comments) as given."""
        content = "# keep me\n" + sample_policy_yaml
        store.write_raw("daily-log", content)
        assert store.export_policy("daily-log") == content

    def test_write_raw_validates(self, store: PolicyStore, invalid_policy_yaml: str) -> None:
        """write_raw refuses invalid documents."""
        with pytest.raises(PolicyValidationError):
            store.write_raw("broken", invalid_policy_yaml)
        assert not store.exists("broken")

    def test_save_replaces_yml(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """Overwriting a .yml policy leaves a single .yaml file."""
        store.policies_dir.mkdir(parents=True)
        (store.policies_dir / "daily-log.yml").write_text(sample_policy_yaml)
        store.import_policy(sample_policy_yaml, overwrite=True)
        assert sorted(p.name for p in store.policies_dir.iterdir()) == ["daily-log.yaml"]


class TestDiff:
    """Tests for policy diffs."""

    def test_no_changes(self, sample_policy_yaml: str) -> None:
        """Identical policies have no diff."""
        policy = parse_policy_string(sample_policy_yaml).policy
        assert not diff_policies(policy, policy).has_changes

    def test_changes(self, store: PolicyStore, sample_policy_yaml: str) -> None:
        """Diffs are reported by identifier."""
        store.import_policy(sample_policy_yaml)
        changed = (
            sample_policy_yaml
            .replace("name: daily-log", "name: daily-log-v2")
            .replace("format: bullet", "format: task")
            .replace("  date:\n", "  mood:\n    type: string\n  date:\n")
            .replace("  - id: note_exists", "  - id: has_note")
            .replace("conditions.note_exists", "conditions.has_note")
        )
        store.import_policy(changed)

        diff = store.diff("daily-log", "daily-log-v2")
        assert diff.has_changes
        assert diff.variables_added == ["mood"]
        assert diff.steps_changed == ["add_entry"]
        assert diff.conditions_added == ["has_note"]
        assert diff.conditions_removed == ["note_exists"]
        assert diff.to_dict()["steps_added"] == []
