"""
Policy module for vaultkeeper.

Everything about policy documents short of running them:

    - template: {{ }} expression resolution, filters and builtins
    - conditions: vault-state predicates and when-clause gating
    - validator: structural and semantic validation, variable checks
    - parser: YAML parsing and serialization
    - storage: named policies stored inside the vault

Example:
    from vaultkeeper.policy import PolicyStore, parse_policy_string

    result = parse_policy_string(yaml_text)
    if result.valid:
        PolicyStore(vault).save(result.policy)
"""

from vaultkeeper.policy.conditions import ConditionEvaluator, ConditionResult, should_step_execute
from vaultkeeper.policy.parser import (
    load_policy_file,
    parse_policy_string,
    serialize_policy,
)
from vaultkeeper.policy.storage import PolicyDiff, PolicyStore, diff_policies
from vaultkeeper.policy.template import (
    PolicyContext,
    TemplateResolver,
    create_context,
    interpolate,
    interpolate_object,
)
from vaultkeeper.policy.validator import (
    check_variables,
    resolve_variables,
    validate_policy,
    validate_variables,
)

__all__ = [
    "ConditionEvaluator",
    "ConditionResult",
    "PolicyContext",
    "PolicyDiff",
    "PolicyStore",
    "TemplateResolver",
    "check_variables",
    "create_context",
    "diff_policies",
    "interpolate",
    "interpolate_object",
    "load_policy_file",
    "parse_policy_string",
    "resolve_variables",
    "serialize_policy",
    "should_step_execute",
    "validate_policy",
    "validate_variables",
]
