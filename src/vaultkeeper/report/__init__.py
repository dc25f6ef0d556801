"""
Reporting module for vaultkeeper.

Output formats:
    - Console: Rich terminal output with step tables and status icons
    - JSON: Structured output for agents and scripts

Example:
    from vaultkeeper.report import build_execution_dict, print_execution_result, to_json

    print_execution_result(result)
    print(to_json(build_execution_dict(result)))
"""

from vaultkeeper.report.console import (
    print_diff,
    print_execution_result,
    print_policy,
    print_policy_list,
    print_preview,
    print_validation,
)
from vaultkeeper.report.json import (
    build_execution_dict,
    build_preview_dict,
    build_validation_dict,
    to_json,
)

__all__ = [
    "build_execution_dict",
    "build_preview_dict",
    "build_validation_dict",
    "print_diff",
    "print_execution_result",
    "print_policy",
    "print_policy_list",
    "print_preview",
    "print_validation",
    "to_json",
]
