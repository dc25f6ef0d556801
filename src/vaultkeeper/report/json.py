"""
JSON reports for vaultkeeper.

Structured output for agents and scripts. Every report carries a
`report_version` and `generated_at` so consumers can tell formats apart.

Design Principles:
    - Complete data: every field of the result object
    - Consistent schema: same keys whether the run succeeded or not
    - ISO timestamps
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from vaultkeeper.engine import ExecutionResult, PreviewResult
from vaultkeeper.schema import ValidationResult

REPORT_VERSION = "1.0"


def _envelope(kind: str, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "report_version": REPORT_VERSION,
        "generated_at": datetime.now(UTC).isoformat(),
        "kind": kind,
        **body,
    }


def build_execution_dict(result: ExecutionResult) -> dict[str, Any]:
    """Report dictionary for an execution result."""
    return _envelope("execution", result.to_dict())


def build_preview_dict(result: PreviewResult) -> dict[str, Any]:
    """Report dictionary for a preview."""
    return _envelope("preview", result.to_dict())


def build_validation_dict(result: ValidationResult) -> dict[str, Any]:
    """Report dictionary for a validation result (the policy itself is left out)."""
    return _envelope("validation", {
        "valid": result.valid,
        "policy_name": result.policy.name if result.policy else None,
        "errors": [issue.model_dump() for issue in result.errors],
        "warnings": [issue.model_dump() for issue in result.warnings],
    })


def to_json(report: dict[str, Any], indent: int = 2) -> str:
    """Serialize a report dictionary."""
    return json.dumps(report, indent=indent, default=_json_serializer)


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
