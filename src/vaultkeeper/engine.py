"""
Policy Execution Engine for vaultkeeper.

The Engine runs a validated PolicyDefinition against a vault. It coordinates:
- Validator: checks caller variables before anything happens
- Condition Evaluator: freezes vault predicates into the context, once
- Step Executor: gates, interpolates and dispatches each step to a primitive
- Git: lock pre-check and the single atomic commit

Execution Flow:
    1. Validate variables (failure is final and not retryable)
    2. If a commit is requested and the vault is a git repo, probe
       .git/index.lock; a held lock returns a retryable result
    3. Resolve defaults, build the context, evaluate every condition
    4. Snapshot the current text of every file a step may touch
    5. Run steps in order, stopping at the first failure
    6. On failure in commit mode, restore every touched file from its snapshot
    7. If a commit is requested, commit all touched files together; a failed
       commit rolls back as well

Design Principles:
    - Fail-fast: the first failed step ends the run
    - All or nothing in commit mode: either every change is committed or
      every touched file is back to its snapshot
    - Never raises for primitive or I/O failures; callers get a result object
    - No state survives an invocation; the engine holds only configuration
"""

import json
import logging
import math
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from vaultkeeper.errors import ToolExecutionError, ToolNotFoundError, VariableError, VaultkeeperError
from vaultkeeper.policy.conditions import ConditionEvaluator, should_step_execute
from vaultkeeper.policy.template import (
    PolicyContext,
    TemplateResolver,
    create_context,
    has_template_expressions,
)
from vaultkeeper.policy.validator import check_variables, resolve_variables, validate_variables
from vaultkeeper.schema import EngineConfig, PolicyDefinition, PolicyStep
from vaultkeeper.tools import ToolContext, default_registry
from vaultkeeper.tools.registry import ToolRegistry
from vaultkeeper.vault import notes
from vaultkeeper.vault.git import GitClient

logger = logging.getLogger(__name__)

COMMIT_LOCK_MARKERS = ("lock", "index.lock", "could not obtain")


class StepStatus(str, Enum):
    """Outcome of a single step."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


def estimate_tokens(data: dict[str, Any]) -> int:
    """Rough token count of a JSON payload (four characters per token)."""
    return math.ceil(len(json.dumps(data, default=str)) / 4)


# =============================================================================
# Results
# =============================================================================


@dataclass
class StepResult:
    """
    Result of one step.

    Attributes:
        step_id: The step's identifier
        tool: Primitive name
        success: False only if the primitive failed (skipped steps succeed)
        message: Primitive message or skip explanation
        skipped: Whether the when clause kept the step from running
        skip_reason: Why it was skipped
        path: Vault-relative path the step touched
        preview: Short excerpt of the change
        outputs: Values published under steps.<id>
    """

    step_id: str
    tool: str
    success: bool
    message: str = ""
    skipped: bool = False
    skip_reason: str | None = None
    path: str | None = None
    preview: str | None = None
    outputs: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> StepStatus:
        if self.skipped:
            return StepStatus.SKIPPED
        return StepStatus.SUCCESS if self.success else StepStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ExecutionResult:
    """
    Result of one policy invocation.

    files_modified is only populated for a fully successful run (and, in
    commit mode, only once the commit is recorded). retryable/retry_after_ms/
    lock_contention are set when the failure came from git lock contention
    rather than from the workflow itself.
    """

    success: bool
    policy_name: str
    message: str
    step_results: list[StepResult] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    git_commit: str | None = None
    undo_available: bool = False
    summary: str | None = None
    retryable: bool = False
    retry_after_ms: int | None = None
    lock_contention: bool = False
    duration_ms: float = 0.0
    tokens_estimate: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["step_results"] = [r.to_dict() for r in self.step_results]
        return data


@dataclass
class PreviewStep:
    step_id: str
    tool: str
    resolved_params: dict[str, Any]
    skipped: bool = False
    skip_reason: str | None = None


@dataclass
class PreviewResult:
    """
    What execute() would do, computed without touching the vault.

    Attributes:
        policy_name: The policy previewed
        resolved_variables: Variables after defaults
        condition_results: Condition id -> met
        steps_to_execute: Per-step resolved params and skip status
        files_affected: Paths of steps that would run
        variable_errors: Errors execute() would reject the variables with
        tokens_estimate: Rough size of this result
    """

    policy_name: str
    resolved_variables: dict[str, Any] = field(default_factory=dict)
    condition_results: dict[str, bool] = field(default_factory=dict)
    steps_to_execute: list[PreviewStep] = field(default_factory=list)
    files_affected: list[str] = field(default_factory=list)
    variable_errors: list[str] = field(default_factory=list)
    tokens_estimate: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Step Executor
# =============================================================================


class StepExecutor:
    """
    Runs single steps: gate, interpolate, dispatch, normalize.

    Attributes:
        vault_path: Vault root passed to primitives
        registry: Primitive lookup
        resolver: Template resolver for parameters
        logger: Receives skip and failure messages
    """

    def __init__(
        self,
        vault_path: Path,
        registry: ToolRegistry,
        resolver: TemplateResolver,
        logger: logging.Logger,
    ) -> None:
        self.vault_path = vault_path
        self.registry = registry
        self.resolver = resolver
        self.logger = logger

    def resolve_params(self, step: PolicyStep, ctx: PolicyContext) -> dict[str, Any]:
        return self.resolver.interpolate_object(step.params, ctx)

    def execute_step(
        self,
        step: PolicyStep,
        ctx: PolicyContext,
        condition_map: dict[str, bool],
        policy_name: str | None = None,
        before_dispatch: Callable[[str], None] | None = None,
    ) -> StepResult:
        """
        Execute one step.

        Args:
            step: The step declaration
            ctx: Invocation context (steps.<id> is updated on success)
            condition_map: Frozen condition results
            policy_name: Passed through to the primitive
            before_dispatch: Called with the resolved path right before the
                primitive runs

        Returns:
            StepResult; exceptions from the primitive become failed results
        """
        tool_name = step.tool.value
        execute, reason = should_step_execute(step.when, condition_map, self.logger)
        if not execute:
            self.logger.info("Skipping step '%s': %s", step.id, reason)
            return StepResult(
                step_id=step.id,
                tool=tool_name,
                success=True,
                message=f"Skipped: {reason}",
                skipped=True,
                skip_reason=reason,
            )

        params = self.resolve_params(step, ctx)
        path = params.get("path") if isinstance(params.get("path"), str) else None

        try:
            tool = self.registry.get(tool_name)
        except ToolNotFoundError as e:
            return StepResult(step_id=step.id, tool=tool_name, success=False, message=e.message, path=path)

        if before_dispatch is not None and path:
            before_dispatch(path)

        context = ToolContext(vault_path=self.vault_path, policy_name=policy_name)
        try:
            output = tool.execute(params, context)
        except ToolExecutionError as e:
            self.logger.error("Step '%s' failed during %s: %s", step.id, tool_name, e.underlying_error)
            return StepResult(
                step_id=step.id,
                tool=tool_name,
                success=False,
                message=e.message,
                path=path,
            )
        except Exception as e:
            self.logger.exception("Step '%s' raised during %s", step.id, tool_name)
            return StepResult(
                step_id=step.id,
                tool=tool_name,
                success=False,
                message=f"Tool execution failed: {e}",
                path=path,
            )

        path = output.path or path
        if not output.success:
            self.logger.warning("Step '%s' failed: %s", step.id, output.message)
            return StepResult(
                step_id=step.id,
                tool=tool_name,
                success=False,
                message=output.message,
                path=path,
            )

        outputs = {"path": path, **output.outputs}
        ctx.steps[step.id] = outputs
        return StepResult(
            step_id=step.id,
            tool=tool_name,
            success=True,
            message=output.message,
            path=path,
            preview=output.preview,
            outputs=outputs,
        )


# =============================================================================
# Engine
# =============================================================================


class Engine:
    """
    Executes and previews policies for one vault.

    Usage:
        engine = Engine("/path/to/vault")
        result = engine.execute(policy, {"topic": "Weekly review"}, commit=True)
        if result.retryable:
            time.sleep(result.retry_after_ms / 1000)

    Attributes:
        vault_path: Vault root
        config: Engine tunables
        registry: Primitive lookup
        git: Git collaborator
        logger: Logger handed to every collaborator
    """

    def __init__(
        self,
        vault_path: str | Path,
        registry: ToolRegistry | None = None,
        config: EngineConfig | None = None,
        logger: logging.Logger | None = None,
        git: GitClient | None = None,
    ) -> None:
        self.vault_path = Path(vault_path).resolve()
        self.config = config or EngineConfig()
        self.registry = registry or default_registry
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.git = git or GitClient(
            self.vault_path,
            timeout_seconds=self.config.git_timeout_seconds,
            stale_lock_seconds=self.config.stale_lock_seconds,
            max_attempts=self.config.commit_max_attempts,
            retry_base_ms=self.config.commit_retry_base_ms,
        )
        self.resolver = TemplateResolver(logger=self.logger)
        self.evaluator = ConditionEvaluator(self.vault_path, resolver=self.resolver, logger=self.logger)
        self.executor = StepExecutor(self.vault_path, self.registry, self.resolver, self.logger)

    def _prepare(self, policy: PolicyDefinition, variables: dict[str, Any]) -> PolicyContext:
        ctx = create_context(resolve_variables(policy, variables))
        ctx.conditions = self.evaluator.evaluate_all(policy.conditions, ctx)
        return ctx

    def execute(
        self,
        policy: PolicyDefinition,
        variables: dict[str, Any] | None = None,
        commit: bool = False,
    ) -> ExecutionResult:
        """
        Run a policy.

        Args:
            policy: A validated policy definition
            variables: Caller-supplied variable values
            commit: Record all changes as one git commit (with rollback on
                any failure)

        Returns:
            ExecutionResult describing the outcome
        """
        start = time.monotonic()
        variables = variables or {}

        def finish(result: ExecutionResult) -> ExecutionResult:
            result.duration_ms = (time.monotonic() - start) * 1000
            result.tokens_estimate = estimate_tokens(result.to_dict())
            return result

        try:
            check_variables(policy, variables)
        except VariableError as e:
            self.logger.warning("Policy '%s' rejected: %s", policy.name, e.message)
            return finish(ExecutionResult(
                success=False,
                policy_name=policy.name,
                message=e.message,
            ))

        if commit:
            lock_failure = self._check_lock(policy)
            if lock_failure is not None:
                return finish(lock_failure)

        ctx = self._prepare(policy, variables)
        snapshots = self._snapshot_paths(policy, ctx)

        def snapshot_lazily(path: str) -> None:
            if path not in snapshots:
                self._snapshot(path, snapshots)

        step_results: list[StepResult] = []
        modified: list[str] = []

        for step in policy.steps:
            result = self.executor.execute_step(
                step, ctx, ctx.conditions,
                policy_name=policy.name,
                before_dispatch=snapshot_lazily,
            )
            step_results.append(result)

            if not result.success:
                if commit and modified:
                    self.rollback(modified, snapshots)
                return finish(ExecutionResult(
                    success=False,
                    policy_name=policy.name,
                    message=f"Policy failed at step '{step.id}': {result.message}",
                    step_results=step_results,
                ))

            if not result.skipped and result.path and result.path not in modified:
                modified.append(result.path)

        git_commit = None
        undo_available = False
        if commit and modified:
            summaries = [f"{r.step_id}: {r.message}" for r in step_results if not r.skipped]
            commit_result = self.git.commit_atomic(
                modified, policy.name, summaries, prefix=self.config.commit_message_prefix,
            )
            if not commit_result.success:
                self.rollback(modified, snapshots)
                error = commit_result.error or "unknown error"
                retryable = any(marker in error.lower() for marker in COMMIT_LOCK_MARKERS)
                return finish(ExecutionResult(
                    success=False,
                    policy_name=policy.name,
                    message=f"Policy steps succeeded but git commit failed: {error}. All changes rolled back.",
                    step_results=step_results,
                    retryable=retryable,
                    retry_after_ms=self.config.commit_retry_after_ms if retryable else None,
                    lock_contention=retryable,
                ))
            git_commit = commit_result.hash
            undo_available = commit_result.undo_available

        summary = None
        if policy.output and policy.output.summary:
            summary = self.resolver.interpolate(policy.output.summary, ctx)

        self.logger.info("Policy '%s' executed: %d step(s), %d file(s)", policy.name, len(step_results), len(modified))
        return finish(ExecutionResult(
            success=True,
            policy_name=policy.name,
            message=f"Policy '{policy.name}' executed successfully",
            step_results=step_results,
            files_modified=modified,
            git_commit=git_commit,
            undo_available=undo_available,
            summary=summary,
        ))

    def preview(self, policy: PolicyDefinition, variables: dict[str, Any] | None = None) -> PreviewResult:
        """
        Show what execute() would do without dispatching any primitive.

        Args:
            policy: A validated policy definition
            variables: Caller-supplied variable values

        Returns:
            PreviewResult with resolved params and skip status per step
        """
        variables = variables or {}
        ctx = self._prepare(policy, variables)

        steps: list[PreviewStep] = []
        files: list[str] = []
        for step in policy.steps:
            execute, reason = should_step_execute(step.when, ctx.conditions, self.logger)
            params = self.executor.resolve_params(step, ctx)
            steps.append(PreviewStep(
                step_id=step.id,
                tool=step.tool.value,
                resolved_params=params,
                skipped=not execute,
                skip_reason=reason,
            ))
            path = params.get("path")
            if execute and isinstance(path, str) and path and path not in files:
                files.append(path)

        result = PreviewResult(
            policy_name=policy.name,
            resolved_variables=ctx.variables,
            condition_results=dict(ctx.conditions),
            steps_to_execute=steps,
            files_affected=files,
            variable_errors=validate_variables(policy, variables),
        )
        result.tokens_estimate = estimate_tokens(result.to_dict())
        return result

    # =========================================================================
    # Transaction helpers
    # =========================================================================

    def _check_lock(self, policy: PolicyDefinition) -> ExecutionResult | None:
        """Retryable failure if another process holds the git index lock."""
        if not self.git.is_repo():
            return None
        lock = self.git.check_lock()
        if not lock.locked:
            return None

        if lock.stale:
            retry_after = self.config.stale_lock_retry_after_ms
            message = (
                f"Git index.lock is stale ({lock.age_ms}ms old). "
                f"Another process may have crashed. Retry in {retry_after}ms."
            )
        else:
            retry_after = self.config.lock_retry_after_ms
            message = f"Git lock contention: another process is committing. Retry in {retry_after}ms."

        self.logger.warning("Policy '%s' blocked by git lock: %s", policy.name, message)
        return ExecutionResult(
            success=False,
            policy_name=policy.name,
            message=message,
            retryable=True,
            retry_after_ms=retry_after,
            lock_contention=True,
        )

    def _snapshot(self, path: str, snapshots: dict[str, str | None]) -> None:
        try:
            snapshots[path] = notes.read_raw(self.vault_path, path)
        except (VaultkeeperError, OSError, UnicodeDecodeError) as e:
            self.logger.warning("Could not snapshot %s: %s", path, e)

    def _snapshot_paths(self, policy: PolicyDefinition, ctx: PolicyContext) -> dict[str, str | None]:
        """
        Snapshot every step path that resolves against the initial context.

        Paths that depend on earlier step outputs are snapshotted later, right
        before the step that first touches them.
        """
        snapshots: dict[str, str | None] = {}
        for step in policy.steps:
            raw = step.params.get("path")
            if not isinstance(raw, str):
                continue
            path = self.resolver.interpolate(raw, ctx)
            if not path or has_template_expressions(path) or path in snapshots:
                continue
            self._snapshot(path, snapshots)
        return snapshots

    def rollback(self, paths: list[str], snapshots: dict[str, str | None]) -> list[str]:
        """
        Restore files to their snapshots, newest change first.

        A None snapshot means the file didn't exist, so it is deleted.
        Best effort: a file that can't be restored is logged and skipped.

        Returns:
            Paths that could not be restored
        """
        failed = []
        for path in reversed(paths):
            if path not in snapshots:
                self.logger.error("No snapshot for %s; leaving it as is", path)
                failed.append(path)
                continue
            original = snapshots[path]
            try:
                if original is None:
                    notes.delete_file(self.vault_path, path)
                else:
                    notes.write_raw(self.vault_path, path, original)
            except (VaultkeeperError, OSError) as e:
                self.logger.error("Rollback of %s failed: %s", path, e)
                failed.append(path)
            else:
                self.logger.info("Rolled back %s", path)
        return failed
