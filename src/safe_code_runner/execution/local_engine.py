from __future__ import annotations

import os
import time
import uuid
from pathlib import Path
from typing import Any

from ..errors import ExecutionFailure
from ..languages import Language, LanguageDriver, driver_for
from ..logging_config import get_logger
from ..policy import TIMEOUT_EXIT_CODE, ExecutionResult, Outcome, RunnerPolicy
from ..screen import LexicalScreen
from .budget import TimeBudget
from .process import run_process, truncate_output
from .toolchain import Toolchain, require_toolchain
from .types import CompileOutcome, ExecutionRequest, ProcessOutcome
from .workspace import Workspace


class LocalEngine:
    """Compile and run untrusted code as local child processes.

    Every run gets its own workspace under the scratch root, its own process
    group and its own deadline; nothing is shared between runs except the
    read-only policy. This is not an isolation boundary: put the host in a
    container or VM before accepting hostile input.

    Example:
        ```python
        engine = LocalEngine(policy=RunnerPolicy(default_timeout_ms=5_000))
        result = engine.execute(ExecutionRequest(code="print('hi')", language="python"))
        ```
    """

    def __init__(
        self,
        *,
        policy: RunnerPolicy | None = None,
        policy_file: str | None = None,
    ) -> None:
        """Resolve the policy and prepare the scratch root once.

        Example:
            ```python
            engine = LocalEngine(policy_file="/etc/safe-code-runner/policy.toml")
            ```
        """
        if policy is not None and policy_file is not None:
            raise ValueError("Provide either 'policy' or 'policy_file', not both")
        if policy_file is not None:
            policy = RunnerPolicy.from_file(policy_file)
        self._policy = policy or RunnerPolicy()
        self._screen = LexicalScreen(self._policy.extra_deny_patterns)
        self._scratch_root = self._policy.resolved_scratch_root()
        self._scratch_root.mkdir(parents=True, exist_ok=True)

    @property
    def policy(self) -> RunnerPolicy:
        """Return the read-only policy of this engine.

        Example:
            ```python
            limit = engine.policy.max_output_length
            ```
        """
        return self._policy

    @property
    def scratch_root(self) -> Path:
        """Return the directory that holds per-run workspaces.

        Example:
            ```python
            root = engine.scratch_root
            ```
        """
        return self._scratch_root

    @property
    def screen(self) -> LexicalScreen:
        """Return the deny-list screen applied before every run.

        Example:
            ```python
            violations = engine.screen.scan(code, Language.GO)
            ```
        """
        return self._screen

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one request; never raises for run-level failures.

        Example:
            ```python
            result = engine.execute(ExecutionRequest(code="print('hi')", language="python"))
            assert result.stdout == "hi"
            ```
        """
        started = time.monotonic()
        run_id = uuid.uuid4().hex
        log = get_logger(__name__, run_id=run_id, language=str(getattr(request.language, "value", request.language)))
        try:
            result = self._run(request, run_id, log)
        except ExecutionFailure as failure:
            result = failure.to_result(elapsed_ms=0)
        except Exception as exc:
            log.exception("run_failed_unexpectedly")
            result = ExecutionResult(
                stdout="",
                stderr=f"Internal execution error: {exc}",
                exit_code=1,
                status=Outcome.INTERNAL_ERROR,
            )
        result.elapsed_ms = int((time.monotonic() - started) * 1000)
        log.info(
            "run_finished",
            status=result.status.value,
            exit_code=result.exit_code,
            elapsed_ms=result.elapsed_ms,
        )
        return result

    def _run(self, request: ExecutionRequest, run_id: str, log: Any) -> ExecutionResult:
        """Drive one run through validate, screen, probe, stage, compile, execute.

        Example:
            ```python
            result = engine._run(request, uuid.uuid4().hex, get_logger())
            ```
        """
        language, timeout_ms, memory_limit_mb = self._validate(request, log)
        driver = driver_for(language)

        violations = self._screen.scan(request.code, language)
        if violations:
            log.warning("deny_list_match", rules=[v.rule.name for v in violations])
            self._screen.check(request.code, language)

        try:
            tool = require_toolchain(driver)
        except ExecutionFailure:
            log.warning("toolchain_missing", candidates=list(driver.toolchain_candidates))
            raise

        budget = TimeBudget(timeout_ms, compile_share=self._policy.compile_share)
        with Workspace.create(self._scratch_root, run_id, log) as workspace:
            workspace.write_source(driver.source_name, request.code)
            env = self._child_env(driver, workspace)

            if driver.needs_compile:
                built = self._compile(driver, tool, workspace.path, env, budget, log)
                if built.timed_out:
                    raise ExecutionFailure(
                        Outcome.TIMEOUT,
                        f"Compilation timed out after {budget.compile_cap_ms} ms",
                        exit_code=TIMEOUT_EXIT_CODE,
                    )
                if not built.ok:
                    log.info("compile_failed", exit_code=built.exit_code)
                    raise ExecutionFailure(Outcome.COMPILE_ERROR, built.diagnostics, exit_code=built.exit_code)

            remaining = budget.remaining_seconds()
            if remaining <= 0:
                raise ExecutionFailure(
                    Outcome.TIMEOUT,
                    f"Execution timed out after {timeout_ms} ms",
                    exit_code=TIMEOUT_EXIT_CODE,
                )
            outcome = self._spawn(
                driver.run_command(tool.path, workspace.path),
                driver,
                workspace.path,
                env,
                stdin=request.options.stdin,
                timeout_seconds=remaining,
                memory_limit_mb=memory_limit_mb,
                log=log,
            )
            return self._to_result(outcome, timeout_ms, log)

    def _validate(self, request: ExecutionRequest, log: Any) -> tuple[Language, int, int]:
        """Check request shape before any side effect.

        Example:
            ```python
            language, timeout_ms, memory_mb = engine._validate(request, log)
            ```
        """
        policy = self._policy
        problem: str | None = None
        language: Language | None = None
        options = request.options
        memory_limit_mb = options.memory_limit_mb if options.memory_limit_mb is not None else policy.memory_limit_mb

        if not isinstance(request.code, str) or not request.code.strip():
            problem = "Code cannot be empty"
        elif len(request.code) > policy.max_code_length:
            problem = f"Code is too long (max {policy.max_code_length} characters)"
        else:
            try:
                language = Language.parse(request.language)
            except ValueError as exc:
                problem = str(exc)

        timeout_ms = options.timeout_ms if options.timeout_ms is not None else self._default_timeout_ms(language)
        if problem is None:
            if timeout_ms <= 0:
                problem = "timeout_ms must be positive"
            elif timeout_ms > policy.max_timeout_ms:
                problem = f"timeout_ms must not exceed {policy.max_timeout_ms}"
            elif memory_limit_mb < 0:
                problem = "memory_limit_mb must not be negative"
            elif len(options.stdin) > policy.max_stdin_length:
                problem = f"stdin is too long (max {policy.max_stdin_length} characters)"

        if problem is not None or language is None:
            log.info("run_rejected", reason=problem)
            raise ExecutionFailure(Outcome.VALIDATION_ERROR, problem or "Invalid request")
        return language, timeout_ms, memory_limit_mb

    def _default_timeout_ms(self, language: Language | None) -> int:
        """Return the policy default, raised to the driver's floor for slow builds.

        Example:
            ```python
            engine._default_timeout_ms(Language.GO)  # 30_000 with the bundled policy
            ```
        """
        default = self._policy.default_timeout_ms
        if language is None:
            return default
        floor = driver_for(language).default_timeout_floor_ms
        return min(max(default, floor), self._policy.max_timeout_ms)

    def _compile(
        self,
        driver: LanguageDriver,
        tool: Toolchain,
        workspace: Path,
        env: dict[str, str],
        budget: TimeBudget,
        log: Any,
    ) -> CompileOutcome:
        """Run the driver's build steps inside the compile slice.

        Example:
            ```python
            built = engine._compile(driver, tool, ws.path, env, budget, log)
            ```
        """
        limit = self._policy.max_output_length
        for step in driver.compile_steps(tool.path, workspace):
            remaining = budget.compile_remaining_seconds()
            if remaining <= 0:
                return CompileOutcome(ok=False, timed_out=True, exit_code=TIMEOUT_EXIT_CODE)
            outcome = self._spawn(step.argv, driver, workspace, env, timeout_seconds=remaining, log=log)
            if outcome.timed_out:
                return CompileOutcome(ok=False, timed_out=True, exit_code=TIMEOUT_EXIT_CODE)
            failed = outcome.exit_code != 0 or (step.strict_stderr and bool(outcome.stderr))
            if failed:
                diagnostics = outcome.stderr or outcome.stdout or "Compilation failed"
                diagnostics, _ = truncate_output(diagnostics, limit)
                return CompileOutcome(ok=False, diagnostics=diagnostics, exit_code=outcome.exit_code or 1)
        artifact = workspace / driver.artifact_name if driver.artifact_name else None
        return CompileOutcome(ok=True, artifact=artifact)

    def _spawn(
        self,
        argv: list[str],
        driver: LanguageDriver,
        workspace: Path,
        env: dict[str, str],
        *,
        timeout_seconds: float,
        stdin: str = "",
        memory_limit_mb: int = 0,
        log: Any,
    ) -> ProcessOutcome:
        """Start one child, mapping a vanished toolchain to its own outcome.

        Example:
            ```python
            outcome = engine._spawn(["./main"], driver, ws.path, env, timeout_seconds=1.0, log=log)
            ```
        """
        try:
            return run_process(
                argv,
                cwd=workspace,
                env=env,
                stdin=stdin,
                timeout_seconds=timeout_seconds,
                output_limit=self._policy.max_output_length,
                memory_limit_mb=memory_limit_mb,
                kill_grace_seconds=self._policy.kill_grace_seconds,
                log=log,
            )
        except FileNotFoundError as exc:
            log.warning("toolchain_vanished", argv0=argv[0], error=str(exc))
            raise ExecutionFailure(Outcome.TOOLCHAIN_MISSING, driver.install_hint) from exc

    def _to_result(self, outcome: ProcessOutcome, timeout_ms: int, log: Any) -> ExecutionResult:
        """Classify the program phase.

        Example:
            ```python
            result = engine._to_result(outcome, 10_000, log)
            ```
        """
        if outcome.timed_out:
            log.warning("run_timed_out", timeout_ms=timeout_ms)
            return ExecutionResult(
                stdout=outcome.stdout,
                stderr=f"Execution timed out after {timeout_ms} ms",
                exit_code=TIMEOUT_EXIT_CODE,
                status=Outcome.TIMEOUT,
                stdout_truncated=outcome.stdout_truncated,
            )
        return ExecutionResult(
            stdout=outcome.stdout,
            stderr=outcome.stderr or None,
            exit_code=outcome.exit_code,
            status=Outcome.OK if outcome.exit_code == 0 else Outcome.RUNTIME_ERROR,
            stdout_truncated=outcome.stdout_truncated,
            stderr_truncated=outcome.stderr_truncated,
        )

    def _child_env(self, driver: LanguageDriver, workspace: Workspace) -> dict[str, str]:
        """Build a minimal environment rooted in the workspace.

        TMPDIR points at the workspace's `tmp/` child; Go ignores a go.mod
        that sits directly in the temp root.

        Example:
            ```python
            env = engine._child_env(driver_for(Language.GO), ws)
            ```
        """
        env = {
            "PATH": os.environ.get("PATH", os.defpath),
            "HOME": str(workspace.path),
            "TMPDIR": str(workspace.tmp_dir),
            "LANG": "C.UTF-8",
            "PYTHONIOENCODING": "utf-8",
            "PYTHONDONTWRITEBYTECODE": "1",
        }
        env.update(driver.extra_env(workspace.path))
        return env
