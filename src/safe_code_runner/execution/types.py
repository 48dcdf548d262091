from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from ..languages import Language

_OPTION_ALIASES = {
    "timeout_ms": "timeout_ms",
    "timeoutMs": "timeout_ms",
    "timeout": "timeout_ms",
    "stdin": "stdin",
    "input": "stdin",
    "memory_limit_mb": "memory_limit_mb",
    "memoryLimitMb": "memory_limit_mb",
    "maxMemory": "memory_limit_mb",
}


@dataclass(frozen=True, slots=True)
class ExecutionOptions:
    """Per-run knobs supplied by the caller.

    `None` falls back to the engine policy.

    Example:
        ```python
        opts = ExecutionOptions(timeout_ms=500, stdin="3 4\\n")
        ```
    """

    timeout_ms: int | None = None
    stdin: str = ""
    memory_limit_mb: int | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ExecutionOptions":
        """Build options from snake_case or wire camelCase keys.

        Example:
            ```python
            opts = ExecutionOptions.from_mapping({"timeoutMs": 500, "stdin": "x"})
            ```
        """
        values: dict[str, Any] = {}
        for key, value in raw.items():
            target = _OPTION_ALIASES.get(str(key))
            if target is None:
                raise ValueError(f"Unknown execution option: {key}")
            values[target] = value
        timeout_ms = values.get("timeout_ms")
        memory_limit_mb = values.get("memory_limit_mb")
        stdin = values.get("stdin")
        if timeout_ms is not None and (isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float))):
            raise ValueError("timeout_ms must be a number")
        if memory_limit_mb is not None and (isinstance(memory_limit_mb, bool) or not isinstance(memory_limit_mb, int)):
            raise ValueError("memory_limit_mb must be an integer")
        if stdin is not None and not isinstance(stdin, str):
            raise ValueError("stdin must be a string")
        return cls(
            timeout_ms=int(timeout_ms) if timeout_ms is not None else None,
            stdin=stdin or "",
            memory_limit_mb=memory_limit_mb,
        )


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Normalized request sent to an execution engine.

    Example:
        ```python
        req = ExecutionRequest(code="print('hi')", language="python")
        ```
    """

    code: str
    language: str | Language
    options: ExecutionOptions = ExecutionOptions()


@dataclass(slots=True)
class ProcessOutcome:
    """Captured result of one child process.

    Example:
        ```python
        out = ProcessOutcome(stdout="hi", stderr="", exit_code=0, timed_out=False)
        ```
    """

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool
    cancelled: bool = False
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    elapsed_ms: int = 0


@dataclass(slots=True)
class CompileOutcome:
    """Result of the build phase of a compiled language.

    Example:
        ```python
        built = CompileOutcome(ok=True, artifact=Path("/tmp/run/main"))
        ```
    """

    ok: bool
    artifact: Path | None = None
    diagnostics: str = ""
    exit_code: int = 0
    timed_out: bool = False
