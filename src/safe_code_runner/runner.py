from __future__ import annotations

import time
from typing import Any, Mapping

from .execution.engine import ExecutionEngine
from .execution.types import ExecutionOptions, ExecutionRequest
from .languages import Language
from .policy import ExecutionResult, Outcome


def _resolve_options(options: ExecutionOptions | Mapping[str, Any] | None) -> ExecutionOptions:
    """Normalize caller options into `ExecutionOptions`.

    Example:
        ```python
        opts = _resolve_options({"timeoutMs": 500, "stdin": "1 2"})
        ```
    """
    if options is None:
        return ExecutionOptions()
    if isinstance(options, ExecutionOptions):
        return options
    if isinstance(options, Mapping):
        return ExecutionOptions.from_mapping(options)
    raise ValueError("options must be ExecutionOptions or a mapping")


def execute(
    code: str,
    language: str | Language,
    options: ExecutionOptions | Mapping[str, Any] | None = None,
    *,
    engine: ExecutionEngine,
) -> ExecutionResult:
    """Run `code` through `engine` and return its classified result.

    Bad input never raises; it comes back as a `validation_error` result.

    Example:
        ```python
        from safe_code_runner import LocalEngine, execute
        engine = LocalEngine()
        result = execute("print('hi')", "python", {"timeoutMs": 2_000}, engine=engine)
        ```
    """
    started = time.monotonic()
    try:
        resolved = _resolve_options(options)
    except ValueError as exc:
        return ExecutionResult(
            stdout="",
            stderr=str(exc),
            exit_code=1,
            elapsed_ms=int((time.monotonic() - started) * 1000),
            status=Outcome.VALIDATION_ERROR,
        )
    return engine.execute(ExecutionRequest(code=code, language=language, options=resolved))
