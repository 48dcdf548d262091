from __future__ import annotations

from .policy import ExecutionResult, Outcome


class ExecutionFailure(Exception):
    """Raised by a pipeline stage to end a run with a classified result.

    The engine catches it at its boundary; callers never see it.

    Example:
        ```python
        raise ExecutionFailure(Outcome.VALIDATION_ERROR, "Code cannot be empty")
        ```
    """

    def __init__(self, outcome: Outcome, message: str, exit_code: int = 1, stdout: str = "") -> None:
        """Store the classification carried to the result.

        Example:
            ```python
            failure = ExecutionFailure(Outcome.COMPILE_ERROR, "main.cpp:1: error", exit_code=1)
            ```
        """
        super().__init__(message)
        self.outcome = outcome
        self.message = message
        self.exit_code = exit_code
        self.stdout = stdout

    def to_result(self, elapsed_ms: int) -> ExecutionResult:
        """Fold this failure into an `ExecutionResult`.

        Example:
            ```python
            result = failure.to_result(elapsed_ms=3)
            ```
        """
        return ExecutionResult(
            stdout=self.stdout,
            stderr=self.message,
            exit_code=self.exit_code,
            elapsed_ms=elapsed_ms,
            status=self.outcome,
        )
