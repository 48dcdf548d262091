from __future__ import annotations

from typing import Protocol

from ..policy import ExecutionResult
from .types import ExecutionRequest


class ExecutionEngine(Protocol):
    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one request and return its classified result.

        Implementations never raise for run-level failures.

        Example:
            ```python
            result = engine.execute(ExecutionRequest(code="print(1)", language="python"))
            ```
        """
        ...
