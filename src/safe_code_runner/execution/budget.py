from __future__ import annotations

import time
from typing import Callable


class TimeBudget:
    """Single wall-clock budget shared by the compile and run phases.

    Compilation may use at most `compile_share` of the total. The run phase
    gets whatever the total has left, so a slow compile shortens the run and
    the two phases together never exceed `total_ms`.

    Example:
        ```python
        budget = TimeBudget(10_000, compile_share=0.5)
        compile_s = budget.compile_remaining_seconds()
        run_s = budget.remaining_seconds()
        ```
    """

    def __init__(
        self,
        total_ms: int,
        *,
        compile_share: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Start the budget clock now.

        Example:
            ```python
            budget = TimeBudget(2_000)
            ```
        """
        if total_ms <= 0:
            raise ValueError("total_ms must be positive")
        if not 0.0 < compile_share < 1.0:
            raise ValueError("compile_share must be between 0 and 1 (exclusive)")
        self.total_ms = total_ms
        self.compile_share = compile_share
        self._clock = clock
        self._started = clock()

    @property
    def compile_cap_ms(self) -> int:
        """Return the largest slice the compile phase may use.

        Example:
            ```python
            assert TimeBudget(1_000).compile_cap_ms == 500
            ```
        """
        return int(self.total_ms * self.compile_share)

    def elapsed_seconds(self) -> float:
        """Return seconds spent since the budget started.

        Example:
            ```python
            spent = budget.elapsed_seconds()
            ```
        """
        return self._clock() - self._started

    def remaining_seconds(self) -> float:
        """Return seconds left in the total budget, never negative.

        Example:
            ```python
            timeout = budget.remaining_seconds()
            ```
        """
        return max(0.0, self.total_ms / 1000.0 - self.elapsed_seconds())

    def compile_remaining_seconds(self) -> float:
        """Return seconds left in the compile slice, never negative.

        Example:
            ```python
            timeout = budget.compile_remaining_seconds()
            ```
        """
        return max(0.0, self.compile_cap_ms / 1000.0 - self.elapsed_seconds())

    def exhausted(self) -> bool:
        """Return True once the total budget is spent.

        Example:
            ```python
            if budget.exhausted(): ...
            ```
        """
        return self.remaining_seconds() <= 0.0
