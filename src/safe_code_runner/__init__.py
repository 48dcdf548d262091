from .execution.local_engine import LocalEngine
from .execution.types import ExecutionOptions, ExecutionRequest
from .languages import Language
from .policy import ExecutionResult, Outcome, RunnerPolicy
from .runner import execute
from .screen import LexicalScreen

__all__ = [
    "ExecutionOptions",
    "ExecutionRequest",
    "ExecutionResult",
    "Language",
    "LexicalScreen",
    "LocalEngine",
    "Outcome",
    "RunnerPolicy",
    "execute",
]
