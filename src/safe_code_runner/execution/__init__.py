from .engine import ExecutionEngine
from .local_engine import LocalEngine
from .types import CompileOutcome, ExecutionOptions, ExecutionRequest, ProcessOutcome

__all__ = [
    "CompileOutcome",
    "ExecutionEngine",
    "ExecutionOptions",
    "ExecutionRequest",
    "LocalEngine",
    "ProcessOutcome",
]
