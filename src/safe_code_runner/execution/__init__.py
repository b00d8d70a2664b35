from .engine import ExecutionEngine
from .types import ExecutionFailed, ExecutionOutcome, ExecutionRequest, ExecutionSucceeded

__all__ = [
    "ExecutionEngine",
    "ExecutionFailed",
    "ExecutionOutcome",
    "ExecutionRequest",
    "ExecutionSucceeded",
]
