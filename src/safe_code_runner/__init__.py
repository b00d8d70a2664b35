from .errors import ErrorCategory, ExecutionError
from .policy import ExecutionPolicy, RegistryCredential
from .execution.types import ExecutionFailed, ExecutionOutcome, ExecutionRequest, ExecutionSucceeded
from .execution.docker_engine import DockerEngine
from .tool import CodeExecutionTool

__all__ = [
    "CodeExecutionTool",
    "DockerEngine",
    "ErrorCategory",
    "ExecutionError",
    "ExecutionFailed",
    "ExecutionOutcome",
    "ExecutionPolicy",
    "ExecutionRequest",
    "ExecutionSucceeded",
    "RegistryCredential",
]
