from __future__ import annotations

import logging
from typing import Any

from .errors import ErrorCategory, ExecutionError
from .execution.docker_engine import DockerEngine
from .execution.engine import ExecutionEngine

logger = logging.getLogger(__name__)

MAX_STDERR_CHARS = 500
NO_OUTPUT_MESSAGE = "Execution completed successfully (no output)"
TOOL_NAME = "execute_code"
TOOL_DESCRIPTION = (
    "Execute code in an isolated Docker container. "
    "You MUST specify the Docker image, file extension, and command. "
    "Common images: python:3.12-slim, node:20-alpine, ruby:3.3-slim, "
    "golang:1.22-alpine, rust:1.75-slim, openjdk:21-slim. "
    "The code runs with network disabled for security. "
    "Returns stdout of execution or error message."
)


def truncate_stderr(stderr: str, max_chars: int = MAX_STDERR_CHARS) -> str:
    """Shorten stderr for display, marking where it was cut.

    Example:
        ```python
        truncate_stderr("x" * 600)  # first 500 chars + "\\n... (truncated)"
        ```
    """
    if len(stderr) <= max_chars:
        return stderr
    return stderr[:max_chars] + "\n... (truncated)"


def format_error(error: ExecutionError) -> str:
    """Render a classified failure as an actionable, non-technical message.

    Example:
        ```python
        format_error(ExecutionError.image_not_found("nope:latest"))
        ```
    """
    category = error.category
    if category is ErrorCategory.RUNTIME_UNAVAILABLE:
        return "Docker is not available. Cannot execute code. Please ensure Docker daemon is running."
    if category is ErrorCategory.IMAGE_NOT_FOUND:
        return f"Image '{error.image}' not found. Try a different image or check the image name."
    if category is ErrorCategory.IMAGE_PULL_FAILED:
        return f"Failed to pull image '{error.image}'. Check network connectivity or try a different image."
    if category is ErrorCategory.CONTAINER_CREATE_FAILED:
        return (
            f"Failed to create container with image '{error.image}'. "
            "The image may not be compatible or Docker resources are exhausted."
        )
    if category is ErrorCategory.EXECUTION_TIMEOUT:
        return "Execution timed out. The code took too long to run. Simplify the code or check for infinite loops."
    if category is ErrorCategory.EXECUTION_FAILED:
        if error.stderr:
            return f"Execution failed (exit code {error.exit_code}):\n{truncate_stderr(error.stderr)}"
        return f"Execution failed with exit code {error.exit_code}."
    if category is ErrorCategory.OUTPUT_LIMIT_EXCEEDED:
        return "Output limit exceeded. The code produced too much output."
    if category is ErrorCategory.RESOURCE_LIMIT_EXCEEDED:
        return "Resource limit exceeded (memory or CPU). Reduce memory usage or simplify the computation."
    if category is ErrorCategory.INPUT_STAGING_FAILED:
        return "Failed to copy code to container. This is an internal error."
    return f"Execution error: {error.message}"


def parameters_schema() -> dict[str, Any]:
    """Return the JSON schema of the tool arguments for function calling.

    Example:
        ```python
        tool_def = {"name": TOOL_NAME, "description": TOOL_DESCRIPTION, "parameters": parameters_schema()}
        ```
    """
    return {
        "type": "object",
        "properties": {
            "image": {
                "type": "string",
                "description": "Docker image to use (e.g., 'python:3.12-slim', 'node:20-alpine', 'golang:1.22-alpine')",
            },
            "file_extension": {
                "type": "string",
                "description": "File extension for the code file (e.g., '.py', '.js', '.go', '.rs', '.rb', '.sh')",
            },
            "code": {"type": "string", "description": "The source code to execute"},
            "command": {
                "type": "string",
                "description": (
                    "Command to run the code (e.g., 'python' for Python, 'node' for JavaScript, "
                    "'ruby' for Ruby, 'go run' for Go, 'sh' for shell scripts)"
                ),
            },
            "timeout_seconds": {
                "type": "number",
                "description": "Optional execution timeout in seconds",
            },
        },
        "required": ["image", "file_extension", "code", "command"],
    }


class CodeExecutionTool:
    """Agent-facing wrapper that always answers with a string.

    Successful output is returned as-is; every failure is rendered as a
    readable message instead of raising.

    Example:
        ```python
        tool = CodeExecutionTool()
        tool.execute("python:3.12-slim", ".py", "print(2 + 2)", "python")  # "4"
        ```
    """

    def __init__(self, engine: ExecutionEngine | None = None) -> None:
        """Wrap an engine; a default-policy DockerEngine is used when omitted.

        Example:
            ```python
            tool = CodeExecutionTool(DockerEngine(ExecutionPolicy(memory_limit="128m")))
            ```
        """
        self._engine = engine if engine is not None else DockerEngine()

    @property
    def engine(self) -> ExecutionEngine:
        """Return the wrapped engine.

        Example:
            ```python
            tool.engine.policy.timeout_seconds
            ```
        """
        return self._engine

    def execute(
        self,
        image: str,
        file_extension: str,
        code: str,
        command: str,
        timeout_seconds: float | None = None,
    ) -> str:
        """Run code and return stdout or a formatted error message.

        Example:
            ```python
            reply = tool.execute("node:20-alpine", ".js", "console.log(1)", "node", timeout_seconds=10)
            ```
        """
        if (
            timeout_seconds is None
            or isinstance(timeout_seconds, bool)
            or not isinstance(timeout_seconds, (int, float))
            or timeout_seconds <= 0
        ):
            timeout_seconds = self._engine.policy.timeout_seconds
        logger.debug("Tool executing code with image: %s, extension: %s, command: %s", image, file_extension, command)
        try:
            result = self._engine.execute(image, file_extension, code, command, timeout_seconds)
        except ExecutionError as exc:
            logger.warning("Tool execution failed: %s", exc)
            return format_error(exc)
        except ValueError as exc:
            logger.warning("Tool received invalid arguments: %s", exc)
            return f"Invalid arguments: {exc}"
        return result if result else NO_OUTPUT_MESSAGE

    def is_available(self) -> bool:
        """Report whether the wrapped engine can reach its runtime.

        Example:
            ```python
            tool.is_available()
            ```
        """
        return self._engine.is_available()
