import pytest

from safe_code_runner import CodeExecutionTool, ExecutionError, ExecutionPolicy
from safe_code_runner.tool import (
    MAX_STDERR_CHARS,
    NO_OUTPUT_MESSAGE,
    TOOL_NAME,
    format_error,
    parameters_schema,
    truncate_stderr,
)


class _StubEngine:
    def __init__(self, result: str = "", error: Exception | None = None) -> None:
        self.policy = ExecutionPolicy(timeout_seconds=12)
        self.result = result
        self.error = error
        self.calls: list[tuple] = []

    def execute(self, image, file_extension, source_code, launch_command, timeout_seconds=None) -> str:
        self.calls.append((image, file_extension, source_code, launch_command, timeout_seconds))
        if self.error is not None:
            raise self.error
        return self.result

    def is_available(self) -> bool:
        return True


def test_truncate_stderr() -> None:
    assert truncate_stderr("short") == "short"
    long = "e" * (MAX_STDERR_CHARS + 10)
    assert truncate_stderr(long) == "e" * MAX_STDERR_CHARS + "\n... (truncated)"


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ExecutionError.runtime_unavailable(), "Docker is not available"),
        (ExecutionError.image_not_found("nope:latest"), "Image 'nope:latest' not found"),
        (ExecutionError.image_pull_failed("node:20-alpine"), "Failed to pull image 'node:20-alpine'"),
        (ExecutionError.container_create_failed("busybox"), "Failed to create container with image 'busybox'"),
        (ExecutionError.input_staging_failed(), "Failed to copy code to container"),
        (ExecutionError.execution_timeout("busybox", 1), "Execution timed out"),
        (ExecutionError.execution_failed("busybox", 2, ""), "Execution failed with exit code 2."),
        (ExecutionError.execution_failed("busybox", 1, "NameError"), "Execution failed (exit code 1):\nNameError"),
        (ExecutionError.output_limit_exceeded("busybox", 10), "Output limit exceeded"),
        (ExecutionError.resource_limit_exceeded("busybox", 137, ""), "Resource limit exceeded"),
        (ExecutionError.unknown("boom"), "Execution error: boom"),
    ],
)
def test_format_error(error: ExecutionError, expected: str) -> None:
    assert format_error(error).startswith(expected)


def test_tool_returns_output() -> None:
    engine = _StubEngine(result="4")
    tool = CodeExecutionTool(engine)
    assert tool.execute("python:3.12-slim", ".py", "print(2 + 2)", "python", timeout_seconds=5) == "4"
    assert engine.calls == [("python:3.12-slim", ".py", "print(2 + 2)", "python", 5)]
    assert tool.engine is engine
    assert tool.is_available() is True


def test_tool_reports_empty_output() -> None:
    assert CodeExecutionTool(_StubEngine(result="")).execute("busybox", ".sh", "true", "sh") == NO_OUTPUT_MESSAGE


@pytest.mark.parametrize("timeout", [None, 0, -3])
def test_tool_falls_back_to_policy_timeout(timeout) -> None:
    engine = _StubEngine(result="ok")
    CodeExecutionTool(engine).execute("busybox", ".sh", "echo ok", "sh", timeout_seconds=timeout)
    assert engine.calls[0][-1] == 12


def test_tool_never_raises_for_execution_errors() -> None:
    engine = _StubEngine(error=ExecutionError.execution_failed("python:3.12-slim", 1, "x" * 900))
    reply = CodeExecutionTool(engine).execute("python:3.12-slim", ".py", "boom", "python")
    assert reply.startswith("Execution failed (exit code 1):")
    assert reply.endswith("... (truncated)")


def test_tool_reports_invalid_arguments() -> None:
    engine = _StubEngine(error=ValueError("'image' must be a non-blank string"))
    reply = CodeExecutionTool(engine).execute("", ".py", "print(1)", "python")
    assert reply == "Invalid arguments: 'image' must be a non-blank string"


def test_parameters_schema() -> None:
    schema = parameters_schema()
    assert TOOL_NAME == "execute_code"
    assert schema["required"] == ["image", "file_extension", "code", "command"]
    assert "timeout_seconds" in schema["properties"]
