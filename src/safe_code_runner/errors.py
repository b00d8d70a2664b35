from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Closed set of root causes an execution can fail with.

    Example:
        ```python
        ErrorCategory("execution-timeout") is ErrorCategory.EXECUTION_TIMEOUT
        ```
    """

    RUNTIME_UNAVAILABLE = "runtime-unavailable"
    IMAGE_NOT_FOUND = "image-not-found"
    IMAGE_PULL_FAILED = "image-pull-failed"
    CONTAINER_CREATE_FAILED = "container-create-failed"
    INPUT_STAGING_FAILED = "input-staging-failed"
    EXECUTION_TIMEOUT = "execution-timeout"
    EXECUTION_FAILED = "execution-failed"
    OUTPUT_LIMIT_EXCEEDED = "output-limit-exceeded"
    RESOURCE_LIMIT_EXCEEDED = "resource-limit-exceeded"
    UNKNOWN = "unknown"


def _truncate(text: str, max_length: int) -> str:
    """Shorten text to ``max_length`` characters with an ellipsis.

    Example:
        ```python
        _truncate("abcdef", 3)  # "abc..."
        ```
    """
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class ExecutionError(Exception):
    """Classified failure raised by the execution engine.

    Carries the error category plus whatever context was known when the
    failure happened: the image, the container exit code and captured stderr.

    Example:
        ```python
        try:
            engine.execute("python:3.12-slim", ".py", "raise SystemExit(3)", "python")
        except ExecutionError as exc:
            print(exc.category, exc.exit_code)
        ```
    """

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        *,
        image: str | None = None,
        exit_code: int | None = None,
        stderr: str | None = None,
    ) -> None:
        """Store the classification and context of a failure.

        Example:
            ```python
            err = ExecutionError(ErrorCategory.UNKNOWN, "boom")
            ```
        """
        super().__init__(message)
        self.category = category
        self.message = message
        self.image = image
        self.exit_code = exit_code
        self.stderr = stderr

    def __repr__(self) -> str:
        """Return a compact debug representation with truncated stderr.

        Example:
            ```python
            repr(ExecutionError.image_not_found("nope:latest"))
            ```
        """
        parts = [f"category={self.category.value}"]
        if self.image is not None:
            parts.append(f"image={self.image!r}")
        if self.exit_code is not None:
            parts.append(f"exit_code={self.exit_code}")
        if self.stderr:
            parts.append(f"stderr={_truncate(self.stderr, 100)!r}")
        parts.append(f"message={self.message!r}")
        return f"ExecutionError({', '.join(parts)})"

    @classmethod
    def runtime_unavailable(cls, reason: str | None = None) -> "ExecutionError":
        """Docker daemon or CLI cannot be reached.

        Example:
            ```python
            raise ExecutionError.runtime_unavailable("connection refused")
            ```
        """
        message = "Docker is not available. Please ensure Docker is installed and running."
        if reason:
            message = f"{message} ({reason})"
        return cls(ErrorCategory.RUNTIME_UNAVAILABLE, message)

    @classmethod
    def image_not_found(cls, image: str) -> "ExecutionError":
        """Referenced image does not exist.

        Example:
            ```python
            raise ExecutionError.image_not_found("this-image-does-not-exist:latest")
            ```
        """
        return cls(ErrorCategory.IMAGE_NOT_FOUND, f"Docker image not found: {image}", image=image)

    @classmethod
    def image_pull_failed(cls, image: str, reason: str | None = None) -> "ExecutionError":
        """Pulling the image failed or did not finish in time.

        Example:
            ```python
            raise ExecutionError.image_pull_failed("python:3.12-slim", "timed out after 300s")
            ```
        """
        message = f"Failed to pull Docker image: {image}"
        if reason:
            message = f"{message} ({reason})"
        return cls(ErrorCategory.IMAGE_PULL_FAILED, message, image=image)

    @classmethod
    def container_create_failed(cls, image: str, reason: str | None = None) -> "ExecutionError":
        """Runtime rejected container creation.

        Example:
            ```python
            raise ExecutionError.container_create_failed("busybox", "invalid memory value")
            ```
        """
        message = f"Failed to create container with image: {image}"
        if reason:
            message = f"{message} ({reason})"
        return cls(ErrorCategory.CONTAINER_CREATE_FAILED, message, image=image)

    @classmethod
    def input_staging_failed(cls, reason: str | None = None) -> "ExecutionError":
        """Source file could not be copied into the container.

        Example:
            ```python
            raise ExecutionError.input_staging_failed("container rootfs is marked read-only")
            ```
        """
        message = "Failed to copy code to container"
        if reason:
            message = f"{message} ({reason})"
        return cls(ErrorCategory.INPUT_STAGING_FAILED, message)

    @classmethod
    def execution_timeout(cls, image: str | None, timeout_seconds: float) -> "ExecutionError":
        """Process did not exit before the deadline.

        Example:
            ```python
            raise ExecutionError.execution_timeout("busybox", 1)
            ```
        """
        return cls(
            ErrorCategory.EXECUTION_TIMEOUT,
            f"Code execution timed out after {timeout_seconds:g} seconds",
            image=image,
        )

    @classmethod
    def execution_failed(cls, image: str, exit_code: int, stderr: str) -> "ExecutionError":
        """Process exited with a non-zero code.

        Example:
            ```python
            raise ExecutionError.execution_failed("busybox", 3, "")
            ```
        """
        return cls(
            ErrorCategory.EXECUTION_FAILED,
            f"Code execution failed with exit code {exit_code}",
            image=image,
            exit_code=exit_code,
            stderr=stderr,
        )

    @classmethod
    def output_limit_exceeded(cls, image: str, limit_bytes: int) -> "ExecutionError":
        """Program wrote more output than the configured ceiling.

        Example:
            ```python
            raise ExecutionError.output_limit_exceeded("busybox", 1024)
            ```
        """
        return cls(
            ErrorCategory.OUTPUT_LIMIT_EXCEEDED,
            f"Output exceeded the limit of {limit_bytes} bytes",
            image=image,
        )

    @classmethod
    def resource_limit_exceeded(cls, image: str, exit_code: int, stderr: str) -> "ExecutionError":
        """Runtime killed the process for exceeding its memory limit.

        Example:
            ```python
            raise ExecutionError.resource_limit_exceeded("python:3.12-slim", 137, "")
            ```
        """
        return cls(
            ErrorCategory.RESOURCE_LIMIT_EXCEEDED,
            f"Container exceeded its resource limits (exit code {exit_code})",
            image=image,
            exit_code=exit_code,
            stderr=stderr,
        )

    @classmethod
    def unknown(cls, message: str, image: str | None = None) -> "ExecutionError":
        """Unclassified runtime failure.

        Example:
            ```python
            raise ExecutionError.unknown("Failed to start container: abc123")
            ```
        """
        return cls(ErrorCategory.UNKNOWN, message, image=image)
