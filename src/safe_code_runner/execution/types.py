from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..errors import ErrorCategory, ExecutionError


def _require_text(value: object, field_name: str) -> None:
    """Raise ValueError unless value is a non-blank string.

    Example:
        ```python
        _require_text("busybox", "image")
        ```
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{field_name}' must be a non-blank string")


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Validated request to run one snippet in one container.

    The file extension is normalized to start with a dot. A ``None`` timeout
    means the engine's policy default applies.

    Example:
        ```python
        req = ExecutionRequest("python:3.12-slim", "py", "print(1)", "python", timeout_seconds=5)
        ```
    """

    image: str
    file_extension: str
    source_code: str
    launch_command: str
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        """Validate all fields before any container is allocated.

        Example:
            ```python
            ExecutionRequest("busybox", ".sh", "   ", "sh")  # raises ValueError
            ```
        """
        _require_text(self.image, "image")
        _require_text(self.file_extension, "file_extension")
        _require_text(self.source_code, "source_code")
        _require_text(self.launch_command, "launch_command")
        timeout = self.timeout_seconds
        if timeout is not None and (
            isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
        ):
            raise ValueError("'timeout_seconds' must be a positive number")
        extension = self.file_extension.strip()
        if not extension.startswith("."):
            extension = "." + extension
        object.__setattr__(self, "file_extension", extension)


@dataclass(frozen=True, slots=True)
class ExecutionSucceeded:
    """Process exited with code 0; ``stdout`` is already trimmed.

    Example:
        ```python
        out = ExecutionSucceeded(stdout="42")
        ```
    """

    stdout: str

    @property
    def ok(self) -> bool:
        """Always True for a successful outcome.

        Example:
            ```python
            ExecutionSucceeded("hi").ok  # True
            ```
        """
        return True


@dataclass(frozen=True, slots=True)
class ExecutionFailed:
    """Classified failure of one execution.

    Example:
        ```python
        out = ExecutionFailed(ErrorCategory.EXECUTION_FAILED, "exit 3", image="busybox", exit_code=3)
        ```
    """

    category: ErrorCategory
    message: str
    image: str | None = None
    exit_code: int | None = None
    stderr: str | None = None

    @property
    def ok(self) -> bool:
        """Always False for a failed outcome.

        Example:
            ```python
            ExecutionFailed(ErrorCategory.UNKNOWN, "boom").ok  # False
            ```
        """
        return False

    @classmethod
    def from_error(cls, error: ExecutionError) -> "ExecutionFailed":
        """Convert a raised ExecutionError into a failure outcome.

        Example:
            ```python
            failed = ExecutionFailed.from_error(ExecutionError.image_not_found("nope"))
            ```
        """
        return cls(
            category=error.category,
            message=error.message,
            image=error.image,
            exit_code=error.exit_code,
            stderr=error.stderr,
        )


ExecutionOutcome = Union[ExecutionSucceeded, ExecutionFailed]
