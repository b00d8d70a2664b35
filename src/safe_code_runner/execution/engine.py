from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..policy import ExecutionPolicy


class ExecutionEngine(Protocol):
    @property
    def policy(self) -> "ExecutionPolicy":
        """Return the policy applied to every execution.

        Example:
            ```python
            timeout = engine.policy.timeout_seconds
            ```
        """
        ...

    def execute(
        self,
        image: str,
        file_extension: str,
        source_code: str,
        launch_command: str,
        timeout_seconds: float | None = None,
    ) -> str:
        """Run one snippet and return its trimmed stdout.

        Example:
            ```python
            out = engine.execute("python:3.12-slim", ".py", "print(6 * 7)", "python", timeout_seconds=5)
            ```
        """
        ...

    def is_available(self) -> bool:
        """Report whether the container runtime answers.

        Example:
            ```python
            if not engine.is_available():
                ...
            ```
        """
        ...
