from __future__ import annotations

from dataclasses import dataclass

FILENAME_PREFIX = "code"
IMAGE_PULL_TIMEOUT_SECONDS = 300.0
LOG_FETCH_TIMEOUT_SECONDS = 30.0
DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"

MANAGED_LABEL = "safe_code_runner.managed"
MANAGED_LABEL_VALUE = "true"
EXECUTION_LABEL = "safe_code_runner.execution"
MANAGED_LABELS_BASE = {
    MANAGED_LABEL: MANAGED_LABEL_VALUE,
    "safe_code_runner.project": "safe-code-runner",
}


@dataclass(frozen=True, slots=True)
class LogCapture:
    """Bounded snapshot of one container log channel.

    ``truncated`` is set when the channel produced more bytes than the
    ceiling; ``timed_out`` when the log fetch hit its deadline.

    Example:
        ```python
        capture = LogCapture(text="hi\\n", truncated=False, timed_out=False)
        ```
    """

    text: str
    truncated: bool = False
    timed_out: bool = False


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    """Snapshot of a managed container returned by DockerEngine.

    Example:
        ```python
        info = ContainerInfo("abc", "festive_hopper", "busybox", "exited", "Exited (0) 2s ago", "3f2a")
        ```
    """

    id: str
    name: str
    image: str
    state: str
    status: str
    execution_id: str


@dataclass(frozen=True, slots=True)
class CleanupSummary:
    """Result summary from Docker cleanup operations.

    Example:
        ```python
        summary = CleanupSummary(removed_containers=2)
        ```
    """

    removed_containers: int
