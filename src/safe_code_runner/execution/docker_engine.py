from __future__ import annotations

import logging
import uuid

from ..errors import ExecutionError
from ..policy import ExecutionPolicy
from .config import (
    EXECUTION_LABEL,
    FILENAME_PREFIX,
    MANAGED_LABELS_BASE,
    CleanupSummary,
    ContainerInfo,
)
from .container_manager import ContainerManager
from .docker_cli import DockerCli, DockerCliError, DockerUnavailableError
from .types import ExecutionFailed, ExecutionOutcome, ExecutionRequest, ExecutionSucceeded

logger = logging.getLogger(__name__)


def build_filename(file_extension: str) -> str:
    """Return the staged filename for an extension, adding the dot if missing.

    Example:
        ```python
        build_filename("py")  # "code.py"
        ```
    """
    extension = file_extension.strip()
    if not extension.startswith("."):
        extension = "." + extension
    return FILENAME_PREFIX + extension


def build_command(launch_command: str, filename: str) -> list[str]:
    """Compose the shell command that runs the staged file.

    The filename is appended unless the command already mentions it, so both
    ``"python"`` and ``"go run code.go"`` work.

    Example:
        ```python
        build_command("python", "code.py")  # ["sh", "-c", "python code.py"]
        ```
    """
    command = launch_command.strip()
    if filename not in command:
        command = f"{command} {filename}"
    return ["sh", "-c", command]


def trim_output(output: str | None) -> str:
    """Strip surrounding whitespace; missing output becomes an empty string.

    Example:
        ```python
        trim_output("  42  \\n")  # "42"
        ```
    """
    return output.strip() if output else ""


class DockerEngine:
    """Execute untrusted snippets in ephemeral, locked-down Docker containers.

    Every execution gets its own container, which is force-removed before the
    call returns whatever the outcome. The policy is immutable and the engine
    keeps no per-execution state, so one instance can be shared by threads.

    Example:
        ```python
        engine = DockerEngine(ExecutionPolicy(memory_limit="128m"))
        engine.execute("busybox", ".sh", "echo hi", "sh", timeout_seconds=5)  # "hi"
        ```
    """

    def __init__(self, policy: ExecutionPolicy | None = None, *, cli: DockerCli | None = None) -> None:
        """Create an engine bound to a policy and a runtime client.

        Example:
            ```python
            engine = DockerEngine(ExecutionPolicy(docker_host="tcp://10.0.0.5:2376", tls_verify=True))
            ```
        """
        self._policy = policy if policy is not None else ExecutionPolicy()
        self._cli = cli if cli is not None else DockerCli.from_policy(self._policy)
        self._containers = ContainerManager(self._cli, self._policy)

    @property
    def policy(self) -> ExecutionPolicy:
        """Return the policy applied to every execution.

        Example:
            ```python
            engine.policy.max_output_bytes
            ```
        """
        return self._policy

    @property
    def containers(self) -> ContainerManager:
        """Return the lifecycle manager used by this engine.

        Example:
            ```python
            engine.containers.force_remove_container("abc123")
            ```
        """
        return self._containers

    def execute(
        self,
        image: str,
        file_extension: str,
        source_code: str,
        launch_command: str,
        timeout_seconds: float | None = None,
    ) -> str:
        """Run one snippet and return its trimmed stdout.

        Raises ValueError for invalid arguments (before any container exists)
        and ExecutionError for every runtime or program failure.

        Example:
            ```python
            out = engine.execute("golang:1.22-alpine", ".go", go_source, "go run code.go", timeout_seconds=60)
            ```
        """
        request = ExecutionRequest(
            image=image,
            file_extension=file_extension,
            source_code=source_code,
            launch_command=launch_command,
            timeout_seconds=timeout_seconds,
        )
        return self._execute(request)

    def run(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Run a request and return a tagged outcome instead of raising.

        Example:
            ```python
            outcome = engine.run(ExecutionRequest("busybox", ".sh", "exit 3", "sh", timeout_seconds=5))
            if not outcome.ok:
                print(outcome.category, outcome.exit_code)
            ```
        """
        try:
            return ExecutionSucceeded(stdout=self._execute(request))
        except ExecutionError as exc:
            return ExecutionFailed.from_error(exc)

    def _execute(self, request: ExecutionRequest) -> str:
        """Drive one validated request through the container lifecycle.

        Example:
            ```python
            out = engine._execute(ExecutionRequest("busybox", ".sh", "echo hi", "sh"))
            ```
        """
        image = request.image
        timeout_seconds = request.timeout_seconds or self._policy.timeout_seconds
        filename = build_filename(request.file_extension)
        command = build_command(request.launch_command, filename)
        execution_id = uuid.uuid4().hex
        labels = {**MANAGED_LABELS_BASE, EXECUTION_LABEL: execution_id}
        logger.debug(
            "Executing %s with image: %s, extension: %s, command: %s",
            execution_id,
            image,
            request.file_extension,
            command,
        )

        container_id: str | None = None
        try:
            container_id = self._containers.create_container(image, command, labels)
            self._containers.copy_code_to_container(container_id, request.source_code, filename)
            self._containers.start_container(container_id)
            exit_code = self._containers.wait_for_completion(container_id, timeout_seconds, image=image)

            stdout = self._containers.read_output(container_id, "stdout")
            stderr = self._containers.read_output(container_id, "stderr")

            if exit_code != 0:
                if self._containers.was_oom_killed(container_id):
                    raise ExecutionError.resource_limit_exceeded(image, exit_code, stderr.text)
                raise ExecutionError.execution_failed(image, exit_code, stderr.text)
            if stdout.truncated and self._policy.fail_on_output_limit:
                raise ExecutionError.output_limit_exceeded(image, self._policy.max_output_bytes)

            logger.debug("Execution %s completed successfully", execution_id)
            return trim_output(stdout.text)
        finally:
            if container_id is not None:
                self._containers.force_remove_container(container_id)

    def is_available(self) -> bool:
        """Ping the runtime; failures are logged and reported as False.

        Example:
            ```python
            if engine.is_available():
                ...
            ```
        """
        try:
            version = self._cli.ping()
        except DockerCliError as exc:
            logger.debug("Docker is not available: %s", exc)
            return False
        logger.debug("Docker server version %s is available", version)
        return True

    def list_containers(self, all_states: bool = False) -> list[ContainerInfo]:
        """List containers created by this library on the configured daemon.

        Example:
            ```python
            leftovers = engine.list_containers(all_states=True)
            ```
        """
        try:
            return self._cli.list_containers(labels=MANAGED_LABELS_BASE, all_states=all_states)
        except DockerUnavailableError as exc:
            raise ExecutionError.runtime_unavailable(exc.stderr) from exc
        except DockerCliError as exc:
            raise ExecutionError.unknown(f"Failed to list containers: {exc.stderr}") from exc

    def cleanup_stale(self, include_running: bool = False) -> CleanupSummary:
        """Force-remove managed containers left behind by interrupted processes.

        Running containers may belong to executions still in flight elsewhere,
        so they are only removed when ``include_running`` is set.

        Example:
            ```python
            summary = engine.cleanup_stale()
            ```
        """
        removed = 0
        for container in self.list_containers(all_states=True):
            if container.state == "running" and not include_running:
                continue
            if self._containers.force_remove_container(container.id):
                removed += 1
        return CleanupSummary(removed_containers=removed)
