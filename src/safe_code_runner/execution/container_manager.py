from __future__ import annotations

import io
import logging
import tarfile
import time
from typing import TYPE_CHECKING, Mapping, Sequence

from ..errors import ExecutionError
from .capabilities import expand_capabilities
from .config import IMAGE_PULL_TIMEOUT_SECONDS, LOG_FETCH_TIMEOUT_SECONDS, LogCapture
from .docker_cli import (
    DockerCli,
    DockerCliError,
    DockerNotFoundError,
    DockerTimeoutError,
    DockerUnavailableError,
)

if TYPE_CHECKING:
    from ..policy import ExecutionPolicy

logger = logging.getLogger(__name__)


def build_code_archive(source_code: str, filename: str) -> bytes:
    """Package source text as a single-file tar archive.

    Example:
        ```python
        data = build_code_archive("print('hi')", "code.py")
        ```
    """
    payload = source_code.encode("utf-8")
    info = tarfile.TarInfo(name=filename)
    info.size = len(payload)
    info.mode = 0o644
    info.mtime = int(time.time())
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        tar.addfile(info, io.BytesIO(payload))
    return buffer.getvalue()


class ContainerManager:
    """Drive one container through create, stage, start, wait, logs and removal.

    Holds no per-container state, so one instance serves any number of
    concurrent executions. Runtime CLI failures are translated into
    ExecutionError categories here and never escape raw.

    Example:
        ```python
        manager = ContainerManager(DockerCli(), ExecutionPolicy())
        container_id = manager.create_container("busybox", ["sh", "-c", "echo hi"])
        ```
    """

    def __init__(self, cli: DockerCli, policy: "ExecutionPolicy") -> None:
        """Bind the manager to a runtime client and a policy.

        Example:
            ```python
            manager = ContainerManager(DockerCli(), ExecutionPolicy())
            ```
        """
        self._cli = cli
        self._policy = policy

    def ensure_image(self, image: str) -> None:
        """Make sure the image is present locally, pulling it if needed.

        Example:
            ```python
            manager.ensure_image("python:3.12-slim")
            ```
        """
        try:
            self._cli.inspect_image(image)
            logger.debug("Image %s already available locally", image)
            return
        except DockerNotFoundError:
            pass
        except DockerUnavailableError as exc:
            raise ExecutionError.runtime_unavailable(exc.stderr) from exc
        except DockerCliError as exc:
            raise ExecutionError.container_create_failed(image, exc.stderr) from exc

        logger.info("Pulling image: %s", image)
        credential = self._policy.registry_credential_for(image)
        if credential is not None:
            logger.debug("Using registry authentication for: %s", credential.registry)
        try:
            self._cli.pull_image(image, timeout_seconds=IMAGE_PULL_TIMEOUT_SECONDS, credential=credential)
        except DockerTimeoutError as exc:
            raise ExecutionError.image_pull_failed(image, exc.stderr) from exc
        except DockerUnavailableError as exc:
            raise ExecutionError.runtime_unavailable(exc.stderr) from exc
        except DockerNotFoundError as exc:
            raise ExecutionError.image_not_found(image) from exc
        except DockerCliError as exc:
            raise ExecutionError.image_pull_failed(image, exc.stderr) from exc
        logger.debug("Successfully pulled image: %s", image)

    def create_args(
        self,
        image: str,
        command: Sequence[str],
        labels: Mapping[str, str] | None = None,
    ) -> list[str]:
        """Translate the policy into ``docker create`` flags.

        Example:
            ```python
            args = manager.create_args("busybox", ["sh", "-c", "echo hi"])
            ```
        """
        policy = self._policy
        args = ["--attach", "stdout", "--attach", "stderr", "--workdir", policy.working_dir]
        memory_bytes = policy.memory_limit_bytes
        if memory_bytes is not None:
            args.extend(["--memory", str(memory_bytes)])
        if policy.memory_swap_bytes is not None:
            args.extend(["--memory-swap", str(policy.memory_swap_bytes)])
        if policy.cpu_period_micros is not None:
            args.extend(["--cpu-period", str(policy.cpu_period_micros)])
        if policy.cpu_quota_micros is not None:
            args.extend(["--cpu-quota", str(policy.cpu_quota_micros)])
        if policy.cpu_shares is not None:
            args.extend(["--cpu-shares", str(policy.cpu_shares)])
        if policy.pids_limit is not None:
            args.extend(["--pids-limit", str(policy.pids_limit)])
        if policy.network_disabled:
            args.extend(["--network", "none"])
        if policy.read_only_rootfs:
            args.append("--read-only")
        if policy.no_new_privileges:
            args.extend(["--security-opt", "no-new-privileges"])
        for cap in expand_capabilities(policy.cap_drop):
            args.extend(["--cap-drop", cap])
        if policy.user:
            args.extend(["--user", policy.user])
        for key, value in policy.environment.items():
            args.extend(["--env", f"{key}={value}"])
        for key, value in (labels or {}).items():
            args.extend(["--label", f"{key}={value}"])
        args.append(image)
        args.extend(command)
        return args

    def create_container(
        self,
        image: str,
        command: Sequence[str],
        labels: Mapping[str, str] | None = None,
    ) -> str:
        """Create a container for ``image`` running ``command`` and return its id.

        Example:
            ```python
            container_id = manager.create_container("busybox", ["sh", "-c", "echo hi"])
            ```
        """
        if not image or not image.strip():
            raise ValueError("'image' must be a non-blank string")
        if not command:
            raise ValueError("'command' must not be empty")
        logger.debug("Creating container with image: %s, command: %s", image, list(command))

        self.ensure_image(image)
        try:
            container_id = self._cli.create_container(self.create_args(image, command, labels))
        except DockerUnavailableError as exc:
            raise ExecutionError.runtime_unavailable(exc.stderr) from exc
        except DockerNotFoundError as exc:
            raise ExecutionError.image_not_found(image) from exc
        except DockerCliError as exc:
            raise ExecutionError.container_create_failed(image, exc.stderr) from exc
        logger.debug("Created container: %s", container_id)
        return container_id

    def copy_code_to_container(self, container_id: str, source_code: str, filename: str) -> None:
        """Stage the source file into the working directory before start.

        Example:
            ```python
            manager.copy_code_to_container(container_id, "print('hi')", "code.py")
            ```
        """
        for value, name in ((container_id, "container_id"), (source_code, "source_code"), (filename, "filename")):
            if not value or not value.strip():
                raise ValueError(f"'{name}' must be a non-blank string")
        logger.debug("Copying code to container %s as %s", container_id, filename)
        archive = build_code_archive(source_code, filename)
        try:
            self._cli.copy_archive(container_id, self._policy.working_dir, archive)
        except DockerUnavailableError as exc:
            raise ExecutionError.runtime_unavailable(exc.stderr) from exc
        except DockerCliError as exc:
            raise ExecutionError.input_staging_failed(exc.stderr) from exc
        logger.debug("Successfully copied code to container")

    def start_container(self, container_id: str) -> None:
        """Start the container's primary process.

        Example:
            ```python
            manager.start_container(container_id)
            ```
        """
        logger.debug("Starting container: %s", container_id)
        try:
            self._cli.start_container(container_id)
        except DockerUnavailableError as exc:
            raise ExecutionError.runtime_unavailable(exc.stderr) from exc
        except DockerCliError as exc:
            raise ExecutionError.unknown(f"Failed to start container {container_id}: {exc.stderr}") from exc
        logger.debug("Container started: %s", container_id)

    def wait_for_completion(self, container_id: str, timeout_seconds: float, *, image: str | None = None) -> int:
        """Block until the container exits or the deadline passes.

        On timeout the container is force-removed before the timeout error is
        raised, so no exit code is ever reported for it afterwards.

        Example:
            ```python
            exit_code = manager.wait_for_completion(container_id, 5, image="busybox")
            ```
        """
        if timeout_seconds <= 0:
            raise ValueError("'timeout_seconds' must be positive")
        logger.debug("Waiting for container %s with timeout %ss", container_id, timeout_seconds)
        try:
            exit_code = self._cli.wait_container(container_id, timeout_seconds=timeout_seconds)
        except DockerTimeoutError as exc:
            logger.warning("Container %s execution timed out after %ss", container_id, timeout_seconds)
            self.force_remove_container(container_id)
            raise ExecutionError.execution_timeout(image, timeout_seconds) from exc
        except DockerUnavailableError as exc:
            raise ExecutionError.runtime_unavailable(exc.stderr) from exc
        except DockerCliError as exc:
            raise ExecutionError.unknown(f"Error waiting for container {container_id}: {exc.stderr}") from exc
        logger.debug("Container %s completed with exit code %s", container_id, exit_code)
        return exit_code

    def read_output(self, container_id: str, stream: str) -> LogCapture:
        """Fetch one log channel, bounded by the policy's output ceiling.

        Runtime errors degrade to an empty capture with a warning, since the
        process has already finished by the time logs are read.

        Example:
            ```python
            capture = manager.read_output(container_id, "stdout")
            ```
        """
        try:
            capture = self._cli.read_logs(
                container_id,
                stream=stream,
                limit_bytes=self._policy.max_output_bytes,
                timeout_seconds=LOG_FETCH_TIMEOUT_SECONDS,
            )
        except DockerCliError as exc:
            logger.warning("Failed to get %s from container %s: %s", stream, container_id, exc)
            return LogCapture(text="")
        if capture.timed_out:
            logger.warning("Timed out reading %s from container %s", stream, container_id)
        if capture.truncated:
            logger.debug(
                "Truncated %s of container %s at %d bytes", stream, container_id, self._policy.max_output_bytes
            )
        return capture

    def get_stdout(self, container_id: str) -> str:
        """Return bounded stdout of a container.

        Example:
            ```python
            out = manager.get_stdout(container_id)
            ```
        """
        return self.read_output(container_id, "stdout").text

    def get_stderr(self, container_id: str) -> str:
        """Return bounded stderr of a container.

        Example:
            ```python
            err = manager.get_stderr(container_id)
            ```
        """
        return self.read_output(container_id, "stderr").text

    def get_exit_code(self, container_id: str) -> int | None:
        """Return the recorded exit code, or None when it cannot be read.

        Example:
            ```python
            code = manager.get_exit_code(container_id)
            ```
        """
        try:
            state = self._cli.inspect_state(container_id)
        except DockerCliError as exc:
            logger.warning("Failed to get exit code for container %s: %s", container_id, exc)
            return None
        exit_code = state.get("ExitCode")
        return exit_code if isinstance(exit_code, int) else None

    def was_oom_killed(self, container_id: str) -> bool:
        """Report whether the runtime killed the container for exceeding memory.

        Example:
            ```python
            if manager.was_oom_killed(container_id):
                ...
            ```
        """
        try:
            state = self._cli.inspect_state(container_id)
        except DockerCliError as exc:
            logger.warning("Failed to inspect container %s: %s", container_id, exc)
            return False
        return bool(state.get("OOMKilled"))

    def remove_container(self, container_id: str | None) -> bool:
        """Remove a stopped container and its anonymous volumes.

        Returns True when the container is gone afterwards.

        Example:
            ```python
            manager.remove_container(container_id)
            ```
        """
        return self._remove(container_id, force=False)

    def force_remove_container(self, container_id: str | None) -> bool:
        """Kill the container if it is running, then remove it and its volumes.

        Returns True when the container is gone afterwards.

        Example:
            ```python
            manager.force_remove_container(container_id)
            ```
        """
        return self._remove(container_id, force=True)

    def _remove(self, container_id: str | None, *, force: bool) -> bool:
        """Remove a container; missing containers and failures are only logged.

        Example:
            ```python
            gone = manager._remove(container_id, force=True)
            ```
        """
        if not container_id:
            return True
        logger.debug("Removing container %s (force=%s)", container_id, force)
        try:
            self._cli.remove_container(container_id, force=force, remove_volumes=True)
        except DockerNotFoundError:
            logger.debug("Container already removed: %s", container_id)
            return True
        except DockerCliError as exc:
            logger.warning("Failed to remove container %s: %s", container_id, exc)
            return False
        logger.debug("Removed container: %s", container_id)
        return True
