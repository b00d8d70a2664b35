from __future__ import annotations

import base64
import json
import logging
import os
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from .config import DOCKER_HUB_AUTH_KEY, EXECUTION_LABEL, ContainerInfo, LogCapture

if TYPE_CHECKING:
    from ..policy import ExecutionPolicy, RegistryCredential

logger = logging.getLogger(__name__)

PING_TIMEOUT_SECONDS = 10.0
_CHUNK_SIZE = 64 * 1024
_UNAVAILABLE_MARKERS = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "error during connect",
    "connection refused",
    "permission denied while trying to connect",
)
_NOT_FOUND_MARKERS = (
    "no such container",
    "no such image",
    "no such object",
    "manifest unknown",
    "pull access denied",
    "repository does not exist",
)


class DockerCliError(RuntimeError):
    """A `docker` CLI invocation exited unsuccessfully.

    Example:
        ```python
        err = DockerCliError(["start", "abc"], 1, "Error response from daemon: ...")
        ```
    """

    def __init__(self, args: Sequence[str], returncode: int | None, stderr: str) -> None:
        """Record the failed command, its exit status and stderr.

        Example:
            ```python
            DockerCliError(["ps"], 1, "permission denied")
            ```
        """
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr or f"exit code {returncode}"
        super().__init__(f"`docker {' '.join(self.command[:2])}` failed: {detail}")


class DockerNotFoundError(DockerCliError):
    """The referenced container or image does not exist.

    Example:
        ```python
        raise DockerNotFoundError(["rm", "abc"], 1, "No such container: abc")
        ```
    """


class DockerUnavailableError(DockerCliError):
    """The CLI is missing or the daemon cannot be reached.

    Example:
        ```python
        raise DockerUnavailableError(["info"], None, "Docker CLI was not found")
        ```
    """


class DockerTimeoutError(DockerCliError):
    """The CLI did not finish before its deadline and was killed.

    Example:
        ```python
        raise DockerTimeoutError(["wait", "abc"], 5.0)
        ```
    """

    def __init__(self, args: Sequence[str], timeout_seconds: float) -> None:
        """Record the command and the deadline it exceeded.

        Example:
            ```python
            DockerTimeoutError(["pull", "busybox"], 300)
            ```
        """
        self.timeout_seconds = timeout_seconds
        super().__init__(args, None, f"timed out after {timeout_seconds:g}s")


def classify_failure(args: Sequence[str], returncode: int | None, stderr: str) -> DockerCliError:
    """Pick the most specific CLI error type for a failed command.

    Example:
        ```python
        err = classify_failure(["rm", "abc"], 1, "Error: No such container: abc")
        isinstance(err, DockerNotFoundError)  # True
        ```
    """
    lowered = stderr.lower()
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return DockerUnavailableError(args, returncode, stderr)
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return DockerNotFoundError(args, returncode, stderr)
    return DockerCliError(args, returncode, stderr)


def _text(data: bytes | None) -> str:
    """Decode CLI output bytes as UTF-8, replacing invalid sequences.

    Example:
        ```python
        _text(b"hello")  # "hello"
        ```
    """
    return (data or b"").decode("utf-8", errors="replace")


def drop_partial_utf8(data: bytes) -> bytes:
    """Drop a multi-byte UTF-8 sequence cut off at the end of ``data``.

    Example:
        ```python
        drop_partial_utf8("h\u00e9".encode("utf-8")[:2])  # b"h"
        ```
    """
    for back in range(1, min(4, len(data)) + 1):
        byte = data[-back]
        if byte & 0xC0 != 0x80:
            if byte >= 0xF0:
                needed = 4
            elif byte >= 0xE0:
                needed = 3
            elif byte >= 0xC0:
                needed = 2
            else:
                needed = 1
            return data[:-back] if needed > back else data
    return data


def _last_line(text: str) -> str:
    """Return the last non-empty line of CLI output.

    Example:
        ```python
        _last_line("pulling...\\nabc123\\n")  # "abc123"
        ```
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else ""


def auth_config_json(credential: "RegistryCredential") -> str:
    """Render a Docker ``config.json`` holding one registry credential.

    Example:
        ```python
        payload = auth_config_json(RegistryCredential("ghcr.io", "bot", "token"))
        ```
    """
    token = base64.b64encode(f"{credential.username}:{credential.password}".encode("utf-8")).decode("ascii")
    entry: dict[str, str] = {"auth": token}
    if credential.email:
        entry["email"] = credential.email
    key = DOCKER_HUB_AUTH_KEY if credential.registry == "docker.io" else credential.registry
    return json.dumps({"auths": {key: entry}})


class DockerCli:
    """Thin client over the `docker` command-line tool.

    Every method maps to one CLI invocation against the configured daemon.
    Failures raise DockerCliError subclasses; callers translate them.

    Example:
        ```python
        cli = DockerCli(docker_host="tcp://build-host:2376", tls_verify=True)
        cli.ping()
        ```
    """

    def __init__(
        self,
        *,
        docker_host: str | None = None,
        docker_context: str | None = None,
        tls_verify: bool = False,
        tls_cert_path: str | None = None,
        executable: str = "docker",
    ) -> None:
        """Store connection settings used for every CLI call.

        Example:
            ```python
            cli = DockerCli(docker_context="remote-builder")
            ```
        """
        if docker_context and docker_host:
            raise ValueError("Use either docker_context or docker_host, not both")
        self._docker_host = docker_host
        self._docker_context = docker_context
        self._tls_verify = tls_verify
        self._tls_cert_path = tls_cert_path
        self._executable = executable

    @classmethod
    def from_policy(cls, policy: "ExecutionPolicy") -> "DockerCli":
        """Create a client using the connection settings of a policy.

        Example:
            ```python
            cli = DockerCli.from_policy(ExecutionPolicy(docker_host="unix:///run/docker.sock"))
            ```
        """
        return cls(
            docker_host=policy.docker_host,
            docker_context=policy.docker_context,
            tls_verify=policy.tls_verify,
            tls_cert_path=policy.tls_cert_path,
        )

    def docker_env(self) -> dict[str, str]:
        """Build environment variables for Docker CLI targeting.

        Example:
            ```python
            env = cli.docker_env()
            ```
        """
        env = dict(os.environ)
        if self._docker_host:
            env["DOCKER_HOST"] = self._docker_host
        if self._tls_verify:
            env["DOCKER_TLS_VERIFY"] = "1"
        if self._tls_cert_path:
            env["DOCKER_CERT_PATH"] = self._tls_cert_path
        return env

    def command(self, args: Sequence[str]) -> list[str]:
        """Build a Docker CLI command with optional context.

        Example:
            ```python
            cmd = cli.command(["ps"])  # ["docker", "ps"]
            ```
        """
        cmd = [self._executable]
        if self._docker_context:
            cmd.extend(["--context", self._docker_context])
        cmd.extend(args)
        return cmd

    def run(
        self,
        args: Sequence[str],
        *,
        input_bytes: bytes | None = None,
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[bytes]:
        """Run one Docker CLI command and raise on failure.

        Example:
            ```python
            completed = cli.run(["image", "inspect", "busybox"])
            ```
        """
        try:
            completed = subprocess.run(
                self.command(args),
                input=input_bytes,
                capture_output=True,
                timeout=timeout_seconds,
                check=False,
                env=dict(env) if env is not None else self.docker_env(),
            )
        except FileNotFoundError as exc:
            raise DockerUnavailableError(
                args, None, "Docker CLI was not found. Install Docker and ensure it is on PATH."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise DockerTimeoutError(args, timeout_seconds or 0.0) from exc
        if completed.returncode != 0:
            raise classify_failure(args, completed.returncode, _text(completed.stderr))
        return completed

    def ping(self) -> str:
        """Check that the daemon answers and return its version.

        Example:
            ```python
            version = cli.ping()
            ```
        """
        completed = self.run(["version", "--format", "{{.Server.Version}}"], timeout_seconds=PING_TIMEOUT_SECONDS)
        return _text(completed.stdout).strip()

    def inspect_image(self, image: str) -> None:
        """Raise DockerNotFoundError unless the image is present locally.

        Example:
            ```python
            cli.inspect_image("busybox:latest")
            ```
        """
        self.run(["image", "inspect", "--format", "{{.Id}}", image])

    def pull_image(
        self,
        image: str,
        *,
        timeout_seconds: float,
        credential: "RegistryCredential | None" = None,
    ) -> None:
        """Pull an image, authenticating with a throwaway config when given credentials.

        Example:
            ```python
            cli.pull_image("ghcr.io/acme/runner:1", timeout_seconds=300, credential=cred)
            ```
        """
        if credential is None:
            self.run(["pull", "--quiet", image], timeout_seconds=timeout_seconds)
            return
        with tempfile.TemporaryDirectory(prefix="safe-code-runner-auth-") as tmp:
            config_dir = Path(tmp)
            (config_dir / "config.json").write_text(auth_config_json(credential), encoding="utf-8")
            if self._docker_context:
                contexts = Path(os.environ.get("DOCKER_CONFIG", Path.home() / ".docker")) / "contexts"
                if contexts.exists():
                    (config_dir / "contexts").symlink_to(contexts, target_is_directory=True)
            env = self.docker_env()
            env["DOCKER_CONFIG"] = str(config_dir)
            self.run(["pull", "--quiet", image], timeout_seconds=timeout_seconds, env=env)

    def create_container(self, create_args: Sequence[str]) -> str:
        """Run ``docker create`` with the given flags and return the container id.

        Example:
            ```python
            container_id = cli.create_container(["--network", "none", "busybox", "echo", "hi"])
            ```
        """
        completed = self.run(["create", *create_args])
        container_id = _last_line(_text(completed.stdout))
        if not container_id:
            raise DockerCliError(["create"], completed.returncode, "docker create returned no container id")
        return container_id

    def copy_archive(self, container_id: str, path: str, archive: bytes) -> None:
        """Extract a tar archive into ``path`` inside the container.

        Example:
            ```python
            cli.copy_archive("abc123", "/app", tar_bytes)
            ```
        """
        self.run(["cp", "-", f"{container_id}:{path}"], input_bytes=archive)

    def start_container(self, container_id: str) -> None:
        """Start a created container.

        Example:
            ```python
            cli.start_container("abc123")
            ```
        """
        self.run(["start", container_id])

    def wait_container(self, container_id: str, *, timeout_seconds: float) -> int:
        """Block until the container exits and return its exit code.

        Raises DockerTimeoutError when the deadline passes first.

        Example:
            ```python
            exit_code = cli.wait_container("abc123", timeout_seconds=5)
            ```
        """
        completed = self.run(["wait", container_id], timeout_seconds=timeout_seconds)
        raw = _last_line(_text(completed.stdout))
        try:
            return int(raw)
        except ValueError as exc:
            raise DockerCliError(["wait", container_id], completed.returncode, f"unexpected exit code {raw!r}") from exc

    def inspect_state(self, container_id: str) -> dict[str, Any]:
        """Return the ``State`` object of a container.

        Example:
            ```python
            state = cli.inspect_state("abc123")
            state["OOMKilled"]
            ```
        """
        completed = self.run(["inspect", "--format", "{{json .State}}", container_id])
        try:
            state = json.loads(_text(completed.stdout) or "{}")
        except json.JSONDecodeError as exc:
            raise DockerCliError(["inspect", container_id], completed.returncode, "unexpected state payload") from exc
        if not isinstance(state, dict):
            raise DockerCliError(["inspect", container_id], completed.returncode, "unexpected state payload")
        return state

    def read_logs(
        self,
        container_id: str,
        *,
        stream: str,
        limit_bytes: int,
        timeout_seconds: float,
    ) -> LogCapture:
        """Read one log channel, keeping at most ``limit_bytes`` bytes.

        Once the ceiling is reached the log process is killed and the rest of
        the channel is dropped. A watchdog kills the process at the deadline
        and whatever was read so far is returned.

        Example:
            ```python
            capture = cli.read_logs("abc123", stream="stdout", limit_bytes=1024, timeout_seconds=30)
            ```
        """
        if stream not in {"stdout", "stderr"}:
            raise ValueError("stream must be 'stdout' or 'stderr'")
        args = ["logs", container_id]
        try:
            proc = subprocess.Popen(
                self.command(args),
                stdout=subprocess.PIPE if stream == "stdout" else subprocess.DEVNULL,
                stderr=subprocess.PIPE if stream == "stderr" else subprocess.DEVNULL,
                env=self.docker_env(),
            )
        except FileNotFoundError as exc:
            raise DockerUnavailableError(args, None, "Docker CLI was not found.") from exc

        pipe = proc.stdout if stream == "stdout" else proc.stderr
        if pipe is None:
            proc.kill()
            proc.wait()
            raise DockerCliError(args, None, f"{stream} of the log process was not captured")
        expired = threading.Event()

        def _expire() -> None:
            """Kill the log process once the deadline passes.

            Example:
                ```python
                _expire()
                ```
            """
            expired.set()
            proc.kill()

        watchdog = threading.Timer(timeout_seconds, _expire)
        watchdog.daemon = True
        watchdog.start()
        buffer = bytearray()
        truncated = False
        try:
            while True:
                chunk = pipe.read1(_CHUNK_SIZE)
                if not chunk:
                    break
                remaining = limit_bytes - len(buffer)
                if len(chunk) > remaining:
                    buffer.extend(chunk[:remaining])
                    truncated = True
                    proc.kill()
                    break
                buffer.extend(chunk)
        finally:
            watchdog.cancel()
            pipe.close()
            proc.wait()

        data = bytes(buffer)
        text = _text(drop_partial_utf8(data) if truncated else data)
        if expired.is_set():
            return LogCapture(text=text, truncated=truncated, timed_out=True)
        if not truncated and proc.returncode != 0:
            raise classify_failure(args, proc.returncode, text)
        return LogCapture(text=text, truncated=truncated)

    def remove_container(self, container_id: str, *, force: bool = False, remove_volumes: bool = True) -> None:
        """Remove a container, optionally killing it first.

        Example:
            ```python
            cli.remove_container("abc123", force=True)
            ```
        """
        args = ["rm"]
        if force:
            args.append("--force")
        if remove_volumes:
            args.append("--volumes")
        args.append(container_id)
        self.run(args)

    def list_containers(self, *, labels: Mapping[str, str], all_states: bool = False) -> list[ContainerInfo]:
        """List containers carrying every given label.

        Example:
            ```python
            rows = cli.list_containers(labels={"safe_code_runner.managed": "true"}, all_states=True)
            ```
        """
        fmt = "{{.ID}}|{{.Names}}|{{.Image}}|{{.State}}|{{.Status}}|{{.Label \"" + EXECUTION_LABEL + "\"}}"
        args = ["ps", "--no-trunc", "--format", fmt]
        if all_states:
            args.insert(1, "-a")
        for key, value in labels.items():
            args.extend(["--filter", f"label={key}={value}"])
        completed = self.run(args)
        items: list[ContainerInfo] = []
        for line in _text(completed.stdout).splitlines():
            if not line.strip():
                continue
            c_id, name, image, state, status, execution_id = line.split("|", 5)
            items.append(ContainerInfo(c_id, name, image, state, status, execution_id))
        return items
