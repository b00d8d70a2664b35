from __future__ import annotations

import io
import tarfile
from typing import Any

import pytest

from safe_code_runner.execution.config import ContainerInfo, LogCapture
from safe_code_runner.execution.docker_cli import DockerNotFoundError, DockerTimeoutError


class FakeDockerCli:
    """In-memory stand-in for DockerCli that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.images: set[str] = {"busybox", "python:3.12-slim", "golang:1.22-alpine"}
        self.pullable: set[str] = set()
        self.containers: dict[str, dict[str, Any]] = {}
        self.removed: list[tuple[str, bool]] = []
        self.failures: dict[str, Exception] = {}
        self.exit_code = 0
        self.stdout = b""
        self.stderr = b""
        self.oom_killed = False
        self.wait_times_out = False
        self._counter = 0

    def _record(self, name: str, payload: Any = None) -> None:
        self.calls.append((name, payload))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    @property
    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def ping(self) -> str:
        self._record("ping")
        return "27.0.1"

    def inspect_image(self, image: str) -> None:
        self._record("inspect_image", image)
        if image not in self.images:
            raise DockerNotFoundError(["image", "inspect", image], 1, f"Error: No such image: {image}")

    def pull_image(self, image: str, *, timeout_seconds: float, credential: Any = None) -> None:
        self._record("pull_image", {"image": image, "timeout_seconds": timeout_seconds, "credential": credential})
        if image not in self.pullable:
            raise DockerNotFoundError(
                ["pull", image],
                1,
                f"Error response from daemon: pull access denied for {image}, repository does not exist",
            )
        self.images.add(image)

    def create_container(self, create_args: list[str]) -> str:
        self._record("create_container", list(create_args))
        self._counter += 1
        container_id = f"c{self._counter:03d}"
        self.containers[container_id] = {"state": "created", "files": {}, "args": list(create_args)}
        return container_id

    def copy_archive(self, container_id: str, path: str, archive: bytes) -> None:
        self._record("copy_archive", {"container_id": container_id, "path": path})
        with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
            for member in tar.getmembers():
                extracted = tar.extractfile(member)
                assert extracted is not None
                self.containers[container_id]["files"][f"{path}/{member.name}"] = (
                    extracted.read().decode("utf-8"),
                    member.mode,
                )

    def start_container(self, container_id: str) -> None:
        self._record("start_container", container_id)
        self.containers[container_id]["state"] = "running"

    def wait_container(self, container_id: str, *, timeout_seconds: float) -> int:
        self._record("wait_container", {"container_id": container_id, "timeout_seconds": timeout_seconds})
        if self.wait_times_out:
            raise DockerTimeoutError(["wait", container_id], timeout_seconds)
        self.containers[container_id]["state"] = "exited"
        return self.exit_code

    def inspect_state(self, container_id: str) -> dict[str, Any]:
        self._record("inspect_state", container_id)
        return {"ExitCode": self.exit_code, "OOMKilled": self.oom_killed}

    def read_logs(self, container_id: str, *, stream: str, limit_bytes: int, timeout_seconds: float) -> LogCapture:
        self._record("read_logs", {"container_id": container_id, "stream": stream, "limit_bytes": limit_bytes})
        data = self.stdout if stream == "stdout" else self.stderr
        return LogCapture(text=data[:limit_bytes].decode("utf-8"), truncated=len(data) > limit_bytes)

    def remove_container(self, container_id: str, *, force: bool = False, remove_volumes: bool = True) -> None:
        self._record("remove_container", {"container_id": container_id, "force": force, "volumes": remove_volumes})
        if container_id not in self.containers:
            raise DockerNotFoundError(["rm", container_id], 1, f"Error response from daemon: No such container: {container_id}")
        del self.containers[container_id]
        self.removed.append((container_id, force))

    def list_containers(self, *, labels: Any, all_states: bool = False) -> list[ContainerInfo]:
        self._record("list_containers", {"labels": dict(labels), "all_states": all_states})
        return [
            ContainerInfo(container_id, f"name-{container_id}", "busybox", info["state"], info["state"], "exec")
            for container_id, info in self.containers.items()
        ]


@pytest.fixture
def fake_cli() -> FakeDockerCli:
    return FakeDockerCli()
