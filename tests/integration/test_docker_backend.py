import os
import shutil
import subprocess
import time

import pytest

from safe_code_runner import (
    CodeExecutionTool,
    DockerEngine,
    ErrorCategory,
    ExecutionError,
    ExecutionPolicy,
)
from safe_code_runner.execution.config import MANAGED_LABEL

IMAGE = "busybox:latest"


def _docker_ready() -> bool:
    if shutil.which("docker") is None:
        return False
    return os.getenv("RUN_DOCKER_TESTS") == "1"


pytestmark = pytest.mark.skipif(not _docker_ready(), reason="Docker integration tests disabled")


def _managed_container_ids() -> set[str]:
    listed = subprocess.run(
        ["docker", "ps", "-aq", "--no-trunc", "--filter", f"label={MANAGED_LABEL}=true"],
        capture_output=True,
        text=True,
        check=True,
    )
    return {line for line in listed.stdout.split() if line}


@pytest.fixture(scope="module")
def engine() -> DockerEngine:
    subprocess.run(["docker", "pull", "--quiet", IMAGE], capture_output=True, check=False)
    return DockerEngine(ExecutionPolicy(memory_limit="64m", timeout_seconds=20))


def test_docker_hello(engine: DockerEngine) -> None:
    before = _managed_container_ids()
    assert engine.execute(IMAGE, ".sh", "echo 'Hello from Docker!'", "sh") == "Hello from Docker!"
    assert _managed_container_ids() <= before


def test_docker_exit_code_and_stderr(engine: DockerEngine) -> None:
    with pytest.raises(ExecutionError) as excinfo:
        engine.execute(IMAGE, ".sh", "echo broken >&2\nexit 3", "sh")
    assert excinfo.value.category is ErrorCategory.EXECUTION_FAILED
    assert excinfo.value.exit_code == 3
    assert "broken" in (excinfo.value.stderr or "")


def test_docker_timeout_removes_container(engine: DockerEngine) -> None:
    before = _managed_container_ids()
    started = time.monotonic()
    with pytest.raises(ExecutionError) as excinfo:
        engine.execute(IMAGE, ".sh", "sleep 30", "sh", timeout_seconds=2)
    assert excinfo.value.category is ErrorCategory.EXECUTION_TIMEOUT
    assert time.monotonic() - started < 20
    assert _managed_container_ids() <= before


def test_docker_network_is_disabled(engine: DockerEngine) -> None:
    with pytest.raises(ExecutionError) as excinfo:
        engine.execute(IMAGE, ".sh", "wget -q -T 3 -O- http://example.com", "sh")
    assert excinfo.value.category is ErrorCategory.EXECUTION_FAILED


def test_docker_output_is_capped() -> None:
    engine = DockerEngine(ExecutionPolicy(max_output_bytes=1024, timeout_seconds=20))
    output = engine.execute(IMAGE, ".sh", "yes abcdefgh | head -c 100000", "sh")
    assert len(output.encode("utf-8")) <= 1024


def test_docker_missing_image_via_tool() -> None:
    reply = CodeExecutionTool().execute("this-image-does-not-exist-anywhere:latest", ".sh", "echo hi", "sh")
    assert reply.startswith("Image 'this-image-does-not-exist-anywhere:latest' not found")
