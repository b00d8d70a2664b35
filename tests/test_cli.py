from __future__ import annotations

from pathlib import Path

import pytest

from safe_code_runner import ExecutionError
from safe_code_runner.execution.config import CleanupSummary, ContainerInfo
from scr import cli


class _FakeEngine:
    instances: list["_FakeEngine"] = []

    def __init__(self, policy) -> None:
        self.policy = policy
        self.executed: list[tuple] = []
        self.cleanup_args: bool | None = None
        self.available = True
        self.error: Exception | None = None
        _FakeEngine.instances.append(self)

    def execute(self, image, file_extension, source_code, launch_command, timeout_seconds=None) -> str:
        self.executed.append((image, file_extension, source_code, launch_command, timeout_seconds))
        if self.error is not None:
            raise self.error
        return "hi"

    def is_available(self) -> bool:
        return self.available

    def list_containers(self, all_states: bool = False):
        return [ContainerInfo("abc123def4567890", "festive_hopper", "busybox", "exited", "Exited", "e1")]

    def cleanup_stale(self, include_running: bool = False) -> CleanupSummary:
        self.cleanup_args = include_running
        return CleanupSummary(removed_containers=2)


@pytest.fixture(autouse=True)
def _patch_engine(monkeypatch: pytest.MonkeyPatch) -> None:
    _FakeEngine.instances = []
    monkeypatch.setattr(cli, "DockerEngine", _FakeEngine)


def test_cli_run_inline_code(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", "--image", "busybox", "--ext", ".sh", "--command", "sh", "--code", "echo hi"])
    assert code == 0
    assert "hi" in capsys.readouterr().out
    assert _FakeEngine.instances[0].executed == [("busybox", ".sh", "echo hi", "sh", None)]


def test_cli_run_from_file(tmp_path: Path) -> None:
    source = tmp_path / "job.py"
    source.write_text("print(1)", encoding="utf-8")
    code = cli.main(
        [
            "run",
            "--image",
            "python:3.12-slim",
            "--ext",
            ".py",
            "--command",
            "python",
            "--file",
            str(source),
            "--timeout-seconds",
            "5",
        ]
    )
    assert code == 0
    assert _FakeEngine.instances[0].executed == [("python:3.12-slim", ".py", "print(1)", "python", 5.0)]


def test_cli_run_reports_classified_failure(
    capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    class _FailingEngine(_FakeEngine):
        def __init__(self, policy) -> None:
            super().__init__(policy)
            self.error = ExecutionError.execution_failed("busybox", 3, "boom")

    monkeypatch.setattr(cli, "DockerEngine", _FailingEngine)
    code = cli.main(["run", "--image", "busybox", "--ext", ".sh", "--command", "sh", "--code", "exit 3"])
    output = capsys.readouterr().out
    assert code == 1
    assert "execution-failed" in output
    assert "boom" in output


def test_cli_ping(capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> None:
    assert cli.main(["ping"]) == 0
    assert "Docker is available" in capsys.readouterr().out

    class _DownEngine(_FakeEngine):
        def is_available(self) -> bool:
            return False

    monkeypatch.setattr(cli, "DockerEngine", _DownEngine)
    assert cli.main(["ping"]) == 1
    assert "Docker is not available" in capsys.readouterr().out


def test_cli_list_containers(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["list", "containers"])
    output = capsys.readouterr().out
    assert code == 0
    assert "festive_hopper" in output
    assert "abc123def456" in output


def test_cli_cleanup(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["cleanup", "--include-running"])
    output = capsys.readouterr().out
    assert code == 0
    assert "removed_containers" in output
    assert _FakeEngine.instances[0].cleanup_args is True


def test_cli_connection_flags_reach_policy() -> None:
    cli.main(["--docker-host", "tcp://build-host:2376", "--tls-verify", "--tls-cert-path", "/certs", "ping"])
    policy = _FakeEngine.instances[0].policy
    assert policy.docker_host == "tcp://build-host:2376"
    assert policy.tls_verify is True
    assert policy.tls_cert_path == "/certs"


def test_cli_policy_file(tmp_path: Path) -> None:
    policy_file = tmp_path / "policy.toml"
    policy_file.write_text("[policy]\nmemory_limit = \"64m\"\ntimeout_seconds = 9\n", encoding="utf-8")
    cli.main(["--policy-file", str(policy_file), "--docker-context", "remote", "ping"])
    policy = _FakeEngine.instances[0].policy
    assert policy.memory_limit == "64m"
    assert policy.timeout_seconds == 9
    assert policy.docker_context == "remote"


def test_cli_rejects_host_and_context_together() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--docker-host", "tcp://h:2376", "--docker-context", "remote", "ping"])
    assert excinfo.value.code == 2


def test_cli_requires_snippet_source() -> None:
    with pytest.raises(SystemExit):
        cli.main(["run", "--image", "busybox", "--ext", ".sh", "--command", "sh"])


def test_cli_list_reports_unreachable_daemon(
    capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    class _DownEngine(_FakeEngine):
        def list_containers(self, all_states: bool = False):
            raise ExecutionError.runtime_unavailable("connection refused")

    monkeypatch.setattr(cli, "DockerEngine", _DownEngine)
    code = cli.main(["list", "containers"])
    assert code == 1
    assert "runtime-unavailable" in capsys.readouterr().out


def test_cli_cleanup_reports_unreachable_daemon(
    capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    class _DownEngine(_FakeEngine):
        def cleanup_stale(self, include_running: bool = False):
            raise ExecutionError.runtime_unavailable("connection refused")

    monkeypatch.setattr(cli, "DockerEngine", _DownEngine)
    assert cli.main(["cleanup"]) == 1
    assert "runtime-unavailable" in capsys.readouterr().out


def test_cli_missing_policy_file_is_a_usage_error(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--policy-file", str(tmp_path / "missing.toml"), "ping"])
    assert excinfo.value.code == 2


def test_cli_missing_snippet_file(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    code = cli.main(
        ["run", "--image", "busybox", "--ext", ".sh", "--command", "sh", "--file", str(tmp_path / "nope.sh")]
    )
    assert code == 2
    assert "Cannot read snippet file" in capsys.readouterr().out
    assert _FakeEngine.instances[0].executed == []
