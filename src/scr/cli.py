from __future__ import annotations

import argparse
import logging
from dataclasses import fields, is_dataclass, replace
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from safe_code_runner import DockerEngine, ExecutionError, ExecutionPolicy

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m scr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _to_jsonable(value: object) -> Any:
    """Convert CLI return values into printable payloads.

    Example:
        ```python
        payload = _to_jsonable(summary)
        ```
    """
    if not isinstance(value, type) and is_dataclass(value):
        return {field.name: getattr(value, field.name) for field in fields(value)}
    if hasattr(value, "__dict__"):
        return vars(value)
    return value


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for safe-code-runner operations.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m scr",
        description=(
            "safe-code-runner CLI\n"
            "Run untrusted snippets in throwaway, locked-down Docker containers\n"
            "and manage the containers this library creates."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m scr run --image busybox --ext .sh --command sh --code 'echo hi'\n"
            "  python -m scr run --image python:3.12-slim --ext .py --command python --file job.py\n"
            "  python -m scr ping\n"
            "  python -m scr list containers\n"
            "  python -m scr cleanup\n\n"
            "Remote Examples:\n"
            "  python -m scr --docker-context my-remote-context ping\n"
            "  python -m scr --docker-host tcp://build-host:2376 --tls-verify --tls-cert-path ~/.docker/certs ping"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--policy-file",
        help=(
            "Load the execution policy from a TOML file.\n"
            "Settings live in a [policy] table."
        ),
    )
    parser.add_argument(
        "--docker-context",
        help=(
            "Use an existing Docker context name.\n"
            "Mutually exclusive with --docker-host."
        ),
    )
    parser.add_argument(
        "--docker-host",
        help=(
            "Connect directly with DOCKER_HOST.\n"
            "Examples: unix:///var/run/docker.sock, tcp://host:2376"
        ),
    )
    parser.add_argument(
        "--tls-verify",
        action="store_true",
        help="Verify the daemon's TLS certificate (sets DOCKER_TLS_VERIFY).",
    )
    parser.add_argument(
        "--tls-cert-path",
        help="Directory holding ca.pem, cert.pem and key.pem (sets DOCKER_CERT_PATH).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log container lifecycle steps.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run one snippet in a fresh container.",
        description=(
            "Stage the snippet as code<ext>, run the command under sh -c,\n"
            "print stdout and remove the container."
        ),
        epilog=(
            "Examples:\n"
            "  python -m scr run --image busybox --ext .sh --command sh --code 'echo hi'\n"
            "  python -m scr run --image golang:1.22-alpine --ext .go --command 'go run code.go' --file main.go"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("--image", required=True, help="Docker image to run the snippet in.")
    run_cmd.add_argument("--ext", required=True, help="File extension of the snippet (e.g. .py).")
    run_cmd.add_argument("--command", dest="launch_command", required=True, help="Launch command (e.g. python).")
    source = run_cmd.add_mutually_exclusive_group(required=True)
    source.add_argument("--code", help="Snippet source text.")
    source.add_argument("--file", help="Path of a file holding the snippet.")
    run_cmd.add_argument(
        "--timeout-seconds",
        type=float,
        help="Execution timeout (default: policy timeout).",
    )

    sub.add_parser(
        "ping",
        help="Check that the Docker daemon is reachable.",
        description="Check that the Docker daemon is reachable with the given connection flags.",
        formatter_class=_HELP_FORMATTER,
    )

    list_cmd = sub.add_parser(
        "list",
        help="List managed containers.",
        description="List resources created and labeled by safe-code-runner.",
        formatter_class=_HELP_FORMATTER,
    )
    list_cmd_sub = list_cmd.add_subparsers(
        dest="resource",
        required=True,
        parser_class=_RichArgumentParser,
    )
    list_cmd_sub.add_parser(
        "containers",
        help="List managed containers.",
        description=(
            "Show managed containers in all states.\n"
            "Includes id, name, image, state, status and execution id."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    cleanup_cmd = sub.add_parser(
        "cleanup",
        help="Remove managed containers left behind by interrupted runs.",
        description=(
            "Force-remove stopped managed containers.\n"
            "Running ones are kept unless --include-running is given."
        ),
        epilog=(
            "Example:\n"
            "  python -m scr cleanup --include-running"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    cleanup_cmd.add_argument(
        "--include-running",
        action="store_true",
        help="Also remove running managed containers.",
    )

    return parser


def build_policy(args: argparse.Namespace) -> ExecutionPolicy:
    """Create the execution policy from the policy file and connection flags.

    Example:
        ```python
        policy = build_policy(args)
        ```
    """
    policy = ExecutionPolicy.from_file(args.policy_file) if args.policy_file else ExecutionPolicy()
    overrides: dict[str, Any] = {}
    if args.docker_context:
        overrides["docker_context"] = args.docker_context
        overrides["docker_host"] = None
    if args.docker_host:
        overrides["docker_host"] = args.docker_host
    if args.tls_verify:
        overrides["tls_verify"] = True
    if args.tls_cert_path:
        overrides["tls_cert_path"] = args.tls_cert_path
    return replace(policy, **overrides) if overrides else policy


def build_engine(args: argparse.Namespace) -> DockerEngine:
    """Create a DockerEngine from global CLI flags.

    Example:
        ```python
        engine = build_engine(args)
        ```
    """
    return DockerEngine(build_policy(args))


def _configure_logging(verbose: bool) -> None:
    """Route library logging through Rich.

    Example:
        ```python
        _configure_logging(verbose=True)
        ```
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _print_containers(rows: list[dict[str, Any]]) -> None:
    """Render managed containers in a rich table.

    Example:
        ```python
        _print_containers([{"id": "abc", "name": "festive_hopper"}])
        ```
    """
    table = Table(title="Managed Containers")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Image")
    table.add_column("State")
    table.add_column("Status")
    table.add_column("Execution")
    for row in rows:
        table.add_row(
            row["id"][:12],
            row["name"],
            row["image"],
            row["state"],
            row["status"],
            row["execution_id"],
        )
    _CONSOLE.print(table)


def _print_execution_error(exc: ExecutionError) -> None:
    """Render a classified failure as a red panel titled with its category.

    Example:
        ```python
        _print_execution_error(ExecutionError.runtime_unavailable())
        ```
    """
    body = exc.message
    if exc.stderr:
        body = f"{body}\n\n{exc.stderr}"
    _CONSOLE.print(Panel.fit(body, title=exc.category.value, border_style="red"))


def _run_snippet(engine: DockerEngine, args: argparse.Namespace) -> int:
    """Execute the snippet given on the command line.

    Example:
        ```python
        code = _run_snippet(engine, args)
        ```
    """
    try:
        source = args.code if args.code is not None else Path(args.file).read_text(encoding="utf-8")
    except OSError as exc:
        _CONSOLE.print(Panel.fit(f"Cannot read snippet file: {exc}", style="bold red"))
        return 2
    try:
        output = engine.execute(args.image, args.ext, source, args.launch_command, args.timeout_seconds)
    except ExecutionError as exc:
        _print_execution_error(exc)
        return 1
    except ValueError as exc:
        _CONSOLE.print(Panel.fit(f"Invalid arguments: {exc}", style="bold red"))
        return 2
    _CONSOLE.print(output, markup=False, highlight=False)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `scr` CLI command handler.

    Example:
        ```python
        code = main(["list", "containers"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)
    try:
        engine = build_engine(args)
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    if args.command == "run":
        return _run_snippet(engine, args)
    if args.command == "ping":
        if engine.is_available():
            _CONSOLE.print(Panel.fit("Docker is available", style="bold green"))
            return 0
        _CONSOLE.print(Panel.fit("Docker is not available", style="bold red"))
        return 1
    if args.command == "list" and args.resource == "containers":
        try:
            containers = engine.list_containers(all_states=True)
        except ExecutionError as exc:
            _print_execution_error(exc)
            return 1
        _print_containers([_to_jsonable(c) for c in containers])
        return 0
    if args.command == "cleanup":
        try:
            summary = _to_jsonable(engine.cleanup_stale(include_running=args.include_running))
        except ExecutionError as exc:
            _print_execution_error(exc)
            return 1
        _CONSOLE.print(Panel.fit(Pretty(summary), title="Cleanup Summary", border_style="green"))
        return 0

    parser.error("Unhandled command")
    return 2
