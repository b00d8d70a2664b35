from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from .execution.capabilities import unknown_capabilities

DEFAULT_REGISTRY = "docker.io"
DEFAULT_MEMORY_LIMIT = "256m"
DEFAULT_CPU_SHARES = 1024
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
DEFAULT_WORKING_DIR = "/app"
DEFAULT_CAP_DROP = ("ALL",)

_MEMORY_PATTERN = re.compile(r"^(\d+)\s*(k|kb|m|mb|g|gb)?$")
_MEMORY_MULTIPLIERS = {
    None: 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
}


def parse_memory_string(value: str) -> int:
    """Convert a memory string such as ``256m`` or ``1GB`` into bytes.

    Example:
        ```python
        parse_memory_string("256m")  # 268435456
        ```
    """
    match = _MEMORY_PATTERN.match(value.strip().lower())
    if match is None:
        raise ValueError(f"Invalid memory limit: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _MEMORY_MULTIPLIERS[unit]


def extract_registry(image: str) -> str:
    """Return the registry address an image would be pulled from.

    Example:
        ```python
        extract_registry("ghcr.io/acme/runner:1")  # "ghcr.io"
        extract_registry("library/python")  # "docker.io"
        ```
    """
    if not image:
        return DEFAULT_REGISTRY
    head, slash, _ = image.partition("/")
    if not slash:
        return DEFAULT_REGISTRY
    if "." in head or ":" in head or head == "localhost":
        return head
    return DEFAULT_REGISTRY


def _require_text(value: Any, field_name: str) -> str:
    """Return a stripped string or raise when it is blank.

    Example:
        ```python
        _require_text("/app", "working_dir")
        ```
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{field_name}' must be a non-blank string")
    return value


def _require_positive(value: Any, field_name: str) -> None:
    """Raise when an optional numeric setting is present but not positive.

    Example:
        ```python
        _require_positive(100_000, "cpu_period_micros")
        ```
    """
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"'{field_name}' must be a positive number")


@dataclass(frozen=True, slots=True)
class RegistryCredential:
    """Credentials used when pulling images from a private registry.

    Example:
        ```python
        cred = RegistryCredential("ghcr.io", "bot", "ghp_token")
        ```
    """

    registry: str
    username: str
    password: str = field(repr=False)
    email: str | None = None

    def __post_init__(self) -> None:
        """Reject blank registry, username or password.

        Example:
            ```python
            RegistryCredential("ghcr.io", "bot", "secret")
            ```
        """
        _require_text(self.registry, "registry")
        _require_text(self.username, "username")
        _require_text(self.password, "password")


@dataclass(frozen=True, slots=True)
class ExecutionPolicy:
    """Resource ceilings and security posture applied to every container.

    Instances are immutable and safe to share between threads. Every field is
    validated on construction, so an invalid policy cannot exist.

    Example:
        ```python
        policy = ExecutionPolicy(memory_limit="512m", timeout_seconds=10, user="1000:1000")
        ```
    """

    memory_limit: str | None = DEFAULT_MEMORY_LIMIT
    memory_swap_bytes: int | None = None
    cpu_period_micros: int | None = None
    cpu_quota_micros: int | None = None
    cpu_shares: int | None = DEFAULT_CPU_SHARES
    pids_limit: int | None = None
    network_disabled: bool = True
    read_only_rootfs: bool = False
    no_new_privileges: bool = True
    cap_drop: tuple[str, ...] = DEFAULT_CAP_DROP
    strict_capabilities: bool = False
    user: str | None = None
    working_dir: str = DEFAULT_WORKING_DIR
    environment: Mapping[str, str] = field(default_factory=dict)
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    fail_on_output_limit: bool = False
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    docker_host: str | None = None
    docker_context: str | None = None
    tls_verify: bool = False
    tls_cert_path: str | None = None
    registry_credentials: Mapping[str, RegistryCredential] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate every setting and freeze mutable containers.

        Example:
            ```python
            ExecutionPolicy(max_output_bytes=0)  # raises ValueError
            ```
        """
        if self.memory_limit is not None:
            parse_memory_string(_require_text(self.memory_limit, "memory_limit"))
        if self.memory_swap_bytes is not None and self.memory_swap_bytes != -1:
            _require_positive(self.memory_swap_bytes, "memory_swap_bytes")
        _require_positive(self.cpu_period_micros, "cpu_period_micros")
        _require_positive(self.cpu_quota_micros, "cpu_quota_micros")
        _require_positive(self.cpu_shares, "cpu_shares")
        _require_positive(self.pids_limit, "pids_limit")
        _require_positive(self.max_output_bytes, "max_output_bytes")
        _require_positive(self.timeout_seconds, "timeout_seconds")

        if isinstance(self.cap_drop, str):
            raise ValueError("'cap_drop' must be a sequence of capability names")
        cap_drop = tuple(_require_text(cap, "cap_drop") for cap in self.cap_drop)
        if self.strict_capabilities:
            unknown = unknown_capabilities(cap_drop)
            if unknown:
                raise ValueError(f"Unknown capabilities: {', '.join(unknown)}")
        object.__setattr__(self, "cap_drop", cap_drop)

        working_dir = _require_text(self.working_dir, "working_dir")
        if not working_dir.startswith("/"):
            raise ValueError("'working_dir' must be an absolute path")
        if self.user is not None:
            _require_text(self.user, "user")

        environment: dict[str, str] = {}
        for key, value in dict(self.environment).items():
            if not isinstance(value, str):
                raise ValueError(f"Environment variable '{key}' must have a string value")
            environment[_require_text(key, "environment key")] = value
        object.__setattr__(self, "environment", MappingProxyType(environment))

        credentials: dict[str, RegistryCredential] = {}
        for registry, credential in dict(self.registry_credentials).items():
            if not isinstance(credential, RegistryCredential):
                raise ValueError("'registry_credentials' values must be RegistryCredential instances")
            credentials[registry] = credential
        object.__setattr__(self, "registry_credentials", MappingProxyType(credentials))

        if self.docker_host is not None:
            _require_text(self.docker_host, "docker_host")
        if self.docker_context is not None:
            _require_text(self.docker_context, "docker_context")
        if self.docker_context and self.docker_host:
            raise ValueError("Use either docker_context or docker_host, not both")
        if self.tls_cert_path is not None:
            _require_text(self.tls_cert_path, "tls_cert_path")

    @property
    def memory_limit_bytes(self) -> int | None:
        """Return the memory limit in bytes, or None when unlimited.

        Example:
            ```python
            ExecutionPolicy(memory_limit="1g").memory_limit_bytes  # 1073741824
            ```
        """
        if self.memory_limit is None:
            return None
        return parse_memory_string(self.memory_limit)

    def registry_credential_for(self, image: str) -> RegistryCredential | None:
        """Return credentials for the registry hosting ``image``, if configured.

        Example:
            ```python
            cred = policy.registry_credential_for("ghcr.io/acme/runner:1")
            ```
        """
        return self.registry_credentials.get(extract_registry(image))

    def with_registry_credential(self, credential: RegistryCredential) -> "ExecutionPolicy":
        """Return a copy of this policy that also knows ``credential``.

        Example:
            ```python
            policy = ExecutionPolicy().with_registry_credential(RegistryCredential("ghcr.io", "bot", "t"))
            ```
        """
        credentials = {**self.registry_credentials, credential.registry: credential}
        return replace(self, registry_credentials=credentials)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ExecutionPolicy":
        """Build a policy from a plain dictionary such as a parsed TOML table.

        Unknown keys are rejected so that typos surface immediately.

        Example:
            ```python
            policy = ExecutionPolicy.from_mapping({"memory_limit": "128m", "timeout_seconds": 5})
            ```
        """
        values = dict(raw)
        registries = values.pop("registry", [])
        if not isinstance(registries, list):
            raise ValueError("'registry' must be an array of tables")
        credentials: dict[str, RegistryCredential] = {}
        for entry in registries:
            if not isinstance(entry, dict):
                raise ValueError("'registry' entries must be tables")
            credential = RegistryCredential(
                registry=entry.get("registry", ""),
                username=entry.get("username", ""),
                password=entry.get("password", ""),
                email=entry.get("email"),
            )
            credentials[credential.registry] = credential

        known = {name for name in cls.__dataclass_fields__ if name != "registry_credentials"}
        unexpected = sorted(set(values) - known)
        if unexpected:
            raise ValueError(f"Unknown policy settings: {', '.join(unexpected)}")
        if "cap_drop" in values:
            values["cap_drop"] = tuple(values["cap_drop"])
        if "environment" in values and not isinstance(values["environment"], dict):
            raise ValueError("'environment' must be a TOML table")
        return cls(**values, registry_credentials=credentials)

    @classmethod
    def from_file(cls, config_path: str) -> "ExecutionPolicy":
        """Create a policy from a TOML file with an optional ``[policy]`` table.

        Example:
            ```python
            policy = ExecutionPolicy.from_file("/etc/safe-code-runner/policy.toml")
            ```
        """
        return cls.from_mapping(_read_policy_toml(Path(config_path)))


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return the policy table.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj
