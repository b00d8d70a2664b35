from __future__ import annotations

import logging
from typing import Iterable

logger = logging.getLogger(__name__)

# Linux capability names as accepted by `docker create --cap-drop`.
KNOWN_CAPABILITIES = (
    "AUDIT_CONTROL",
    "AUDIT_READ",
    "AUDIT_WRITE",
    "BLOCK_SUSPEND",
    "BPF",
    "CHECKPOINT_RESTORE",
    "CHOWN",
    "DAC_OVERRIDE",
    "DAC_READ_SEARCH",
    "FOWNER",
    "FSETID",
    "IPC_LOCK",
    "IPC_OWNER",
    "KILL",
    "LEASE",
    "LINUX_IMMUTABLE",
    "MAC_ADMIN",
    "MAC_OVERRIDE",
    "MKNOD",
    "NET_ADMIN",
    "NET_BIND_SERVICE",
    "NET_BROADCAST",
    "NET_RAW",
    "PERFMON",
    "SETFCAP",
    "SETGID",
    "SETPCAP",
    "SETUID",
    "SYSLOG",
    "SYS_ADMIN",
    "SYS_BOOT",
    "SYS_CHROOT",
    "SYS_MODULE",
    "SYS_NICE",
    "SYS_PACCT",
    "SYS_PTRACE",
    "SYS_RAWIO",
    "SYS_RESOURCE",
    "SYS_TIME",
    "SYS_TTY_CONFIG",
    "WAKE_ALARM",
)
_KNOWN = frozenset(KNOWN_CAPABILITIES)


def normalize_capability(name: str) -> str:
    """Return the canonical upper-case capability name without ``CAP_``.

    Example:
        ```python
        normalize_capability("cap_net_raw")  # "NET_RAW"
        ```
    """
    cleaned = name.strip().upper()
    if cleaned.startswith("CAP_"):
        cleaned = cleaned[len("CAP_"):]
    return cleaned


def unknown_capabilities(names: Iterable[str]) -> list[str]:
    """Return the names that are neither ``ALL`` nor a known capability.

    Example:
        ```python
        unknown_capabilities(["ALL", "NET_RAW", "NET_RAWW"])  # ["NET_RAWW"]
        ```
    """
    out: list[str] = []
    for name in names:
        cap = normalize_capability(name)
        if cap != "ALL" and cap not in _KNOWN:
            out.append(name)
    return out


def expand_capabilities(names: Iterable[str]) -> list[str]:
    """Expand a drop list into concrete capability names.

    ``ALL`` expands to every known capability. Unknown names are logged and
    skipped. The result keeps first-seen order and has no duplicates.

    Example:
        ```python
        caps = expand_capabilities(["ALL"])
        ```
    """
    expanded: list[str] = []
    for name in names:
        cap = normalize_capability(name)
        if cap == "ALL":
            candidates: Iterable[str] = KNOWN_CAPABILITIES
        elif cap in _KNOWN:
            candidates = (cap,)
        else:
            logger.warning("Unknown capability: %s", name)
            continue
        for candidate in candidates:
            if candidate not in expanded:
                expanded.append(candidate)
    return expanded
