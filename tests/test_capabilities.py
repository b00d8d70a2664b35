import logging

import pytest

from safe_code_runner.execution.capabilities import (
    KNOWN_CAPABILITIES,
    expand_capabilities,
    normalize_capability,
    unknown_capabilities,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("NET_RAW", "NET_RAW"), ("net_raw", "NET_RAW"), ("CAP_SYS_ADMIN", "SYS_ADMIN"), (" cap_chown ", "CHOWN")],
)
def test_normalize_capability(raw: str, expected: str) -> None:
    assert normalize_capability(raw) == expected


def test_all_expands_to_every_known_capability() -> None:
    assert expand_capabilities(["ALL"]) == list(KNOWN_CAPABILITIES)


def test_expand_keeps_order_and_drops_duplicates() -> None:
    assert expand_capabilities(["NET_RAW", "cap_chown", "NET_RAW"]) == ["NET_RAW", "CHOWN"]


def test_unknown_capability_is_logged_and_skipped(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="safe_code_runner.execution.capabilities"):
        caps = expand_capabilities(["NET_RAWW", "MKNOD"])

    assert caps == ["MKNOD"]
    assert "Unknown capability: NET_RAWW" in caplog.text


def test_unknown_capabilities_reports_names_as_given() -> None:
    assert unknown_capabilities(["ALL", "cap_net_raw", "FLY"]) == ["FLY"]
