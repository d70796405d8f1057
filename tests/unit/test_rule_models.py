"""Tests for rule validation and normalisation."""

from __future__ import annotations

import pytest

from bwctl.errors import ValidationError
from bwctl.rules.models import (
    Direction,
    Rule,
    RuleMode,
    RuleState,
    ip_sort_key,
    make_rule,
    normalize_ip,
)


def test_make_rule_upload_only():
    rule = make_rule("10.0.0.5", upload=500)
    assert rule.ip == "10.0.0.5"
    assert rule.mode == RuleMode.LIMIT
    assert rule.upload_kbps == 500
    assert rule.download_kbps is None
    assert rule.state == RuleState.PENDING
    assert rule.up_pipe is None and rule.down_pipe is None


def test_zero_limit_means_unlimited():
    rule = make_rule("10.0.0.5", upload=0, download=300)
    assert rule.upload_kbps is None
    assert rule.download_kbps == 300


@pytest.mark.parametrize(
    "upload, download",
    [(None, None), (0, 0), (0, None)],
)
def test_limit_rule_without_positive_limit_rejected(upload, download):
    with pytest.raises(ValidationError, match="needs an upload or download"):
        make_rule("10.0.0.5", upload=upload, download=download)


def test_negative_limit_rejected():
    with pytest.raises(ValidationError, match="negative"):
        make_rule("10.0.0.5", upload=-1, download=100)


def test_non_integer_limit_rejected():
    with pytest.raises(ValidationError, match="integer"):
        make_rule("10.0.0.5", upload="fast")  # type: ignore[arg-type]


@pytest.mark.parametrize("ip", ["", "10.0.0", "10.0.0.256", "host.local", "10.0.0.0/24"])
def test_invalid_ip_rejected(ip: str):
    with pytest.raises(ValidationError, match="Invalid IP"):
        make_rule(ip, upload=100)


def test_ip_normalised():
    assert normalize_ip(" 10.0.0.5 ") == "10.0.0.5"
    assert normalize_ip("FE80:0:0::1") == "fe80::1"


def test_block_rule_cannot_carry_limits():
    # Block and limit are mutually exclusive for an ip
    with pytest.raises(ValidationError, match="block"):
        make_rule("10.0.0.5", upload=100, mode=RuleMode.BLOCK)


def test_monitor_rule_has_no_limits():
    rule = make_rule("10.0.0.5", mode=RuleMode.MONITOR, persistent=True)
    assert rule.shape == (RuleMode.MONITOR, None, None)
    assert rule.persistent is True


def test_limit_and_pipe_by_direction():
    rule = Rule(ip="10.0.0.5", upload_kbps=1, download_kbps=2, up_pipe=3, down_pipe=4)
    assert rule.limit(Direction.UP) == 1
    assert rule.limit(Direction.DOWN) == 2
    assert rule.pipe(Direction.UP) == 3
    assert rule.pipe(Direction.DOWN) == 4


def test_ip_sort_key_is_numeric():
    ips = ["10.0.0.10", "::1", "10.0.0.9", "9.255.255.255"]
    assert sorted(ips, key=ip_sort_key) == ["9.255.255.255", "10.0.0.9", "10.0.0.10", "::1"]
