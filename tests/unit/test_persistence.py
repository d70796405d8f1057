"""Tests for the persistence file format."""

from __future__ import annotations

from pathlib import Path

import pytest

from bwctl.errors import StoreError
from bwctl.rules.models import RuleMode, make_rule
from bwctl.rules.persistence import (
    format_rules,
    parse_rules,
    read_rules_file,
    write_rules_file,
)


def test_format_writes_one_record_per_line():
    rules = [
        make_rule("10.0.0.5", upload=500, persistent=True),
        make_rule("10.0.0.9", persistent=True, mode=RuleMode.BLOCK),
        make_rule("10.0.0.7", upload=100, persistent=False),
    ]
    text = format_rules(rules)
    lines = text.splitlines()

    assert lines[0].startswith("#")
    assert lines[1] == "{ip: 10.0.0.5, upload: 500, download: null, blocked: false}"
    assert lines[2] == "{ip: 10.0.0.9, upload: null, download: null, blocked: true}"
    assert len(lines) == 3


def test_monitor_record_carries_flag():
    text = format_rules([make_rule("10.0.0.5", persistent=True, mode=RuleMode.MONITOR)])
    assert "monitor: true" in text
    rules = parse_rules(text)
    assert rules["10.0.0.5"].mode == RuleMode.MONITOR


def test_parse_ignores_comments_and_blank_lines():
    text = "# comment\n\n   \n{ip: 10.0.0.5, download: 250}\n"
    rules = parse_rules(text)
    assert list(rules) == ["10.0.0.5"]
    assert rules["10.0.0.5"].download_kbps == 250
    assert rules["10.0.0.5"].upload_kbps is None
    assert rules["10.0.0.5"].persistent is True


def test_parse_duplicate_ip_last_wins(caplog: pytest.LogCaptureFixture):
    text = "{ip: 10.0.0.5, upload: 1}\n{ip: 10.0.0.6, upload: 1}\n{ip: 10.0.0.5, upload: 2}\n"
    rules = parse_rules(text, source="rules.conf")
    assert rules["10.0.0.5"].upload_kbps == 2
    assert list(rules) == ["10.0.0.6", "10.0.0.5"]
    assert "rules.conf:3" in caplog.text


@pytest.mark.parametrize(
    "line",
    [
        "{ip: [unterminated",
        "- just a list",
        "{upload: 500}",
        "{ip: not-an-ip, upload: 5}",
        "{ip: 10.0.0.5, upload: -5}",
        "{ip: 10.0.0.5, blocked: true, upload: 5}",
    ],
)
def test_parse_skips_bad_record(line: str):
    text = f"{line}\n{{ip: 10.0.0.1, upload: 10}}\n"
    rules = parse_rules(text)
    assert list(rules) == ["10.0.0.1"]


def test_write_then_read(tmp_path: Path):
    path = tmp_path / "sub" / "rules.conf"
    rules = [
        make_rule("10.0.0.5", upload=500, download=300, persistent=True),
        make_rule("::1", persistent=True, mode=RuleMode.BLOCK),
    ]
    assert write_rules_file(path, rules) == 2
    assert not path.with_name("rules.conf.tmp").exists()

    loaded = read_rules_file(path)
    assert loaded["10.0.0.5"].shape == (RuleMode.LIMIT, 500, 300)
    assert loaded["::1"].shape == (RuleMode.BLOCK, None, None)


def test_read_missing_file(tmp_path: Path):
    assert read_rules_file(tmp_path / "missing.conf") == {}


def test_read_undecodable_file_raises(tmp_path: Path):
    path = tmp_path / "rules.conf"
    path.write_bytes(b"\xff\xfe\x00garbage")
    with pytest.raises(StoreError):
        read_rules_file(path)


def test_write_failure_raises(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(StoreError):
        write_rules_file(blocker / "rules.conf", [])
