"""Tests for the rule store and its persistence."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from bwctl.errors import ValidationError
from bwctl.rules.models import RuleMode, RuleState
from bwctl.rules.store import RuleStore


def test_upsert_then_get(store: RuleStore):
    rule = store.upsert("10.0.0.5", upload=500, download=None, persistent=False)
    got = store.get("10.0.0.5")
    assert got == rule
    assert got.upload_kbps == 500
    assert got.download_kbps is None
    assert got.persistent is False


def test_remove_then_get(store: RuleStore):
    store.upsert("10.0.0.5", upload=500)
    assert store.remove("10.0.0.5") is True
    assert store.get("10.0.0.5") is None
    assert store.remove("10.0.0.5") is False


def test_upsert_replaces_instead_of_merging(store: RuleStore):
    store.upsert("10.0.0.5", upload=500, download=300)
    rule = store.upsert("10.0.0.5", download=100)
    assert rule.upload_kbps is None
    assert rule.download_kbps == 100
    assert len(store.list_rules()) == 1


def test_invalid_upsert_leaves_state_untouched(store: RuleStore):
    store.upsert("10.0.0.5", upload=500)
    with pytest.raises(ValidationError):
        store.upsert("10.0.0.5", upload=0, download=0)
    assert store.get("10.0.0.5").upload_kbps == 500


def test_list_keeps_insertion_order(store: RuleStore):
    store.upsert("10.0.0.9", upload=1)
    store.upsert("10.0.0.1", upload=1)
    store.upsert("10.0.0.5", upload=1)
    store.upsert("10.0.0.9", upload=2)
    assert [r.ip for r in store.list_rules()] == ["10.0.0.9", "10.0.0.1", "10.0.0.5"]


def test_same_shape_upsert_keeps_state_and_pipes(store: RuleStore):
    rule = store.upsert("10.0.0.5", upload=500)
    store.mark(rule, RuleState.APPLIED, up_pipe=1)

    again = store.upsert("10.0.0.5", upload=500)
    assert again.state == RuleState.APPLIED
    assert again.up_pipe == 1


def test_mark_ignored_after_replacement(store: RuleStore):
    old = store.upsert("10.0.0.5", upload=500)
    store.upsert("10.0.0.5", upload=800)
    assert store.mark(old, RuleState.APPLIED, up_pipe=1) is None
    assert store.get("10.0.0.5").state == RuleState.PENDING


def test_snapshot_is_a_copy(store: RuleStore):
    store.upsert("10.0.0.5", upload=500)
    snap = store.snapshot()
    store.remove("10.0.0.5")
    assert "10.0.0.5" in snap


def test_dirty_only_for_persistent_changes(store: RuleStore):
    store.upsert("10.0.0.5", upload=500)
    assert store.dirty is False
    store.upsert("10.0.0.6", upload=500, persistent=True)
    assert store.dirty is True
    assert store.save() is True
    assert store.dirty is False
    store.remove("10.0.0.5")
    assert store.dirty is False
    store.remove("10.0.0.6")
    assert store.dirty is True


def test_persistence_roundtrip_keeps_only_persistent(rules_path: Path):
    store = RuleStore(rules_path)
    store.upsert("10.0.0.5", upload=500, download=300, persistent=True)
    store.upsert("10.0.0.6", upload=100, persistent=False)
    store.upsert("10.0.0.7", persistent=True, mode=RuleMode.BLOCK)
    store.upsert("fe80::1", persistent=True, mode=RuleMode.MONITOR)
    assert store.save() is True

    reloaded = RuleStore(rules_path)
    rules = reloaded.load_persisted()

    assert set(rules) == {"10.0.0.5", "10.0.0.7", "fe80::1"}
    assert rules["10.0.0.5"].upload_kbps == 500
    assert rules["10.0.0.5"].download_kbps == 300
    assert rules["10.0.0.7"].mode == RuleMode.BLOCK
    assert rules["fe80::1"].mode == RuleMode.MONITOR
    assert all(r.persistent for r in rules.values())
    assert reloaded.get("10.0.0.6") is None


def test_load_missing_file_is_empty(tmp_path: Path):
    store = RuleStore(tmp_path / "nope" / "rules.conf")
    assert store.load_persisted() == {}


def test_load_skips_corrupt_lines(rules_path: Path, caplog: pytest.LogCaptureFixture):
    rules_path.write_text(
        "# hand edited\n"
        "{ip: 10.0.0.5, upload: 500, download: null, blocked: false}\n"
        "{ip: 10.0.0.6, upload: [oops\n"
        "not even yaml: : :\n"
        "{ip: 999.0.0.1, upload: 5}\n"
        "{ip: 10.0.0.8, upload: 0, download: 0, blocked: false}\n"
        "\n"
        "{ip: 10.0.0.9, blocked: true}\n",
        encoding="utf-8",
    )
    store = RuleStore(rules_path)
    rules = store.load_persisted()

    assert set(rules) == {"10.0.0.5", "10.0.0.9"}
    assert rules["10.0.0.9"].mode == RuleMode.BLOCK
    assert "skipped" in caplog.text or "not a mapping" in caplog.text


def test_load_replaces_in_memory_state(rules_path: Path):
    rules_path.write_text("{ip: 10.0.0.5, upload: 500}\n", encoding="utf-8")
    store = RuleStore(rules_path)
    store.upsert("10.0.0.6", upload=1)
    store.load_persisted()
    assert [r.ip for r in store.list_rules()] == ["10.0.0.5"]


def test_unreadable_file_is_not_fatal(tmp_path: Path):
    # A directory where the file should be cannot be read or replaced
    path = tmp_path / "rules.conf"
    path.mkdir()
    (path / "child").write_text("x")
    store = RuleStore(path)
    assert store.load_persisted() == {}
    store.upsert("10.0.0.5", upload=1, persistent=True)
    assert store.save() is False
    assert store.dirty is True
    assert store.get("10.0.0.5") is not None


def test_store_without_path_does_not_save():
    store = RuleStore()
    store.upsert("10.0.0.5", upload=1, persistent=True)
    assert store.save() is False
    assert store.load_persisted() == {}


def test_concurrent_upserts_are_serialised(store: RuleStore):
    def writer(offset: int) -> None:
        for i in range(50):
            store.upsert(f"10.0.{offset}.{i + 1}", upload=i + 1)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store.list_rules()) == 200
