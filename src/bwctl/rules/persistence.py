"""Persistence file format — one single-line YAML mapping per rule.

Example::

    # bwctl persistent rules
    {ip: 10.0.0.5, upload: 500, download: null, blocked: false}
    {ip: 10.0.0.9, upload: null, download: null, blocked: true}

The file is read line by line so a hand-edited or partially corrupted
file loses only the broken lines.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

import yaml

from bwctl.errors import StoreError, ValidationError
from bwctl.rules.models import Rule, RuleMode, make_rule

logger = logging.getLogger(__name__)

_HEADER = "# bwctl persistent rules, one record per line\n"


def parse_rules(text: str, source: str = "<string>") -> dict[str, Rule]:
    """Parse persistence text into persistent rules, skipping bad lines."""
    rules: dict[str, Rule] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        try:
            data = yaml.safe_load(line)
        except yaml.YAMLError:
            logger.warning("%s:%d: unparseable record skipped", source, lineno)
            continue

        if not isinstance(data, dict) or "ip" not in data:
            logger.warning("%s:%d: record is not a mapping with an ip", source, lineno)
            continue

        try:
            rule = _record_to_rule(data)
        except ValidationError as exc:
            logger.warning("%s:%d: invalid record skipped (%s)", source, lineno, exc)
            continue

        if rule.ip in rules:
            logger.warning("%s:%d: duplicate record for %s, last one wins", source, lineno, rule.ip)
            del rules[rule.ip]
        rules[rule.ip] = rule

    return rules


def format_rules(rules: Iterable[Rule]) -> str:
    """Render the persistent subset of ``rules`` as persistence text."""
    lines = [_HEADER]
    for rule in rules:
        if not rule.persistent:
            continue
        record: dict = {
            "ip": rule.ip,
            "upload": rule.upload_kbps,
            "download": rule.download_kbps,
            "blocked": rule.mode is RuleMode.BLOCK,
        }
        if rule.mode is RuleMode.MONITOR:
            record["monitor"] = True
        text: str = yaml.safe_dump(
            record,
            default_flow_style=True,
            sort_keys=False,
            width=float("inf"),
        )
        lines.append(text.strip() + "\n")
    return "".join(lines)


def read_rules_file(path: Path) -> dict[str, Rule]:
    """Load persistent rules from ``path``. A missing file is an empty set."""
    if not path.is_file():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise StoreError(f"Cannot read {path}: {exc}") from exc
    return parse_rules(text, source=str(path))


def write_rules_file(path: Path, rules: Iterable[Rule]) -> int:
    """Atomically replace ``path`` with the persistent subset of ``rules``.

    Returns the number of records written.
    """
    text = format_rules(rules)
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    except OSError as exc:
        raise StoreError(f"Cannot write {path}: {exc}") from exc
    return text.count("\n") - 1


def _record_to_rule(data: dict) -> Rule:
    if data.get("blocked"):
        mode = RuleMode.BLOCK
    elif data.get("monitor"):
        mode = RuleMode.MONITOR
    else:
        mode = RuleMode.LIMIT
    return make_rule(
        str(data["ip"]),
        upload=data.get("upload"),
        download=data.get("download"),
        persistent=True,
        mode=mode,
    )
