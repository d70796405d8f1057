"""Rule store — the authoritative Desired rule set and its persistence file."""

from __future__ import annotations

import dataclasses
import logging
import threading
from pathlib import Path

from bwctl.errors import StoreError
from bwctl.rules.models import Rule, RuleMode, RuleState, make_rule, normalize_ip
from bwctl.rules.persistence import read_rules_file, write_rules_file

logger = logging.getLogger(__name__)


class RuleStore:
    """Thread-safe mapping of ip → Rule.

    Every mutation goes through ``_lock``; readers get copies taken under
    the same lock, so a reader never sees a half-applied update.
    Persistence failures are logged and the in-memory state stays usable.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._rules: dict[str, Rule] = {}
        self._lock = threading.Lock()
        self._dirty = False

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def dirty(self) -> bool:
        """Whether the persistent subset changed since the last save/load."""
        with self._lock:
            return self._dirty

    def upsert(
        self,
        ip: str,
        upload: int | None = None,
        download: int | None = None,
        persistent: bool = False,
        mode: RuleMode = RuleMode.LIMIT,
    ) -> Rule:
        """Create or replace the rule for ``ip``.

        Raises ValidationError before touching any state. Re-submitting a rule
        with the same mode and limits keeps its state and pipe ids.
        """
        rule = make_rule(ip, upload, download, persistent, mode)

        with self._lock:
            current = self._rules.get(rule.ip)
            if current is not None and current.shape == rule.shape:
                rule = dataclasses.replace(current, persistent=rule.persistent)
            # Reassigning an existing key keeps its position in list_rules()
            self._rules[rule.ip] = rule

            if _persisted_form(current) != _persisted_form(rule):
                self._dirty = True

        logger.debug("Upserted %s: %s", rule.ip, rule.shape)
        return rule

    def remove(self, ip: str) -> bool:
        """Drop the rule for ``ip``. Returns False if there was none."""
        addr = normalize_ip(ip)
        with self._lock:
            rule = self._rules.pop(addr, None)
            if rule is None:
                return False
            if rule.persistent:
                self._dirty = True
        logger.debug("Removed rule for %s", addr)
        return True

    def get(self, ip: str) -> Rule | None:
        addr = normalize_ip(ip)
        with self._lock:
            return self._rules.get(addr)

    def list_rules(self) -> list[Rule]:
        """All rules in insertion order."""
        with self._lock:
            return list(self._rules.values())

    def snapshot(self) -> dict[str, Rule]:
        """A consistent copy of the Desired rule set."""
        with self._lock:
            return dict(self._rules)

    def mark(
        self,
        rule: Rule,
        state: RuleState,
        up_pipe: int | None = None,
        down_pipe: int | None = None,
    ) -> Rule | None:
        """Record reconciliation progress for ``rule``.

        Ignored (returns None) if the stored rule for that ip was removed or
        replaced by a different shape since ``rule`` was snapshotted.
        """
        with self._lock:
            current = self._rules.get(rule.ip)
            if current is None or current.shape != rule.shape:
                return None
            updated = dataclasses.replace(
                current, state=state, up_pipe=up_pipe, down_pipe=down_pipe
            )
            self._rules[rule.ip] = updated
            return updated

    def load_persisted(self) -> dict[str, Rule]:
        """Replace the Desired set with the persistent rules on disk.

        A missing or unreadable file yields an empty set.
        """
        loaded: dict[str, Rule] = {}
        if self._path is not None:
            try:
                loaded = read_rules_file(self._path)
            except StoreError as exc:
                logger.warning("Ignoring persisted rules: %s", exc)

        with self._lock:
            self._rules = dict(loaded)
            self._dirty = False
            logger.info("Loaded %d persisted rule(s)", len(self._rules))
            return dict(self._rules)

    def save(self) -> bool:
        """Write the persistent subset to disk. Returns False on failure."""
        if self._path is None:
            return False

        with self._lock:
            rules = list(self._rules.values())
            try:
                count = write_rules_file(self._path, rules)
            except StoreError as exc:
                logger.warning("Persisted rules not saved: %s", exc)
                return False
            self._dirty = False

        logger.debug("Saved %d persistent rule(s) to %s", count, self._path)
        return True


def _persisted_form(rule: Rule | None) -> tuple | None:
    if rule is None or not rule.persistent:
        return None
    return rule.shape
