"""Reconciler — converge the firewall anchor onto the Desired rule set.

The firewall only supports reloading the whole anchor, so every pass that
has anything to do compiles the *full* Desired set and applies it in one
call. A failed apply rolls back the local pipe allocations and leaves the
Applied cache untouched, so the next pass retries from a clean state.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field

from bwctl.errors import ApplyError, CompileError
from bwctl.firewall.base import FirewallAdapter
from bwctl.rules.models import Direction, Rule, RuleState, ip_sort_key
from bwctl.rules.store import RuleStore
from bwctl.shaping.compiler import compile_config
from bwctl.shaping.pipes import PipeAllocator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleDiff:
    """Difference between a Desired and an Applied rule set, by ip."""

    added: tuple[str, ...] = ()
    changed: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.changed or self.removed)

    @property
    def touched(self) -> tuple[str, ...]:
        """IPs that exist in Desired and need (re)applying."""
        return self.added + self.changed


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    diff: RuleDiff
    applied: bool = False
    error: ApplyError | None = None
    rules: list[Rule] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


def diff_rules(desired: Mapping[str, Rule], applied: Mapping[str, Rule]) -> RuleDiff:
    """Compare by shape only; state, pipes and persistence don't reach the firewall."""
    added = [ip for ip in desired if ip not in applied]
    changed = [
        ip for ip in desired if ip in applied and desired[ip].shape != applied[ip].shape
    ]
    removed = [ip for ip in applied if ip not in desired]
    return RuleDiff(
        added=tuple(sorted(added, key=ip_sort_key)),
        changed=tuple(sorted(changed, key=ip_sort_key)),
        removed=tuple(sorted(removed, key=ip_sort_key)),
    )


class Reconciler:
    """Owns the Applied rule set cache and the pipe allocations.

    Only one pass runs at a time. Readers of the Applied set get a copy.
    """

    def __init__(
        self,
        store: RuleStore,
        firewall: FirewallAdapter,
        anchor: str = "com.apple/bwctl",
        pipes: PipeAllocator | None = None,
    ) -> None:
        self._store = store
        self._firewall = firewall
        self._anchor = anchor
        self._pipes = pipes or PipeAllocator()
        self._applied: dict[str, Rule] = {}
        self._pass_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._last_error: ApplyError | None = None

    @property
    def pipes(self) -> PipeAllocator:
        return self._pipes

    @property
    def last_error(self) -> ApplyError | None:
        """Error from the most recent pass that called the firewall, if any."""
        with self._state_lock:
            return self._last_error

    def applied_snapshot(self) -> dict[str, Rule]:
        with self._state_lock:
            return dict(self._applied)

    def pending_diff(self) -> RuleDiff:
        return diff_rules(self._store.snapshot(), self.applied_snapshot())

    def reconcile(self, force: bool = False) -> ReconcileResult:
        """Run one pass. ``force`` reloads the anchor even if nothing changed.

        Never raises ApplyError; a failure is reported on the result.
        """
        with self._pass_lock:
            desired = self._store.snapshot()
            applied = self.applied_snapshot()
            diff = diff_rules(desired, applied)

            if diff.is_empty and not force:
                self._sync_unchanged(desired, applied)
                if self._store.dirty:
                    self._store.save()
                return ReconcileResult(diff=diff)

            return self._apply(desired, applied, diff)

    def _apply(
        self,
        desired: dict[str, Rule],
        applied: dict[str, Rule],
        diff: RuleDiff,
    ) -> ReconcileResult:
        checkpoint = self._pipes.snapshot()

        for ip in diff.touched:
            self._store.mark(desired[ip], RuleState.APPLYING)
        for ip in diff.removed:
            logger.debug("Removing rules for %s", ip)

        self._assign_pipes(desired, diff)

        try:
            text = compile_config(desired, self._pipes, self._anchor)
        except CompileError:
            self._pipes.restore(checkpoint)
            for ip in diff.touched:
                self._store.mark(desired[ip], RuleState.FAILED)
            raise

        try:
            self._firewall.apply(text)
        except ApplyError as exc:
            self._pipes.restore(checkpoint)
            with self._state_lock:
                self._last_error = exc
            logger.error(
                "Apply to anchor %s failed (%d added, %d changed, %d removed): %s",
                self._anchor,
                len(diff.added),
                len(diff.changed),
                len(diff.removed),
                exc,
            )
            failed = [
                self._store.mark(desired[ip], RuleState.FAILED)
                or dataclasses.replace(desired[ip], state=RuleState.FAILED)
                for ip in diff.touched
            ]
            failed.extend(
                dataclasses.replace(applied[ip], state=RuleState.FAILED)
                for ip in diff.removed
            )
            return ReconcileResult(diff=diff, error=exc, rules=failed)

        new_applied = {ip: self._with_pipes(rule) for ip, rule in desired.items()}
        with self._state_lock:
            self._applied = new_applied
            self._last_error = None

        touched = set(diff.touched)
        result_rules: list[Rule] = []
        for ip, rule in desired.items():
            marked = self._store.mark(
                rule, RuleState.APPLIED, new_applied[ip].up_pipe, new_applied[ip].down_pipe
            )
            if ip in touched:
                result_rules.append(marked or new_applied[ip])
        result_rules.extend(
            dataclasses.replace(applied[ip], state=RuleState.REMOVED) for ip in diff.removed
        )

        logger.info(
            "Applied %d rule(s) to anchor %s (%d added, %d changed, %d removed)",
            len(desired),
            self._anchor,
            len(diff.added),
            len(diff.changed),
            len(diff.removed),
        )

        if self._store.dirty:
            self._store.save()

        return ReconcileResult(diff=diff, applied=True, rules=result_rules)

    def _assign_pipes(self, desired: dict[str, Rule], diff: RuleDiff) -> None:
        for ip in diff.removed:
            for direction in Direction:
                self._pipes.release(ip, direction)
        for ip in diff.touched:
            rule = desired[ip]
            for direction in Direction:
                if rule.limit(direction) is None:
                    self._pipes.release(ip, direction)
                else:
                    self._pipes.allocate(ip, direction)

    def _with_pipes(self, rule: Rule) -> Rule:
        return dataclasses.replace(
            rule,
            state=RuleState.APPLIED,
            up_pipe=self._pipes.lookup(rule.ip, Direction.UP),
            down_pipe=self._pipes.lookup(rule.ip, Direction.DOWN),
        )

    def _sync_unchanged(self, desired: dict[str, Rule], applied: dict[str, Rule]) -> None:
        """Mark rules that already match the anchor (e.g. re-added) as applied."""
        for ip, rule in desired.items():
            if rule.state is RuleState.APPLIED:
                continue
            loaded = applied[ip]
            self._store.mark(rule, RuleState.APPLIED, loaded.up_pipe, loaded.down_pipe)
