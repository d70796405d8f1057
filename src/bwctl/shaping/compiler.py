"""Config compiler — render a rule set into pf + dummynet anchor text.

The output is a pure function of the rule set and the pipe assignments:
rules are emitted in numeric address order regardless of how they were
inserted, so compiling twice yields byte-identical text. All ``pipe``
definitions come before the filter rules that reference them.
"""

from __future__ import annotations

from collections.abc import Mapping

from bwctl.errors import CompileError
from bwctl.rules.models import Direction, Rule, RuleMode, ip_sort_key
from bwctl.shaping.pipes import PipeAllocator

LABEL_PREFIX = "bwctl"
PIPE_PREFIX = "pipe "

# dummynet has a single pipe namespace; keep directions apart and clear of
# the low numbers other tools tend to use.
_PIPE_BASE = {
    Direction.UP: 10000,
    Direction.DOWN: 20000,
}


def kernel_pipe(direction: Direction, pipe_id: int) -> int:
    """Map an allocator id to the dummynet pipe number."""
    return _PIPE_BASE[direction] + pipe_id


def is_owned_pipe(number: int) -> bool:
    """Whether a dummynet pipe number falls in a range bwctl allocates from."""
    return any(base < number < base + 10000 for base in _PIPE_BASE.values())


def rule_label(ip: str, direction: Direction) -> str:
    return f"{LABEL_PREFIX}:{ip}:{direction.value}"


def compile_config(
    desired: Mapping[str, Rule],
    pipes: PipeAllocator,
    anchor: str = "com.apple/bwctl",
) -> str:
    """Render ``desired`` into the full configuration for ``anchor``."""
    ordered = [desired[ip] for ip in sorted(desired, key=ip_sort_key)]

    pipe_lines: list[str] = []
    filter_lines: list[str] = []
    for rule in ordered:
        if rule.mode is RuleMode.LIMIT:
            for direction in Direction:
                limit = rule.limit(direction)
                if limit is None:
                    continue
                number = kernel_pipe(direction, _pipe_for(rule, direction, pipes))
                pipe_lines.append(f"{PIPE_PREFIX}{number} config bw {limit}KByte/s")
                filter_lines.append(_dummynet_line(rule.ip, direction, number))
        elif rule.mode is RuleMode.BLOCK:
            filter_lines.extend(_block_lines(rule.ip))
        else:
            filter_lines.extend(_count_lines(rule.ip))

    lines = [f'# bwctl anchor "{anchor}", regenerated on every apply']
    lines.extend(pipe_lines)
    lines.extend(filter_lines)
    return "\n".join(lines) + "\n"


def split_config(text: str) -> tuple[list[str], list[str]]:
    """Split compiled text into (pipe definitions, pf rules)."""
    pipe_lines: list[str] = []
    rule_lines: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith(PIPE_PREFIX):
            pipe_lines.append(stripped)
        else:
            rule_lines.append(stripped)
    return pipe_lines, rule_lines


def _pipe_for(rule: Rule, direction: Direction, pipes: PipeAllocator) -> int:
    pipe_id = pipes.lookup(rule.ip, direction)
    if pipe_id is None:
        raise CompileError(f"No {direction.value} pipe assigned to {rule.ip}")
    return pipe_id


def _dummynet_line(ip: str, direction: Direction, number: int) -> str:
    label = rule_label(ip, direction)
    if direction is Direction.UP:
        return f'dummynet in from {ip} to any pipe {number} label "{label}"'
    return f'dummynet out from any to {ip} pipe {number} label "{label}"'


def _block_lines(ip: str) -> list[str]:
    return [
        f'block drop in quick from {ip} to any label "{rule_label(ip, Direction.UP)}"',
        f'block drop out quick from any to {ip} label "{rule_label(ip, Direction.DOWN)}"',
    ]


def _count_lines(ip: str) -> list[str]:
    return [
        f'pass in from {ip} to any label "{rule_label(ip, Direction.UP)}"',
        f'pass out from any to {ip} label "{rule_label(ip, Direction.DOWN)}"',
    ]
