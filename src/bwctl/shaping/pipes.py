"""Pipe allocator — stable shaping-channel ids per (ip, direction)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from bwctl.rules.models import Direction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipeState:
    """Opaque copy of the allocator, used to roll back a failed apply."""

    assigned: dict[tuple[str, Direction], int] = field(default_factory=dict)
    free: dict[Direction, tuple[int, ...]] = field(default_factory=dict)
    high: dict[Direction, int] = field(default_factory=dict)


class PipeAllocator:
    """Hands out small positive ids, independently for each direction.

    An existing assignment is always reused, so re-applying an unchanged
    rule never moves it to another pipe. Released ids go on a LIFO
    free-list; the most recently freed id is reused first, which keeps the
    live range compact.
    """

    def __init__(self) -> None:
        self._assigned: dict[tuple[str, Direction], int] = {}
        self._free: dict[Direction, list[int]] = {d: [] for d in Direction}
        self._high: dict[Direction, int] = {d: 0 for d in Direction}

    def allocate(self, ip: str, direction: Direction) -> int:
        key = (ip, direction)
        pipe_id = self._assigned.get(key)
        if pipe_id is not None:
            return pipe_id

        free = self._free[direction]
        if free:
            pipe_id = free.pop()
        else:
            self._high[direction] += 1
            pipe_id = self._high[direction]

        self._assigned[key] = pipe_id
        logger.debug("Allocated %s pipe %d to %s", direction.value, pipe_id, ip)
        return pipe_id

    def release(self, ip: str, direction: Direction) -> int | None:
        """Return the id held by (ip, direction) to the free-list."""
        pipe_id = self._assigned.pop((ip, direction), None)
        if pipe_id is not None:
            self._free[direction].append(pipe_id)
            logger.debug("Released %s pipe %d from %s", direction.value, pipe_id, ip)
        return pipe_id

    def lookup(self, ip: str, direction: Direction) -> int | None:
        return self._assigned.get((ip, direction))

    def assignments(self) -> dict[tuple[str, Direction], int]:
        return dict(self._assigned)

    def snapshot(self) -> PipeState:
        return PipeState(
            assigned=dict(self._assigned),
            free={d: tuple(ids) for d, ids in self._free.items()},
            high=dict(self._high),
        )

    def restore(self, state: PipeState) -> None:
        self._assigned = dict(state.assigned)
        self._free = {d: list(state.free.get(d, ())) for d in Direction}
        self._high = {d: state.high.get(d, 0) for d in Direction}
