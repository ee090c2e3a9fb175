from __future__ import annotations

from typing import Iterable, List, Optional

from .models import PositionState


class PositionTracker:
    """Per-position status for one tier session.

    Wraps the ``position_states`` list of a ``TierSession`` (index 0 holds
    position 1) and mutates it in place. ``correct`` is absorbing: nothing
    moves a position out of it.
    """

    def __init__(self, states: List[PositionState]):
        self._states = states

    @classmethod
    def fresh(cls, count: int) -> "PositionTracker":
        return cls([PositionState.NOT_VISITED] * count)

    @property
    def states(self) -> List[PositionState]:
        return self._states

    @property
    def size(self) -> int:
        return len(self._states)

    def exists(self, position: int) -> bool:
        return 1 <= position <= len(self._states)

    def state(self, position: int) -> PositionState:
        if not self.exists(position):
            raise IndexError(f"position {position} out of range 1..{len(self._states)}")
        return self._states[position - 1]

    def mark_skipped(self, position: int) -> bool:
        """Move ``position`` to skipped. Returns False when it is already correct."""
        current = self.state(position)
        if current == PositionState.CORRECT:
            return False
        self._states[position - 1] = PositionState.SKIPPED
        return True

    def mark_correct(self, position: int) -> None:
        if self.state(position) == PositionState.CORRECT:
            raise ValueError(f"position {position} is already correct")
        self._states[position - 1] = PositionState.CORRECT

    def _positions_in(self, wanted: PositionState) -> Iterable[int]:
        return (idx + 1 for idx, st in enumerate(self._states) if st == wanted)

    def next_navigable_after(self, position: int) -> Optional[int]:
        """Where the pointer goes when the player moves on from ``position``.

        First the lowest not-visited position above it, then the lowest
        skipped position below it, then any other unsolved position in
        ascending order. ``None`` when nothing else is left to play.
        """
        for candidate in self._positions_in(PositionState.NOT_VISITED):
            if candidate > position:
                return candidate
        for candidate in self._positions_in(PositionState.SKIPPED):
            if candidate < position:
                return candidate
        for candidate in self.unfound_positions():
            if candidate != position:
                return candidate
        return None

    def has_remaining(self) -> bool:
        return any(st != PositionState.CORRECT for st in self._states)

    def all_correct(self) -> bool:
        return bool(self._states) and not self.has_remaining()

    def correct_positions(self) -> List[int]:
        return list(self._positions_in(PositionState.CORRECT))

    def unfound_positions(self) -> List[int]:
        return [idx + 1 for idx, st in enumerate(self._states) if st != PositionState.CORRECT]
