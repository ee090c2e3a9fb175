"""Countdown scoring.

The client renders its own countdown for display only. The value that
counts is recomputed here from server timestamps at the moment a correct
guess is accepted.
"""

from __future__ import annotations

import math


def elapsed_ms(started_at: float, now: float) -> int:
    """Server-measured milliseconds since ``started_at``; never negative."""
    return max(0, int((now - started_at) * 1000))


def current_score(started_at: float, now: float, base_points: int, decay_rate_per_second: float) -> int:
    """Score still available ``now - started_at`` seconds into a tier.

    Linear decay from ``base_points``, floored at zero. Non-increasing in
    ``now`` for fixed parameters.
    """
    elapsed = max(0.0, now - started_at)
    return max(0, math.floor(base_points - elapsed * decay_rate_per_second))


def award_for(
    started_at: float,
    now: float,
    base_points: int,
    decay_rate_per_second: float,
    bonus_multiplier: float = 1.0,
) -> int:
    score = current_score(started_at, now, base_points, decay_rate_per_second)
    return max(0, math.floor(score * bonus_multiplier))


def apply_penalty(total_score: int, penalty: int) -> int:
    return max(0, total_score - penalty)
