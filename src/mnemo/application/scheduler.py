"""
SM-2 scheduler.

Maps (current scheduling state, quality rating) to the next scheduling
state. This is a pure computation module with no I/O; the current instant
is passed in so results are reproducible.

Formulas:
    EF' = max(1.3, round2(EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))))
    I(1) = 1, I(2) = 6, I(n) = round(I(n-1) * EF) for n > 2
    q < 3 resets repetitions to 0 and the interval to 1 day.
"""

import math
from datetime import datetime, timedelta, timezone

from mnemo.domain.constants import (
    FAILURE_INTERVAL,
    FIRST_INTERVAL,
    MAX_QUALITY,
    MIN_EASE_FACTOR,
    MIN_QUALITY,
    PASSING_QUALITY,
    SECOND_INTERVAL,
)
from mnemo.domain.errors import InvalidQuality
from mnemo.domain.models import CardSchedulingState


def validate_quality(quality: object) -> int:
    """
    Return quality as an int, or raise InvalidQuality.

    Booleans and non-integral numbers are rejected.
    """
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQuality(quality)
    if quality < MIN_QUALITY or quality > MAX_QUALITY:
        raise InvalidQuality(quality)
    return quality


def new_scheduling_state(now: datetime) -> CardSchedulingState:
    """Default state for a freshly created card: due immediately."""
    return CardSchedulingState(next_review_date=now)


def calculate_next_review(
    state: CardSchedulingState,
    quality: int,
    now: datetime | None = None,
) -> CardSchedulingState:
    """
    Compute the scheduling state after one review.

    Args:
        state: The card's current scheduling state.
        quality: Recall rating in [0, 5] (0=Again, 3=Hard, 4=Good, 5=Easy).
        now: Instant of the review. Defaults to the current UTC time.

    Returns:
        A new CardSchedulingState; the input is left untouched.

    Raises:
        InvalidQuality: quality is not an integer in [0, 5].
    """
    quality = validate_quality(quality)
    if now is None:
        now = datetime.now(timezone.utc)

    repetitions = _next_repetitions(state.repetitions, quality)
    interval = _next_interval(state.interval, state.ease_factor, repetitions, quality)
    ease_factor = _next_ease_factor(state.ease_factor, quality)

    return CardSchedulingState(
        ease_factor=ease_factor,
        interval=interval,
        repetitions=repetitions,
        next_review_date=now + timedelta(days=interval),
    )


def _next_repetitions(repetitions: int, quality: int) -> int:
    if quality < PASSING_QUALITY:
        return 0
    return repetitions + 1


def _next_interval(interval: int, ease_factor: float, repetitions: int, quality: int) -> int:
    # Uses the pre-review interval and ease factor.
    if quality < PASSING_QUALITY:
        return FAILURE_INTERVAL
    if repetitions == 1:
        return FIRST_INTERVAL
    if repetitions == 2:
        return SECOND_INTERVAL
    return _round_half_up(interval * ease_factor)


def _next_ease_factor(ease_factor: float, quality: int) -> float:
    miss = MAX_QUALITY - quality
    adjustment = 0.1 - miss * (0.08 + miss * 0.02)
    rounded = _round_half_up((ease_factor + adjustment) * 100) / 100
    return max(MIN_EASE_FACTOR, rounded)


def _round_half_up(value: float) -> int:
    # round() would use banker's rounding: 2.5 -> 2.
    return math.floor(value + 0.5)
