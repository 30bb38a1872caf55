from datetime import datetime, timedelta, timezone

import pytest

from mnemo.application.scheduler import (
    calculate_next_review,
    new_scheduling_state,
    validate_quality,
)
from mnemo.domain.constants import AGAIN, EASY, GOOD, HARD
from mnemo.domain.errors import InvalidQuality
from mnemo.domain.models import CardSchedulingState

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fresh():
    return new_scheduling_state(NOW)


def test_new_state_defaults(fresh):
    assert fresh.ease_factor == 2.5
    assert fresh.interval == 0
    assert fresh.repetitions == 0
    assert fresh.next_review_date == NOW


def test_first_good_answer(fresh):
    s = calculate_next_review(fresh, GOOD, NOW)

    assert s.repetitions == 1
    assert s.interval == 1
    # Quality 4 leaves the ease factor where it was
    assert s.ease_factor == 2.5
    assert s.next_review_date == NOW + timedelta(days=1)


def test_good_good_easy_sequence(fresh):
    s1 = calculate_next_review(fresh, GOOD, NOW)
    s2 = calculate_next_review(s1, GOOD, NOW)
    s3 = calculate_next_review(s2, EASY, NOW)

    assert (s2.repetitions, s2.interval, s2.ease_factor) == (2, 6, 2.5)
    # round(6 * 2.5) uses the pre-review ease factor
    assert (s3.repetitions, s3.interval, s3.ease_factor) == (3, 15, 2.6)
    assert s3.next_review_date == NOW + timedelta(days=15)


def test_easy_streak_uses_previous_ease_for_interval(fresh):
    s1 = calculate_next_review(fresh, EASY, NOW)
    s2 = calculate_next_review(s1, EASY, NOW)
    s3 = calculate_next_review(s2, EASY, NOW)

    assert [s.interval for s in (s1, s2, s3)] == [1, 6, 16]
    assert [s.ease_factor for s in (s1, s2, s3)] == [2.6, 2.7, 2.8]


@pytest.mark.parametrize(
    "quality,expected_ease",
    [(0, 1.7), (1, 1.96), (2, 2.18), (3, 2.36), (4, 2.5), (5, 2.6)],
)
def test_ease_adjustment_per_quality(fresh, quality, expected_ease):
    assert calculate_next_review(fresh, quality, NOW).ease_factor == expected_ease


@pytest.mark.parametrize("quality", [0, 1, 2])
def test_failure_is_a_hard_reset(quality):
    mature = CardSchedulingState(
        next_review_date=NOW, ease_factor=2.9, interval=120, repetitions=7
    )

    s = calculate_next_review(mature, quality, NOW)

    assert s.repetitions == 0
    assert s.interval == 1
    assert s.next_review_date == NOW + timedelta(days=1)


def test_repeated_failure_clamps_ease_at_floor(fresh):
    s = fresh
    eases = []
    for _ in range(5):
        s = calculate_next_review(s, AGAIN, NOW)
        eases.append(s.ease_factor)
        assert s.interval == 1
        assert s.repetitions == 0

    assert eases == [1.7, 1.3, 1.3, 1.3, 1.3]


def test_floor_applies_after_rounding():
    # 1.44 - 0.14 = 1.30 exactly: kept, not bumped
    state = CardSchedulingState(next_review_date=NOW, ease_factor=1.44, interval=10, repetitions=3)
    assert calculate_next_review(state, HARD, NOW).ease_factor == 1.3


def test_interval_rounds_half_up():
    # 5 * 2.5 = 12.5 -> 13
    state = CardSchedulingState(next_review_date=NOW, ease_factor=2.5, interval=5, repetitions=2)
    s = calculate_next_review(state, GOOD, NOW)
    assert s.interval == 13
    assert s.repetitions == 3


def test_failure_then_recovery_restarts_at_one_then_six():
    state = CardSchedulingState(next_review_date=NOW, ease_factor=2.5, interval=40, repetitions=5)
    failed = calculate_next_review(state, AGAIN, NOW)
    first = calculate_next_review(failed, GOOD, NOW)
    second = calculate_next_review(first, GOOD, NOW)

    assert [failed.interval, first.interval, second.interval] == [1, 1, 6]
    assert second.repetitions == 2


def test_no_upper_bound_on_growth(fresh):
    s = fresh
    intervals = []
    for _ in range(12):
        s = calculate_next_review(s, EASY, NOW)
        intervals.append(s.interval)

    assert intervals == sorted(intervals)
    assert intervals[-1] > 10_000
    assert s.ease_factor == pytest.approx(3.7)


@pytest.mark.parametrize("ease", [1.3, 1.35, 1.5, 2.0, 2.5, 3.1])
@pytest.mark.parametrize("quality", range(6))
def test_ease_never_below_floor(ease, quality):
    state = CardSchedulingState(next_review_date=NOW, ease_factor=ease, interval=3, repetitions=2)
    assert calculate_next_review(state, quality, NOW).ease_factor >= 1.3


def test_input_state_is_left_untouched(fresh):
    before = CardSchedulingState(**vars(fresh))
    calculate_next_review(fresh, AGAIN, NOW)
    assert fresh == before


def test_due_date_is_relative_to_review_instant(fresh):
    later = NOW + timedelta(hours=7, minutes=13)
    s = calculate_next_review(fresh, GOOD, later)
    # Whole days from the instant of review, no midnight normalization
    assert s.next_review_date == later + timedelta(days=1)


def test_defaults_to_system_clock(fresh):
    before = datetime.now(timezone.utc)
    s = calculate_next_review(fresh, GOOD)
    after = datetime.now(timezone.utc)

    assert before + timedelta(days=1) <= s.next_review_date <= after + timedelta(days=1)


@pytest.mark.parametrize("bad", [-1, 6, 100, 3.0, 4.5, True, "4", None])
def test_invalid_quality_rejected(fresh, bad):
    with pytest.raises(InvalidQuality):
        calculate_next_review(fresh, bad, NOW)


@pytest.mark.parametrize("quality", [0, 1, 2, 3, 4, 5])
def test_validate_quality_accepts_full_range(quality):
    assert validate_quality(quality) == quality
