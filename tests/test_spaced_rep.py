from datetime import datetime, timedelta, timezone

import pytest

import spaced_rep
from models import MIN_EASE_FACTOR
from spaced_rep import (
    InvalidQuality,
    ReviewResult,
    apply_review,
    calculate_next_review,
    get_cards_by_urgency,
    get_due_cards,
    get_due_cards_count,
    round_half_up,
)


# --- calculate_next_review ---

def test_new_card_good_review(make_card, now):
    card = make_card()
    result = calculate_next_review(card, 4, now)
    assert result == ReviewResult(
        repetitions=1, ease_factor=2.5, interval=1, next_review=now + timedelta(days=1)
    )


def test_second_successful_review_gives_six_days(make_card, now):
    card = make_card(repetitions=1, interval=1, ease_factor=2.5)
    result = calculate_next_review(card, 4, now)
    assert (result.repetitions, result.ease_factor, result.interval) == (2, 2.5, 6)
    assert result.next_review == now + timedelta(days=6)


def test_third_review_scales_previous_interval(make_card, now):
    card = make_card(repetitions=2, interval=6, ease_factor=2.6)
    result = calculate_next_review(card, 4, now)
    assert result.repetitions == 3
    assert result.ease_factor == 2.6
    assert result.interval == 16  # round(6 * 2.6)


def test_ease_factor_clamped_at_minimum(make_card, now):
    card = make_card(repetitions=3, interval=10, ease_factor=1.35)
    result = calculate_next_review(card, 0, now)
    assert result.ease_factor == 1.3
    assert result.repetitions == 0
    assert result.interval == 1


def test_failed_review_resets_but_still_penalises_ease(make_card, now):
    # Current behaviour: the ease penalty applies even when recall fails.
    card = make_card(repetitions=5, interval=30, ease_factor=2.8)
    result = calculate_next_review(card, 2, now)
    assert result.repetitions == 0
    assert result.interval == 1
    assert result.ease_factor == 2.48
    assert result.next_review == now + timedelta(days=1)


@pytest.mark.parametrize("quality, expected", [(5, 2.6), (4, 2.5), (3, 2.36), (2, 2.18), (1, 1.96), (0, 1.7)])
def test_ease_factor_delta_per_quality(make_card, now, quality, expected):
    result = calculate_next_review(make_card(), quality, now)
    assert result.ease_factor == expected


def test_interval_rounds_half_up(make_card, now):
    card = make_card(repetitions=2, interval=5, ease_factor=2.5)
    result = calculate_next_review(card, 4, now)
    assert result.interval == 13  # 12.5 rounds up, not to even


def test_interval_scales_with_new_ease_factor(make_card, now):
    card = make_card(repetitions=4, interval=100, ease_factor=2.5)
    result = calculate_next_review(card, 3, now)
    assert result.ease_factor == 2.36
    assert result.interval == 236


@pytest.mark.parametrize("quality", [-1, 6, 100, 2.5, "4", None, True])
def test_invalid_quality_raises(make_card, now, quality):
    card = make_card()
    snapshot = card.model_copy(deep=True)
    with pytest.raises(InvalidQuality):
        calculate_next_review(card, quality, now)
    assert card == snapshot


def test_invalid_quality_is_a_value_error(make_card):
    with pytest.raises(ValueError, match="between 0 and 5"):
        calculate_next_review(make_card(), 6)


def test_defaults_to_clock(monkeypatch, make_card, now):
    monkeypatch.setattr(spaced_rep, "utcnow", lambda: now)
    result = calculate_next_review(make_card(), 5)
    assert result.next_review == now + timedelta(days=1)


def test_naive_current_date_treated_as_utc(make_card, now):
    naive = now.replace(tzinfo=None)
    result = calculate_next_review(make_card(), 4, naive)
    assert result.next_review == now + timedelta(days=1)


# --- invariants over a grid of states ---

STATES = [
    (0, 2.5, 0), (1, 2.5, 1), (2, 2.6, 6), (5, 2.8, 30), (3, 1.3, 4), (7, 1.31, 50), (10, 3.5, 365),
]


@pytest.mark.parametrize("repetitions, ease_factor, interval", STATES)
def test_scheduling_invariants(make_card, now, repetitions, ease_factor, interval):
    card = make_card(repetitions=repetitions, ease_factor=ease_factor, interval=interval)
    for quality in range(6):
        result = calculate_next_review(card, quality, now)
        assert result.ease_factor >= MIN_EASE_FACTOR
        assert result.interval >= 1
        assert result.next_review == now + timedelta(days=result.interval)
        if quality < 3:
            assert (result.repetitions, result.interval) == (0, 1)
        else:
            assert result.repetitions == repetitions + 1
            if repetitions == 0:
                assert result.interval == 1
            elif repetitions == 1:
                assert result.interval == 6


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(0.125, 2) == 0.13
    assert round_half_up(2.4799999999999995, 2) == 2.48


# --- apply_review ---

def test_apply_review_returns_updated_copy(monkeypatch, make_card, now):
    later = now + timedelta(minutes=5)
    monkeypatch.setattr(spaced_rep, "utcnow", lambda: later)
    card = make_card()
    snapshot = card.model_copy(deep=True)

    reviewed = apply_review(card, 4, now)

    assert card == snapshot
    assert reviewed is not card
    assert reviewed.id == card.id
    assert reviewed.question == card.question
    assert reviewed.repetitions == 1
    assert reviewed.interval == 1
    assert reviewed.last_reviewed == now
    assert reviewed.next_review == reviewed.last_reviewed + timedelta(days=reviewed.interval)
    assert reviewed.updated_at == later
    assert reviewed.created_at == card.created_at


def test_apply_review_backdated(make_card, now):
    backdated = now - timedelta(days=3)
    reviewed = apply_review(make_card(repetitions=1, interval=1), 5, backdated)
    assert reviewed.last_reviewed == backdated
    assert reviewed.next_review == backdated + timedelta(days=6)


def test_apply_review_invalid_quality_leaves_card(make_card, now):
    card = make_card()
    snapshot = card.model_copy(deep=True)
    with pytest.raises(InvalidQuality):
        apply_review(card, -1, now)
    assert card == snapshot


def test_review_sequence(make_card, now):
    card = make_card()
    t = now
    intervals = []
    for quality in (4, 4, 4, 5, 2, 4):
        card = apply_review(card, quality, t)
        intervals.append(card.interval)
        t = card.next_review
    assert intervals == [1, 6, 15, 39, 1, 1]
    assert card.repetitions == 1


# --- due cards ---

def test_due_cards_scenario(make_card, now):
    yesterday = make_card(question="yesterday?", next_review=now - timedelta(days=1))
    new = make_card(question="new?", next_review=now)
    tomorrow = make_card(question="tomorrow?", next_review=now + timedelta(days=1))
    cards = [tomorrow, new, yesterday]

    due = get_due_cards(cards, now)

    assert [c.question for c in due] == ["yesterday?", "new?"]
    assert get_due_cards_count(cards, now) == 2
    assert cards == [tomorrow, new, yesterday]


def test_due_cards_stable_for_ties(make_card, now):
    at = now - timedelta(hours=1)
    cards = [make_card(question=f"q{i}?", next_review=at) for i in range(5)]
    assert [c.question for c in get_due_cards(cards, now)] == ["q0?", "q1?", "q2?", "q3?", "q4?"]


def test_due_cards_count_agrees_with_selection(make_card, now):
    offsets = [-72, -1, 0, 0, 1, 5, 30, -200, 24, -24]
    cards = [make_card(question=f"q{o}?", next_review=now + timedelta(hours=o)) for o in offsets]
    for hours in (-300, -24, 0, 1, 24, 100):
        t = now + timedelta(hours=hours)
        due = get_due_cards(cards, t)
        assert len(due) == get_due_cards_count(cards, t)
        assert all(a.next_review <= b.next_review for a, b in zip(due, due[1:]))


def test_due_cards_empty():
    assert get_due_cards([]) == []
    assert get_due_cards_count([]) == 0


# --- urgency buckets ---

def test_urgency_buckets(make_card, now):
    def at(question, when):
        return make_card(question=question, next_review=when)

    cards = [
        at("upcoming", datetime(2024, 3, 17, 0, 0, tzinfo=timezone.utc)),
        at("tomorrow-late", datetime(2024, 3, 16, 23, 59, 59, 999000, tzinfo=timezone.utc)),
        at("tomorrow-early", datetime(2024, 3, 16, 0, 0, tzinfo=timezone.utc)),
        at("today-end", datetime(2024, 3, 15, 23, 59, 59, 999000, tzinfo=timezone.utc)),
        at("today-now", now),
        at("today-earlier", datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)),
        at("overdue-recent", datetime(2024, 3, 14, 23, 0, tzinfo=timezone.utc)),
        at("overdue-old", datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)),
    ]

    buckets = get_cards_by_urgency(cards, now)

    assert [c.question for c in buckets.overdue] == ["overdue-old", "overdue-recent"]
    assert [c.question for c in buckets.due_today] == ["today-earlier", "today-now", "today-end"]
    assert [c.question for c in buckets.due_tomorrow] == ["tomorrow-early", "tomorrow-late"]
    assert [c.question for c in buckets.upcoming] == ["upcoming"]


def test_urgency_uses_calendar_day_of_reference_timezone(make_card):
    cest = timezone(timedelta(hours=2))
    now = datetime(2024, 3, 15, 1, 0, tzinfo=cest)  # 2024-03-14 23:00 UTC
    # 00:30 local on the 15th, although it is still the 14th in UTC
    earlier_today = make_card(next_review=datetime(2024, 3, 14, 22, 30, tzinfo=timezone.utc))
    yesterday_local = make_card(next_review=datetime(2024, 3, 14, 21, 30, tzinfo=timezone.utc))

    buckets = get_cards_by_urgency([earlier_today, yesterday_local], now)

    assert buckets.due_today == [earlier_today]
    assert buckets.overdue == [yesterday_local]


def test_urgency_empty(now):
    buckets = get_cards_by_urgency([], now)
    assert (buckets.overdue, buckets.due_today, buckets.due_tomorrow, buckets.upcoming) == ([], [], [], [])
