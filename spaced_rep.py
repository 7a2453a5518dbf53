"""
SM-2 Spaced Repetition Algorithm

Quality ratings:
0 - Complete blackout, didn't recognize the answer
1 - Incorrect, but upon seeing answer, remembered
2 - Incorrect, but answer seemed easy to recall
3 - Correct with serious difficulty
4 - Correct after hesitation
5 - Perfect response

Everything here is pure: functions take the card (or cards) and the
reference time explicitly and return new values. Cards are never mutated.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Iterable, Optional, Protocol

from models import MIN_EASE_FACTOR, FlashCard, ensure_utc, to_millis, utcnow

MIN_QUALITY = 0
MAX_QUALITY = 5
PASSING_QUALITY = 3


class InvalidQuality(ValueError):
    """Raised when a quality rating is outside 0-5."""

    def __init__(self, quality):
        super().__init__(f"Quality must be an integer between {MIN_QUALITY} and {MAX_QUALITY}, got {quality!r}")
        self.quality = quality


class SchedulingState(Protocol):
    repetitions: int
    ease_factor: float
    interval: int


@dataclass(frozen=True)
class ReviewResult:
    repetitions: int
    ease_factor: float
    interval: int
    next_review: datetime


@dataclass
class UrgencyBuckets:
    overdue: list = field(default_factory=list)
    due_today: list = field(default_factory=list)
    due_tomorrow: list = field(default_factory=list)
    upcoming: list = field(default_factory=list)


def round_half_up(value: float, digits: int = 0) -> float:
    """Round half away from zero for positive values (Python's round() is banker's)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def validate_quality(quality) -> int:
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQuality(quality)
    if quality < MIN_QUALITY or quality > MAX_QUALITY:
        raise InvalidQuality(quality)
    return quality


def calculate_next_review(
    state: SchedulingState,
    quality: int,
    current_date: Optional[datetime] = None,
) -> ReviewResult:
    """
    Compute the next scheduling state for a card using SM-2.

    Args:
        state: Anything exposing repetitions, ease_factor and interval
        quality: Response quality (0-5)
        current_date: Time of the review (defaults to now)

    Returns:
        ReviewResult with the new repetitions, ease factor, interval and due date

    Raises:
        InvalidQuality: quality is not an integer in 0-5
    """
    quality = validate_quality(quality)
    current_date = ensure_utc(current_date) if current_date is not None else utcnow()

    # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
    # The penalty applies on failed recalls too.
    new_ease_factor = max(
        MIN_EASE_FACTOR,
        state.ease_factor + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)),
    )

    if quality < PASSING_QUALITY:
        # Failed - reset repetitions, review again tomorrow
        new_repetitions = 0
        new_interval = 1
    else:
        new_repetitions = state.repetitions + 1
        if new_repetitions == 1:
            new_interval = 1
        elif new_repetitions == 2:
            new_interval = 6
        else:
            # Previous interval scaled by the unrounded new ease factor
            new_interval = int(round_half_up(state.interval * new_ease_factor))

    return ReviewResult(
        repetitions=new_repetitions,
        ease_factor=round_half_up(new_ease_factor, 2),
        interval=new_interval,
        next_review=current_date + timedelta(days=new_interval),
    )


def apply_review(
    card: FlashCard,
    quality: int,
    review_date: Optional[datetime] = None,
) -> FlashCard:
    """Return a reviewed copy of the card. The original is left untouched."""
    review_date = ensure_utc(review_date) if review_date is not None else utcnow()
    result = calculate_next_review(card, quality, review_date)
    return card.model_copy(
        update={
            "repetitions": result.repetitions,
            "ease_factor": result.ease_factor,
            "interval": result.interval,
            "last_reviewed": review_date,
            "next_review": result.next_review,
            "updated_at": utcnow(),
        }
    )


def _is_due(card, current_date: datetime) -> bool:
    # millisecond granularity, matching stored timestamps
    return to_millis(card.next_review) <= to_millis(current_date)


def _by_next_review(card):
    return to_millis(card.next_review)


def get_due_cards(cards: Iterable[FlashCard], current_date: Optional[datetime] = None) -> list[FlashCard]:
    """Cards due at current_date, most overdue first. Ties keep their input order."""
    current_date = ensure_utc(current_date) if current_date is not None else utcnow()
    return sorted((c for c in cards if _is_due(c, current_date)), key=_by_next_review)


def get_due_cards_count(cards: Iterable[FlashCard], current_date: Optional[datetime] = None) -> int:
    current_date = ensure_utc(current_date) if current_date is not None else utcnow()
    return sum(1 for c in cards if _is_due(c, current_date))


def get_cards_by_urgency(
    cards: Iterable[FlashCard],
    current_date: Optional[datetime] = None,
) -> UrgencyBuckets:
    """
    Group cards into overdue / due today / due tomorrow / upcoming.

    Calendar days are taken in current_date's timezone. A card that fell due
    earlier today counts as due today; overdue means due on an earlier day.
    """
    now = current_date if current_date is not None else utcnow()
    if now.tzinfo is None:
        now = ensure_utc(now)
    tz = now.tzinfo

    end_of_today = datetime.combine(now.date(), time(23, 59, 59, 999000), tzinfo=tz)
    end_of_tomorrow = end_of_today + timedelta(days=1)

    buckets = UrgencyBuckets()
    for card in cards:
        next_review = ensure_utc(card.next_review).astimezone(tz)
        if next_review < now:
            if next_review.date() != now.date():
                buckets.overdue.append(card)
            else:
                buckets.due_today.append(card)
        elif next_review <= end_of_today:
            buckets.due_today.append(card)
        elif next_review <= end_of_tomorrow:
            buckets.due_tomorrow.append(card)
        else:
            buckets.upcoming.append(card)

    buckets.overdue.sort(key=_by_next_review)
    buckets.due_today.sort(key=_by_next_review)
    buckets.due_tomorrow.sort(key=_by_next_review)
    buckets.upcoming.sort(key=_by_next_review)
    return buckets
