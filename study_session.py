"""
Study session bookkeeping: record reviews and summarise a session.
Sessions are updated copy-on-write like cards.
"""

from datetime import datetime
from typing import Optional

from models import CardReview, SessionStats, StudySession, ensure_utc, new_id, utcnow
from spaced_rep import PASSING_QUALITY, round_half_up


def create_study_session(now: Optional[datetime] = None) -> StudySession:
    return StudySession(
        id=new_id(),
        start_time=ensure_utc(now) if now is not None else utcnow(),
    )


def update_study_session(
    session: StudySession,
    card_review: Optional[CardReview] = None,
    end_time: Optional[datetime] = None,
) -> StudySession:
    """
    Return a new session with the review appended and/or the session completed.

    Quality >= 3 counts as a correct answer. The average response time is
    recomputed over every review in the session.
    """
    update = {}

    if card_review is not None:
        reviews = [*session.cards_reviewed, card_review]
        update["cards_reviewed"] = reviews
        update["total_cards"] = len(reviews)
        if card_review.quality >= PASSING_QUALITY:
            update["correct_answers"] = session.correct_answers + 1
        else:
            update["incorrect_answers"] = session.incorrect_answers + 1
        total_time = sum(r.response_time for r in reviews)
        update["average_response_time"] = int(round_half_up(total_time / len(reviews)))

    if end_time is not None:
        update["end_time"] = ensure_utc(end_time)
        update["is_completed"] = True

    return session.model_copy(update=update)


def calculate_session_stats(session: StudySession) -> SessionStats:
    accuracy = 0
    if session.total_cards > 0:
        accuracy = int(round_half_up(session.correct_answers / session.total_cards * 100))

    duration = 0
    if session.end_time is not None:
        duration = int(round_half_up((session.end_time - session.start_time).total_seconds()))

    return SessionStats(
        total_cards=session.total_cards,
        correct_answers=session.correct_answers,
        incorrect_answers=session.incorrect_answers,
        accuracy_percentage=accuracy,
        average_response_time=session.average_response_time,
        session_duration=duration,
    )
