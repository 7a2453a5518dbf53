"""
SQLite persistence for flashcards, content and study sessions.

The service converts between the pydantic entities in models.py and their
ORM rows; callers never see SQLAlchemy objects.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models import (
    CardDB, CardReview, CardReviewDB, Content, ContentDB, ContentType, ExportData,
    FlashCard, StudySession, StudySessionDB, to_millis, utcnow, validate_content,
    validate_flashcard,
)
from spaced_rep import round_half_up

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"


class StorageError(Exception):
    """Raised when an entity cannot be stored."""


# ---- row <-> entity conversion ----

def card_to_row(card: FlashCard, row: Optional[CardDB] = None) -> CardDB:
    row = row if row is not None else CardDB(id=card.id)
    row.question = card.question
    row.answer = card.answer
    row.tags = list(card.tags)
    row.content_source_id = card.content_source_id
    row.content_timestamp = card.content_timestamp
    row.repetitions = card.repetitions
    row.ease_factor = round_half_up(card.ease_factor, 2)
    row.interval = card.interval
    row.last_reviewed = card.last_reviewed
    row.next_review = card.next_review
    row.created_at = card.created_at
    row.updated_at = card.updated_at
    return row


def row_to_card(row: CardDB) -> FlashCard:
    return FlashCard(
        id=row.id,
        question=row.question,
        answer=row.answer,
        tags=list(row.tags or []),
        content_source_id=row.content_source_id,
        content_timestamp=row.content_timestamp,
        repetitions=row.repetitions,
        ease_factor=row.ease_factor,
        interval=row.interval,
        last_reviewed=row.last_reviewed,
        next_review=row.next_review,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def content_to_row(content: Content, row: Optional[ContentDB] = None) -> ContentDB:
    row = row if row is not None else ContentDB(id=content.id)
    row.title = content.title
    row.type = content.type.value
    row.file_path = content.file_path
    row.youtube_url = content.youtube_url
    row.meta = dict(content.metadata)
    row.tags = list(content.tags)
    row.associated_card_ids = list(content.associated_card_ids)
    row.created_at = content.created_at
    row.updated_at = content.updated_at
    return row


def row_to_content(row: ContentDB) -> Content:
    return Content(
        id=row.id,
        title=row.title,
        type=ContentType(row.type),
        file_path=row.file_path,
        youtube_url=row.youtube_url,
        metadata=dict(row.meta or {}),
        tags=list(row.tags or []),
        associated_card_ids=list(row.associated_card_ids or []),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def session_to_row(session: StudySession, row: Optional[StudySessionDB] = None) -> StudySessionDB:
    row = row if row is not None else StudySessionDB(id=session.id)
    row.start_time = session.start_time
    row.end_time = session.end_time
    row.total_cards = session.total_cards
    row.correct_answers = session.correct_answers
    row.incorrect_answers = session.incorrect_answers
    row.average_response_time = session.average_response_time
    row.is_completed = session.is_completed
    row.reviews = [
        CardReviewDB(
            position=i,
            card_id=review.card_id,
            quality=review.quality,
            response_time=review.response_time,
            timestamp=review.timestamp,
        )
        for i, review in enumerate(session.cards_reviewed)
    ]
    return row


def row_to_session(row: StudySessionDB) -> StudySession:
    return StudySession(
        id=row.id,
        start_time=row.start_time,
        end_time=row.end_time,
        cards_reviewed=[
            CardReview(
                card_id=review.card_id,
                quality=review.quality,
                response_time=review.response_time,
                timestamp=review.timestamp,
            )
            for review in row.reviews
        ],
        total_cards=row.total_cards,
        correct_answers=row.correct_answers,
        incorrect_answers=row.incorrect_answers,
        average_response_time=row.average_response_time,
        is_completed=row.is_completed,
    )


class StorageService:
    """
    Repository for every persisted entity.

    Each call runs in its own SQLAlchemy session and commits once. Writes that
    must land together (a reviewed card and its study session) go through a
    single method so they share one transaction.
    """

    def __init__(self, engine):
        self.engine = engine
        self._sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)

    def _session(self) -> Session:
        return self._sessionmaker()

    def _commit(self, db: Session, what: str) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"Failed to save {what}: {exc}") from exc

    # --- flashcards ---

    def save_flashcard(self, card: FlashCard) -> None:
        if not validate_flashcard(card):
            raise StorageError("Invalid flashcard data")
        with self._session() as db:
            db.merge(card_to_row(card))
            self._commit(db, "flashcard")
        logger.debug("Saved flashcard %s", card.id)

    def save_review(self, card: FlashCard, session: Optional[StudySession] = None) -> None:
        """Persist a reviewed card and the study session recording it, all or nothing."""
        if not validate_flashcard(card):
            raise StorageError("Invalid flashcard data")
        with self._session() as db:
            try:
                db.merge(card_to_row(card))
                if session is not None:
                    row = db.get(StudySessionDB, session.id)
                    db.add(session_to_row(session, row))
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StorageError(f"Failed to save review of {card.id}: {exc}") from exc
        logger.debug("Saved review of flashcard %s", card.id)

    def get_flashcard(self, card_id: str) -> Optional[FlashCard]:
        with self._session() as db:
            row = db.get(CardDB, card_id)
            return row_to_card(row) if row is not None else None

    def get_all_flashcards(self) -> list[FlashCard]:
        """All flashcards, newest first."""
        with self._session() as db:
            rows = db.scalars(select(CardDB).order_by(CardDB.created_at.desc(), CardDB.id)).all()
            return [row_to_card(r) for r in rows]

    def delete_flashcard(self, card_id: str) -> bool:
        with self._session() as db:
            row = db.get(CardDB, card_id)
            if row is None:
                return False
            db.delete(row)
            self._commit(db, "flashcard deletion")
        logger.info("Deleted flashcard %s", card_id)
        return True

    def get_due_flashcards(self, current_date: Optional[datetime] = None, limit: Optional[int] = None) -> list[FlashCard]:
        """
        Same result as spaced_rep.get_due_cards(self.get_all_flashcards(), current_date),
        evaluated in SQL: millisecond granularity, ties newest first.
        """
        current_date = to_millis(current_date if current_date is not None else utcnow())
        stmt = (
            select(CardDB)
            .where(CardDB.next_review <= current_date)
            .order_by(CardDB.next_review, CardDB.created_at.desc(), CardDB.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as db:
            return [row_to_card(r) for r in db.scalars(stmt).all()]

    # --- content ---

    def save_content(self, content: Content) -> None:
        if not validate_content(content):
            raise StorageError("Invalid content data")
        with self._session() as db:
            db.merge(content_to_row(content))
            self._commit(db, "content")
        logger.debug("Saved content %s", content.id)

    def get_content(self, content_id: str) -> Optional[Content]:
        with self._session() as db:
            row = db.get(ContentDB, content_id)
            return row_to_content(row) if row is not None else None

    def get_all_content(self) -> list[Content]:
        with self._session() as db:
            rows = db.scalars(select(ContentDB).order_by(ContentDB.created_at.desc())).all()
            return [row_to_content(r) for r in rows]

    def delete_content(self, content_id: str) -> bool:
        with self._session() as db:
            row = db.get(ContentDB, content_id)
            if row is None:
                return False
            db.delete(row)
            self._commit(db, "content deletion")
        logger.info("Deleted content %s", content_id)
        return True

    # --- study sessions ---

    def save_study_session(self, session: StudySession) -> None:
        with self._session() as db:
            row = db.get(StudySessionDB, session.id)
            db.add(session_to_row(session, row))
            self._commit(db, "study session")
        logger.debug("Saved study session %s", session.id)

    def get_study_session(self, session_id: str) -> Optional[StudySession]:
        with self._session() as db:
            row = db.get(StudySessionDB, session_id)
            return row_to_session(row) if row is not None else None

    def get_all_study_sessions(self) -> list[StudySession]:
        with self._session() as db:
            rows = db.scalars(select(StudySessionDB).order_by(StudySessionDB.start_time.desc())).all()
            return [row_to_session(r) for r in rows]

    def delete_study_session(self, session_id: str) -> bool:
        with self._session() as db:
            row = db.get(StudySessionDB, session_id)
            if row is None:
                return False
            db.delete(row)
            self._commit(db, "study session deletion")
        logger.info("Deleted study session %s", session_id)
        return True

    # --- search ---

    def search_flashcards(self, query: str) -> list[FlashCard]:
        """Case-insensitive substring match on question, answer and tags."""
        needle = query.lower()
        return [
            card for card in self.get_all_flashcards()
            if needle in card.question.lower()
            or needle in card.answer.lower()
            or any(needle in tag.lower() for tag in card.tags)
        ]

    def get_flashcards_by_tag(self, tag: str) -> list[FlashCard]:
        return [card for card in self.get_all_flashcards() if tag in card.tags]

    def get_flashcards_by_tags(self, tags: list[str]) -> list[FlashCard]:
        return [card for card in self.get_all_flashcards() if all(t in card.tags for t in tags)]

    # --- data management ---

    def export_all_data(self, now: Optional[datetime] = None) -> ExportData:
        return ExportData(
            flash_cards=self.get_all_flashcards(),
            content=self.get_all_content(),
            study_sessions=self.get_all_study_sessions(),
            export_date=now if now is not None else utcnow(),
            version=EXPORT_VERSION,
        )

    def import_data(self, data: ExportData) -> None:
        """Replace everything stored with the contents of an export."""
        for card in data.flash_cards:
            if not validate_flashcard(card):
                raise StorageError(f"Invalid flashcard data: {card.id}")
        for content in data.content:
            if not validate_content(content):
                raise StorageError(f"Invalid content data: {content.id}")

        with self._session() as db:
            self._clear(db)
            db.add_all(card_to_row(card) for card in data.flash_cards)
            db.add_all(content_to_row(content) for content in data.content)
            db.add_all(session_to_row(session) for session in data.study_sessions)
            self._commit(db, "import")
        logger.info(
            "Imported %d flashcards, %d content items, %d study sessions",
            len(data.flash_cards), len(data.content), len(data.study_sessions),
        )

    def clear_all_data(self) -> None:
        with self._session() as db:
            self._clear(db)
            self._commit(db, "clear")
        logger.info("Cleared all stored data")

    def _clear(self, db: Session) -> None:
        db.execute(delete(CardReviewDB))
        db.execute(delete(StudySessionDB))
        db.execute(delete(ContentDB))
        db.execute(delete(CardDB))
