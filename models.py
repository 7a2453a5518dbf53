"""
Pydantic & SQLAlchemy models for the flashcard app.
Domain entities (flashcards, content, study sessions) are pydantic models;
their persisted rows live in the SQLAlchemy tables further down.
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel
from sqlalchemy import (
    JSON, Boolean, Column, Float, ForeignKey, Integer, String, Text, TypeDecorator,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship

DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3

YOUTUBE_URL_RE = re.compile(
    r"^https?://(www\.)?(youtube\.com/(watch\?v=|embed/)|youtu\.be/)[\w-]+"
)


def utcnow() -> datetime:
    """Default time source; every operation that reads the clock also accepts an explicit time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize as ISO-8601 UTC with millisecond precision, e.g. 2024-01-01T10:00:00.000Z."""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision, the granularity timestamps are stored at."""
    value = ensure_utc(value)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def from_iso(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def new_id() -> str:
    return uuid.uuid4().hex


Timestamp = Annotated[
    datetime,
    AfterValidator(ensure_utc),
    PlainSerializer(to_iso, return_type=str, when_used="json"),
]


class CamelModel(BaseModel):
    """Entities serialize with camelCase keys, the format used by exports."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- Flashcards ----

class ReviewButton(IntEnum):
    """Quality values sent by the four-button study UI. 0 and 3 are API-only."""
    AGAIN = 1
    HARD = 2
    GOOD = 4
    EASY = 5


class FlashCard(CamelModel):
    id: str
    question: str
    answer: str
    tags: list[str] = Field(default_factory=list)
    content_source_id: Optional[str] = None
    content_timestamp: Optional[float] = None  # seconds into a video

    # SM-2 scheduling state
    repetitions: int = 0
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: int = 0
    last_reviewed: Optional[Timestamp] = None
    next_review: Timestamp

    created_at: Timestamp
    updated_at: Timestamp


class CreateFlashCardInput(CamelModel):
    question: str
    answer: str
    tags: list[str] = Field(default_factory=list)
    content_source_id: Optional[str] = None
    content_timestamp: Optional[float] = None


def create_flashcard(data: CreateFlashCardInput, now: Optional[datetime] = None) -> FlashCard:
    """Create a new flashcard with default SM-2 values. New cards are due immediately."""
    now = ensure_utc(now) if now is not None else utcnow()
    return FlashCard(
        id=new_id(),
        question=data.question,
        answer=data.answer,
        tags=list(data.tags),
        content_source_id=data.content_source_id or None,
        content_timestamp=data.content_timestamp or None,
        repetitions=0,
        ease_factor=DEFAULT_EASE_FACTOR,
        interval=0,
        last_reviewed=None,
        next_review=now,
        created_at=now,
        updated_at=now,
    )


def validate_flashcard(card: FlashCard) -> bool:
    if not card.question.strip() or not card.answer.strip():
        return False
    if card.ease_factor < MIN_EASE_FACTOR:
        return False
    if card.repetitions < 0 or card.interval < 0:
        return False
    return True


# ---- Content ----

class ContentType(str, Enum):
    DOCUMENT = "document"
    VIDEO = "video"
    NOTE = "note"


class Content(CamelModel):
    id: str
    title: str
    type: ContentType
    file_path: Optional[str] = None
    youtube_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    associated_card_ids: list[str] = Field(default_factory=list)
    created_at: Timestamp
    updated_at: Timestamp


class CreateContentInput(CamelModel):
    title: str
    type: ContentType
    file_path: Optional[str] = None
    youtube_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)


def create_content(data: CreateContentInput, now: Optional[datetime] = None) -> Content:
    now = ensure_utc(now) if now is not None else utcnow()
    return Content(
        id=new_id(),
        title=data.title,
        type=data.type,
        file_path=data.file_path or None,
        youtube_url=data.youtube_url or None,
        metadata=dict(data.metadata),
        tags=list(data.tags),
        associated_card_ids=[],
        created_at=now,
        updated_at=now,
    )


def validate_content(content: Content) -> bool:
    if not content.title.strip():
        return False
    if content.type == ContentType.DOCUMENT:
        return bool(content.file_path)
    if content.type == ContentType.VIDEO:
        return bool(content.youtube_url) and YOUTUBE_URL_RE.match(content.youtube_url) is not None
    return True


# ---- Study sessions ----

class CardReview(CamelModel):
    card_id: str
    quality: int = Field(..., ge=0, le=5)
    response_time: int = 0  # milliseconds
    timestamp: Timestamp


class StudySession(CamelModel):
    id: str
    start_time: Timestamp
    end_time: Optional[Timestamp] = None
    cards_reviewed: list[CardReview] = Field(default_factory=list)
    total_cards: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    average_response_time: int = 0
    is_completed: bool = False


class SessionStats(CamelModel):
    total_cards: int
    correct_answers: int
    incorrect_answers: int
    accuracy_percentage: int
    average_response_time: int
    session_duration: int  # seconds


class ExportData(CamelModel):
    flash_cards: list[FlashCard] = Field(default_factory=list)
    content: list[Content] = Field(default_factory=list)
    study_sessions: list[StudySession] = Field(default_factory=list)
    export_date: Timestamp
    version: str


# ---- API request/response models ----

class ReviewRequest(CamelModel):
    quality: int = Field(..., ge=0, le=5, description="0=complete blackout, 5=perfect")
    session_id: Optional[str] = None
    response_time: int = Field(0, ge=0, description="Milliseconds taken to answer")


class GenerateRequest(CamelModel):
    text: str
    max_cards: Optional[int] = Field(None, ge=1)
    tags: list[str] = Field(default_factory=list)
    save: bool = False


class UrgencyResponse(CamelModel):
    overdue: list[FlashCard]
    due_today: list[FlashCard]
    due_tomorrow: list[FlashCard]
    upcoming: list[FlashCard]


class GenerateResponse(CamelModel):
    flashcards: list[FlashCard]
    skipped_sentences: int


class UploadResponse(CamelModel):
    content: Content
    flashcards: list[FlashCard]
    skipped_sentences: int
    metadata: dict[str, int]


# ---- SQLAlchemy ORM ----

Base = declarative_base()


class IsoTimestamp(TypeDecorator):
    """Stores datetimes as ISO-8601 UTC strings (millisecond precision).

    Fixed-width UTC strings sort chronologically, so range filters and ORDER BY
    work directly on the column.
    """
    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_iso(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_iso(value)


class CardDB(Base):
    __tablename__ = "cards"

    id = Column(String(64), primary_key=True)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    content_source_id = Column(String(64), nullable=True, index=True)
    content_timestamp = Column(Float, nullable=True)

    # SM-2 Spaced Repetition fields
    ease_factor = Column(Float, nullable=False, default=DEFAULT_EASE_FACTOR)
    interval = Column(Integer, nullable=False, default=0)      # Days until next review
    repetitions = Column(Integer, nullable=False, default=0)   # Successful reviews in a row
    last_reviewed = Column(IsoTimestamp, nullable=True)
    next_review = Column(IsoTimestamp, nullable=False, index=True)

    created_at = Column(IsoTimestamp, nullable=False, index=True)
    updated_at = Column(IsoTimestamp, nullable=False)


class ContentDB(Base):
    __tablename__ = "content"

    id = Column(String(64), primary_key=True)
    title = Column(Text, nullable=False)
    type = Column(String(16), nullable=False)
    file_path = Column(Text, nullable=True)
    youtube_url = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    tags = Column(JSON, nullable=False, default=list)
    associated_card_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(IsoTimestamp, nullable=False, index=True)
    updated_at = Column(IsoTimestamp, nullable=False)


class StudySessionDB(Base):
    __tablename__ = "study_sessions"

    id = Column(String(64), primary_key=True)
    start_time = Column(IsoTimestamp, nullable=False, index=True)
    end_time = Column(IsoTimestamp, nullable=True)
    total_cards = Column(Integer, nullable=False, default=0)
    correct_answers = Column(Integer, nullable=False, default=0)
    incorrect_answers = Column(Integer, nullable=False, default=0)
    average_response_time = Column(Integer, nullable=False, default=0)
    is_completed = Column(Boolean, nullable=False, default=False)

    reviews = relationship(
        "CardReviewDB",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="CardReviewDB.position",
    )


class CardReviewDB(Base):
    __tablename__ = "card_reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), ForeignKey("study_sessions.id"), nullable=False)
    position = Column(Integer, nullable=False)
    card_id = Column(String(64), nullable=False, index=True)
    quality = Column(Integer, nullable=False)  # 0-5
    response_time = Column(Integer, nullable=False, default=0)
    timestamp = Column(IsoTimestamp, nullable=False)

    session = relationship("StudySessionDB", back_populates="reviews")


# Database setup
def get_engine(db_path: str = "flashcards.db"):
    return create_engine(
        f"sqlite:///{db_path}", echo=False, connect_args={"check_same_thread": False}
    )


def init_db(engine):
    Base.metadata.create_all(engine)
