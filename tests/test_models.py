from datetime import datetime, timedelta, timezone

import pytest

from models import (
    ContentType, CreateContentInput, CreateFlashCardInput, FlashCard, create_content, create_flashcard,
    from_iso, to_iso, to_millis, validate_content, validate_flashcard,
)


def test_create_flashcard_defaults(now):
    card = create_flashcard(CreateFlashCardInput(question="Q?", answer="A", tags=["x"]), now=now)
    assert (card.repetitions, card.ease_factor, card.interval) == (0, 2.5, 0)
    assert card.last_reviewed is None
    assert card.next_review == card.created_at == card.updated_at == now
    assert card.content_source_id is None


def test_create_flashcard_ids_unique(now):
    data = CreateFlashCardInput(question="Q?", answer="A")
    assert create_flashcard(data, now).id != create_flashcard(data, now).id


def test_validate_flashcard(make_card):
    assert validate_flashcard(make_card())
    assert not validate_flashcard(make_card(question=" "))
    assert not validate_flashcard(make_card(ease_factor=1.29))


@pytest.mark.parametrize("data, valid", [
    (CreateContentInput(title="Notes", type=ContentType.NOTE), True),
    (CreateContentInput(title="Doc", type=ContentType.DOCUMENT, file_path="a.pdf"), True),
    (CreateContentInput(title="Doc", type=ContentType.DOCUMENT), False),
    (CreateContentInput(title="Clip", type=ContentType.VIDEO, youtube_url="https://www.youtube.com/watch?v=abc_123"), True),
    (CreateContentInput(title="Clip", type=ContentType.VIDEO, youtube_url="https://youtu.be/abc-123"), True),
    (CreateContentInput(title="Clip", type=ContentType.VIDEO, youtube_url="https://example.com/v/1"), False),
    (CreateContentInput(title="", type=ContentType.NOTE), False),
])
def test_validate_content(now, data, valid):
    assert validate_content(create_content(data, now)) is valid


def test_iso_format():
    value = datetime(2024, 1, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert to_iso(value) == "2024-01-01T10:00:00.123Z"
    assert from_iso("2024-01-01T10:00:00.123Z") == value.replace(microsecond=123000)


def test_iso_converts_offsets_to_utc():
    value = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_iso(value) == "2024-01-01T10:00:00.000Z"


def test_camel_case_json(make_card, now):
    card = make_card()
    payload = card.model_dump(mode="json", by_alias=True)
    assert payload["nextReview"] == "2024-03-15T14:00:00.000Z"
    assert payload["lastReviewed"] is None
    assert FlashCard.model_validate(payload) == card


def test_to_millis_truncates():
    value = datetime(2024, 1, 1, 10, 0, 0, 123999, tzinfo=timezone.utc)
    assert to_millis(value) == value.replace(microsecond=123000)
    assert to_millis(value.replace(tzinfo=None)) == value.replace(microsecond=123000)
