from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from models import CreateFlashCardInput, create_flashcard, get_engine, init_db
from storage import StorageService

NOW = datetime(2024, 3, 15, 14, 0, tzinfo=timezone.utc)


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def make_card():
    """Build a flashcard created at NOW, with any field overridden."""

    def _make(question="What is SM-2?", answer="A spaced repetition algorithm", **overrides):
        card = create_flashcard(CreateFlashCardInput(question=question, answer=answer), now=NOW)
        return card.model_copy(update=overrides)

    return _make


@pytest.fixture()
def engine(tmp_path):
    engine = get_engine(str(tmp_path / "flashcards.db"))
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def storage(engine):
    return StorageService(engine)


@pytest.fixture()
def client(tmp_path):
    from app import create_app

    app = create_app(tmp_path / "api.db")
    with TestClient(app) as test_client:
        yield test_client
