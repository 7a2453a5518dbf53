"""
FastAPI backend for the flashcard study app.
Cards are scheduled with SM-2 (spaced_rep.py) and stored in SQLite (storage.py).
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from config import settings
from file_processing import process_file
from flashcard_generation import FlashcardGenerator, GenerationOptions
from models import (
    CardReview, Content, ContentType, CreateContentInput, CreateFlashCardInput, ExportData,
    FlashCard, GenerateRequest, GenerateResponse, ReviewRequest, SessionStats, StudySession,
    UploadResponse, UrgencyResponse, create_content, create_flashcard, get_engine, init_db,
    utcnow,
)
from spaced_rep import (
    InvalidQuality, apply_review, get_cards_by_urgency, get_due_cards_count,
)
from storage import StorageError, StorageService
from study_session import calculate_session_stats, create_study_session, update_study_session

logger = logging.getLogger(__name__)

MATURE_INTERVAL_DAYS = 21


def get_storage(request: Request) -> StorageService:
    return request.app.state.storage


def _get_card_or_404(storage: StorageService, card_id: str) -> FlashCard:
    card = storage.get_flashcard(card_id)
    if card is None:
        raise HTTPException(status_code=404, detail="Card not found")
    return card


def _get_session_or_404(storage: StorageService, session_id: str) -> StudySession:
    session = storage.get_study_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Study session not found")
    return session


def create_app(db_path: Optional[Path] = None) -> FastAPI:
    logging.basicConfig(level=settings.log_level)
    db_path = db_path or settings.db_path
    engine = get_engine(str(db_path))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        logger.info("Database initialized at %s", db_path)
        yield
        engine.dispose()

    app = FastAPI(
        title="Flashcard Study API",
        description="Flashcards generated from your documents, scheduled with SM-2",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.storage = StorageService(engine)

    @app.exception_handler(InvalidQuality)
    async def invalid_quality_handler(request: Request, exc: InvalidQuality):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    # --- Routes ---

    @app.get("/")
    async def root():
        return {"message": "Flashcard Study API. Visit /docs for the API reference."}

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    # Cards

    @app.get("/api/cards", response_model=list[FlashCard])
    async def list_cards(tag: Optional[str] = None, storage: StorageService = Depends(get_storage)):
        """List all flashcards, newest first, optionally filtered by tag."""
        if tag:
            return storage.get_flashcards_by_tag(tag)
        return storage.get_all_flashcards()

    @app.post("/api/cards", response_model=FlashCard)
    async def create_card(card: CreateFlashCardInput, storage: StorageService = Depends(get_storage)):
        """Create a new flashcard. It is due immediately."""
        db_card = create_flashcard(card)
        storage.save_flashcard(db_card)
        logger.info("Created flashcard %s", db_card.id)
        return db_card

    @app.get("/api/cards/search", response_model=list[FlashCard])
    async def search_cards(q: str, storage: StorageService = Depends(get_storage)):
        return storage.search_flashcards(q)

    @app.get("/api/cards/{card_id}", response_model=FlashCard)
    async def get_card(card_id: str, storage: StorageService = Depends(get_storage)):
        return _get_card_or_404(storage, card_id)

    @app.delete("/api/cards/{card_id}")
    async def delete_card(card_id: str, storage: StorageService = Depends(get_storage)):
        if not storage.delete_flashcard(card_id):
            raise HTTPException(status_code=404, detail="Card not found")
        return {"message": "Card deleted"}

    # Review

    @app.get("/api/review", response_model=list[FlashCard])
    async def get_review_cards(
        limit: Optional[int] = Query(None, ge=1),
        as_of: Optional[datetime] = None,
        storage: StorageService = Depends(get_storage),
    ):
        """Cards due for review, most overdue first."""
        return storage.get_due_flashcards(as_of, limit=limit if limit is not None else settings.review_limit)

    @app.get("/api/review/urgency", response_model=UrgencyResponse)
    async def get_review_urgency(as_of: Optional[datetime] = None, storage: StorageService = Depends(get_storage)):
        buckets = get_cards_by_urgency(storage.get_all_flashcards(), as_of)
        return UrgencyResponse(
            overdue=buckets.overdue,
            due_today=buckets.due_today,
            due_tomorrow=buckets.due_tomorrow,
            upcoming=buckets.upcoming,
        )

    @app.post("/api/review/{card_id}", response_model=FlashCard)
    async def review_card(card_id: str, review: ReviewRequest, storage: StorageService = Depends(get_storage)):
        """Submit a review result for a card, optionally recording it in a study session."""
        card = _get_card_or_404(storage, card_id)
        session = _get_session_or_404(storage, review.session_id) if review.session_id else None

        reviewed_at = utcnow()
        updated = apply_review(card, review.quality, reviewed_at)

        if session is not None:
            card_review = CardReview(
                card_id=card_id,
                quality=review.quality,
                response_time=review.response_time,
                timestamp=reviewed_at,
            )
            session = update_study_session(session, card_review)
        storage.save_review(updated, session)

        logger.info(
            "Reviewed card %s with quality %d: interval %d days, ease %.2f",
            card_id, review.quality, updated.interval, updated.ease_factor,
        )
        return updated

    @app.get("/api/stats")
    async def get_stats(storage: StorageService = Depends(get_storage)):
        """Get learning statistics."""
        cards = storage.get_all_flashcards()
        return {
            "total": len(cards),
            "due": get_due_cards_count(cards),
            "new": sum(1 for c in cards if c.repetitions == 0),
            "learning": sum(1 for c in cards if c.repetitions > 0 and c.interval < MATURE_INTERVAL_DAYS),
            "mature": sum(1 for c in cards if c.interval >= MATURE_INTERVAL_DAYS),
        }

    # Generation

    @app.post("/api/upload", response_model=UploadResponse)
    async def upload_document(
        file: UploadFile,
        max_cards: Optional[int] = None,
        storage: StorageService = Depends(get_storage),
    ):
        """Extract text from a document, generate flashcards and link them to a content item."""
        filename = file.filename or ""
        data = await file.read()
        processed = await process_file(filename, data, file.content_type or "")
        if not processed.success:
            raise HTTPException(status_code=400, detail=processed.error)

        options = GenerationOptions(max_cards=max_cards or settings.max_generated_cards)
        generated = FlashcardGenerator().generate_flashcards(processed.extracted_text, options)
        if not generated.success:
            raise HTTPException(status_code=400, detail=generated.error)

        metadata = {
            "wordCount": processed.metadata.word_count,
            "characterCount": processed.metadata.character_count,
            "estimatedReadingTime": processed.metadata.estimated_reading_time,
            "fileSize": len(data),
        }
        content = create_content(CreateContentInput(
            title=Path(filename).stem or filename,
            type=ContentType.DOCUMENT,
            file_path=filename,
            metadata=metadata,
        ))
        cards = [c.model_copy(update={"content_source_id": content.id}) for c in generated.flashcards]
        content = content.model_copy(update={"associated_card_ids": [c.id for c in cards]})

        storage.save_content(content)
        for card in cards:
            storage.save_flashcard(card)

        logger.info("Upload %s produced %d flashcards", filename, len(cards))
        return UploadResponse(
            content=content,
            flashcards=cards,
            skipped_sentences=generated.skipped_sentences,
            metadata=metadata,
        )

    @app.post("/api/generate", response_model=GenerateResponse)
    async def generate_cards(request: GenerateRequest, storage: StorageService = Depends(get_storage)):
        """Generate flashcards from posted text, optionally saving them."""
        options = GenerationOptions(
            max_cards=request.max_cards or settings.max_generated_cards,
            custom_tags=request.tags,
        )
        generated = FlashcardGenerator().generate_flashcards(request.text, options)
        if not generated.success:
            raise HTTPException(status_code=400, detail=generated.error)
        if request.save:
            for card in generated.flashcards:
                storage.save_flashcard(card)
        return GenerateResponse(flashcards=generated.flashcards, skipped_sentences=generated.skipped_sentences)

    # Content

    @app.get("/api/content", response_model=list[Content])
    async def list_content(storage: StorageService = Depends(get_storage)):
        return storage.get_all_content()

    @app.post("/api/content", response_model=Content)
    async def add_content(data: CreateContentInput, storage: StorageService = Depends(get_storage)):
        content = create_content(data)
        storage.save_content(content)
        return content

    @app.get("/api/content/{content_id}", response_model=Content)
    async def get_content(content_id: str, storage: StorageService = Depends(get_storage)):
        content = storage.get_content(content_id)
        if content is None:
            raise HTTPException(status_code=404, detail="Content not found")
        return content

    @app.delete("/api/content/{content_id}")
    async def delete_content(content_id: str, storage: StorageService = Depends(get_storage)):
        if not storage.delete_content(content_id):
            raise HTTPException(status_code=404, detail="Content not found")
        return {"message": "Content deleted"}

    # Study sessions

    @app.get("/api/sessions", response_model=list[StudySession])
    async def list_sessions(storage: StorageService = Depends(get_storage)):
        return storage.get_all_study_sessions()

    @app.post("/api/sessions", response_model=StudySession)
    async def start_session(storage: StorageService = Depends(get_storage)):
        session = create_study_session()
        storage.save_study_session(session)
        return session

    @app.get("/api/sessions/{session_id}", response_model=StudySession)
    async def get_session(session_id: str, storage: StorageService = Depends(get_storage)):
        return _get_session_or_404(storage, session_id)

    @app.post("/api/sessions/{session_id}/complete", response_model=StudySession)
    async def complete_session(session_id: str, storage: StorageService = Depends(get_storage)):
        session = update_study_session(_get_session_or_404(storage, session_id), end_time=utcnow())
        storage.save_study_session(session)
        return session

    @app.get("/api/sessions/{session_id}/stats", response_model=SessionStats)
    async def get_session_stats(session_id: str, storage: StorageService = Depends(get_storage)):
        return calculate_session_stats(_get_session_or_404(storage, session_id))

    # Data management

    @app.get("/api/export", response_model=ExportData)
    async def export_data(storage: StorageService = Depends(get_storage)):
        return storage.export_all_data()

    @app.post("/api/import")
    async def import_data(data: ExportData, storage: StorageService = Depends(get_storage)):
        """Replace all stored data with an export."""
        storage.import_data(data)
        return {
            "flashCards": len(data.flash_cards),
            "content": len(data.content),
            "studySessions": len(data.study_sessions),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
