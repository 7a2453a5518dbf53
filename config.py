"""
Runtime settings for the flashcard service.
Values are read from FLASHCARDS_* environment variables.
"""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_path: Path = Path(__file__).parent / "flashcards.db"
    review_limit: int = 20
    max_generated_cards: int = 20
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = {"env_prefix": "FLASHCARDS_"}


settings = Settings()
