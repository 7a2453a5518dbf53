"""
Flashcard generation from plain text using pattern matching and heuristics.

No language model involved: definitions ("X is Y.", "X: Y"), capitalised
concepts and a few sentence templates (fill-in-the-blank, "why", numbers)
are turned into question/answer cards.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from models import CreateFlashCardInput, FlashCard, create_flashcard

logger = logging.getLogger(__name__)

MAX_DEFINITIONS = 10
MAX_CONCEPTS = 10
MAX_QUESTION_PAIRS = 15
MAX_SENTENCES = 20
MAX_FILL_IN_PER_SENTENCE = 2
MAX_FALLBACK_CARDS = 3

DEFINITION_RE = re.compile(r"([A-Z][a-z]+(?:\s+[a-z]+)*)\s+(is|are)\s+([^.!?]+[.!?])", re.IGNORECASE)
COLON_DEFINITION_RE = re.compile(r"([A-Z][a-z]+(?:\s+[a-z]+)*)\s*:\s*([^.!?\n]+)", re.IGNORECASE)
CONCEPT_RES = [
    re.compile(r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\s+(?:is|are)\s+(?:a|an|the)?\s*([^.!?]+)", re.IGNORECASE),
    re.compile(r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\s*:\s*([^.!?\n]+)", re.IGNORECASE),
]
CAPITALIZED_RE = re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b")
IMPORTANT_WORD_RE = re.compile(r"^[A-Z][a-z]+$|^\d+$|^[a-z]{4,}$")
NUMBER_RE = re.compile(r"\b\d{4}\b|\b\d+%\b|\b\d+\s*(million|billion|thousand)\b")
BECAUSE_RE = re.compile(r"because", re.IGNORECASE)
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

BLANK = "______"

COMMON_WORDS = frozenset({
    "The", "This", "That", "These", "Those", "And", "But", "Or", "For", "With",
    "From", "Into", "During", "Before", "After", "Above", "Below", "Between",
    "Through", "Upon", "Within", "Without", "About", "Many", "Some", "Most",
    "All", "Each", "Every", "Any", "Few", "More", "Less", "Other", "Another",
    "Such", "Only", "Own", "Same", "Different",
})


@dataclass
class GenerationOptions:
    max_cards: int = 20
    min_question_length: int = 10
    max_question_length: int = 200
    include_definitions: bool = True
    include_concepts: bool = True
    custom_tags: list[str] = field(default_factory=list)


@dataclass
class GenerationResult:
    success: bool
    flashcards: list[FlashCard] = field(default_factory=list)
    skipped_sentences: int = 0
    error: Optional[str] = None


@dataclass
class Definition:
    term: str
    definition: str


@dataclass
class QuestionPair:
    question: str
    answer: str


def preprocess_text(text: str) -> str:
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"([.!?])\s*([A-Z])", r"\1 \2", text)
    return text.strip()


def extract_sentences(text: str) -> list[str]:
    sentences = [s.strip() for s in SENTENCE_SPLIT_RE.split(text)]
    return [s for s in sentences if 10 < len(s) < 300][:MAX_SENTENCES]


def _acceptable_definition(term: str, definition: str) -> bool:
    return 2 < len(term) < 50 and 10 < len(definition) < 300


def extract_definitions(text: str) -> list[Definition]:
    definitions = []
    for match in DEFINITION_RE.finditer(text):
        term, definition = match.group(1).strip(), match.group(3).strip()
        if _acceptable_definition(term, definition):
            definitions.append(Definition(term, definition))
    for match in COLON_DEFINITION_RE.finditer(text):
        term, definition = match.group(1).strip(), match.group(2).strip()
        if _acceptable_definition(term, definition):
            definitions.append(Definition(term, definition))
    return definitions[:MAX_DEFINITIONS]


def extract_key_concepts(text: str) -> list[str]:
    concepts: dict[str, None] = {}  # insertion-ordered set

    for pattern in CONCEPT_RES:
        for match in pattern.finditer(text):
            concept = match.group(1).strip()
            if 2 < len(concept) < 50:
                concepts.setdefault(concept)

    for match in CAPITALIZED_RE.finditer(text):
        concept = match.group(0).strip()
        if 3 < len(concept) < 40 and concept not in COMMON_WORDS:
            concepts.setdefault(concept)

    return list(concepts)[:MAX_CONCEPTS]


def _fill_in_the_blank(sentence: str) -> list[QuestionPair]:
    pairs = []
    words = sentence.split()
    for i, raw in enumerate(words):
        word = re.sub(r"[^\w]", "", raw)
        if len(word) > 3 and IMPORTANT_WORD_RE.match(word):
            blanked = " ".join(BLANK if j == i else w for j, w in enumerate(words))
            pairs.append(QuestionPair(f"Fill in the blank: {blanked}", word))
            if len(pairs) >= MAX_FILL_IN_PER_SENTENCE:
                break
    return pairs


def _context_questions(sentence: str) -> list[QuestionPair]:
    pairs = []

    parts = BECAUSE_RE.split(sentence)
    if len(parts) == 2:
        pairs.append(QuestionPair(
            f"Why {parts[0].strip().lower()}?",
            f"Because {parts[1].strip()}",
        ))

    number = NUMBER_RE.search(sentence)
    if number:
        pairs.append(QuestionPair(
            f"What is the significance of {number.group(0)} in this context?",
            sentence,
        ))

    return pairs


def generate_questions_from_sentences(sentences: list[str]) -> list[QuestionPair]:
    pairs = []
    for sentence in sentences:
        trimmed = sentence.strip()
        if len(trimmed) < 20 or len(trimmed) > 200:
            continue
        pairs.extend(_fill_in_the_blank(trimmed))
        pairs.extend(_context_questions(trimmed))
    return pairs[:MAX_QUESTION_PAIRS]


class FlashcardGenerator:
    """Builds new, immediately-due flashcards from extracted text."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now

    def _card(self, question: str, answer: str, tags: list[str]) -> FlashCard:
        return create_flashcard(
            CreateFlashCardInput(question=question, answer=answer, tags=tags), now=self.now
        )

    def generate_flashcards(self, text: str, options: Optional[GenerationOptions] = None) -> GenerationResult:
        opts = options or GenerationOptions()
        cleaned = preprocess_text(text)
        if not cleaned:
            return GenerationResult(success=False, error="No content to process")

        flashcards: list[FlashCard] = []
        skipped = 0

        if opts.include_definitions:
            for d in extract_definitions(cleaned)[: opts.max_cards // 2]:
                flashcards.append(self._card(
                    f"What is {d.term}?", d.definition,
                    ["definition", "generated", *opts.custom_tags],
                ))

        if opts.include_concepts:
            remaining = opts.max_cards - len(flashcards)
            for concept in extract_key_concepts(cleaned)[: remaining // 2]:
                flashcards.append(self._card(
                    f"Explain the concept of {concept}",
                    f"{concept} is a key concept mentioned in the text. "
                    "Please review the original content for detailed information.",
                    ["concept", "generated", *opts.custom_tags],
                ))

        remaining = max(opts.max_cards - len(flashcards), 0)
        pairs = generate_questions_from_sentences(extract_sentences(cleaned))
        for pair in pairs[:remaining]:
            if opts.min_question_length <= len(pair.question) <= opts.max_question_length:
                flashcards.append(self._card(
                    pair.question, pair.answer,
                    ["generated", "content-based", *opts.custom_tags],
                ))
            else:
                skipped += 1

        if not flashcards:
            flashcards = self._fallback_flashcards(cleaned, opts)

        logger.info("Generated %d flashcards (%d sentences skipped)", len(flashcards), skipped)
        return GenerationResult(success=True, flashcards=flashcards, skipped_sentences=skipped)

    def _fallback_flashcards(self, text: str, opts: GenerationOptions) -> list[FlashCard]:
        sentences = extract_sentences(text)
        cards = []
        if sentences:
            cards.append(self._card(
                "What is the main topic of this content?", sentences[0],
                ["comprehension", "generated", *opts.custom_tags],
            ))
        if len(sentences) > 2:
            cards.append(self._card(
                "What is a key point mentioned in this content?", sentences[len(sentences) // 2],
                ["key-point", "generated", *opts.custom_tags],
            ))
        return cards[:MAX_FALLBACK_CARDS]
