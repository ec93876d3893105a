"""Text helpers: topic ids, input validation, word-window chunking."""

import re

from .config import TOPIC_MAX_LENGTH, TOPIC_ID_MAX_LEN, MAX_QUESTION_LENGTH
from .errors import ValidationError

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def validate_topic(topic) -> str:
    """Return the trimmed topic name or raise ValidationError."""
    if not isinstance(topic, str):
        raise ValidationError("topic must be a string")
    cleaned = topic.strip()
    if not cleaned:
        raise ValidationError("topic must not be empty")
    if len(cleaned) > TOPIC_MAX_LENGTH:
        raise ValidationError(f"topic must be at most {TOPIC_MAX_LENGTH} characters (got {len(cleaned)})")
    return cleaned


def generate_topic_id(topic: str) -> str:
    """Deterministic slug: lowercase, punctuation stripped, spaces → underscores.

    Distinct names can collide ("C++" and "C" both become "c").
    """
    cleaned = validate_topic(topic)
    slug = _NON_ALNUM.sub("", cleaned.lower())
    slug = _WHITESPACE.sub("_", slug.strip())
    slug = slug[:TOPIC_ID_MAX_LEN].strip("_")
    if not slug:
        raise ValidationError(f"topic {topic!r} has no letters or digits")
    return slug


def sanitize_input(text: str) -> str:
    return text.strip().replace("<", "").replace(">", "")


def validate_question(question) -> str:
    if not isinstance(question, str):
        raise ValidationError("question must be a string")
    cleaned = sanitize_input(question)
    if not cleaned:
        raise ValidationError("question cannot be empty")
    if len(cleaned) > MAX_QUESTION_LENGTH:
        raise ValidationError(f"question must be at most {MAX_QUESTION_LENGTH} characters")
    return cleaned


class WordWindows:
    """Overlapping word windows over a text.

    Lazy and restartable: every ``iter()`` walks the text again. Window ``i``
    covers ``words[i*step : i*step + chunk_size]`` with
    ``step = chunk_size - overlap``.
    """

    def __init__(self, text: str, chunk_size: int = 400, overlap: int = 50):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must satisfy 0 <= overlap < chunk_size")
        self.text = text or ""
        self.chunk_size = chunk_size
        self.overlap = overlap

    def __iter__(self):
        words = self.text.split()
        step = self.chunk_size - self.overlap
        for start in range(0, len(words), step):
            chunk = " ".join(words[start:start + self.chunk_size]).strip()
            if chunk:
                yield chunk

    def __repr__(self):
        return f"WordWindows(chunk_size={self.chunk_size}, overlap={self.overlap}, chars={len(self.text)})"


def chunk_text(text: str, chunk_size: int = 400, overlap: int = 50) -> WordWindows:
    return WordWindows(text, chunk_size, overlap)
