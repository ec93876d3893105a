"""Retrieval warnings: low similarity and topic mismatch.

Warnings are advisory. Each check swallows its own failures so a flaky
embedding call never blocks an answer.
"""

import math

from .config import log, RAGSettings


def cosine_similarity(a: list, b: list) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)


def similarity_warning(chunks: list, threshold: float = 0.4):
    """Warning text when every retrieved chunk is below ``threshold``, else None."""
    if not chunks:
        return None
    similarities = [1.0 - c.distance for c in chunks]
    best = max(similarities)
    if best >= threshold:
        return None
    return (
        f"Low similarity: the best matching passage scored {best:.2f} "
        f"(threshold {threshold:.2f}). The knowledge base may not cover this question."
    )


def topic_probe(topic_id: str) -> str:
    return "what is " + topic_id.replace("_", " ")


def topic_mismatch_warning(embedder, topic_id: str, question: str, threshold: float = 0.3):
    """Warning text when the question looks unrelated to the topic, else None."""
    topic_vec = embedder.embed(topic_probe(topic_id))
    question_vec = embedder.embed(question)
    score = cosine_similarity(topic_vec, question_vec)
    if score >= threshold:
        return None
    return (
        f"Topic mismatch: this question seems unrelated to \"{topic_id}\" "
        f"(similarity {score:.2f})."
    )


def analyze_retrieval(embedder, topic_id: str, question: str, chunks: list,
                      settings: RAGSettings = None) -> list[str]:
    settings = settings or RAGSettings()
    warnings = []

    if settings.enable_similarity_warning:
        try:
            w = similarity_warning(chunks, settings.low_similarity_threshold)
            if w:
                warnings.append(w)
        except Exception as e:
            log.debug("similarity check failed: %s", e)

    if settings.enable_topic_mismatch_warning:
        try:
            w = topic_mismatch_warning(embedder, topic_id, question, settings.topic_mismatch_threshold)
            if w:
                warnings.append(w)
        except Exception as e:
            log.debug("topic mismatch check failed: %s", e)

    for w in warnings:
        log.warning("%s", w)
    return warnings
