"""Caller-facing operations: ingest a topic, answer questions, manage topics.

Every operation takes a ``RAGContext`` bundling the collaborators, so tests
can swap in ``InMemoryVectorBackend`` and fake embedders / generators.
"""

import json
import os
import time
from collections import Counter
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Callable, Optional

from .answer import synthesize_answer
from .backend import VectorBackend
from .cache import SearchCache
from .confidence import confidence_score
from .config import log, validate_config, RAGSettings
from .errors import NoTopicError, TopicRAGError, UpstreamError
from .ingest import research_topic, store_topic_chunks
from .metrics import Metrics
from .relevance import analyze_retrieval
from .retrieval import extract_sources, retrieve_relevant_chunks
from .session import (
    ConversationState, record_turn, require_topic, reset, set_topic,
    clear_history as _clear_session_history,
)
from .text import generate_topic_id, validate_question, validate_topic


@dataclass
class RAGContext:
    """Collaborators for one process.

    ``llm`` must provide ``embed(text)`` and ``generate(system, prompt, ...)``;
    ``initialize`` and ``knowledge_stats`` also use ``check_connection``,
    ``pull_model`` and ``model_info`` (see ``OllamaClient``).
    """

    backend: VectorBackend
    llm: object
    search_fn: Callable
    cache: Optional[SearchCache] = None
    settings: RAGSettings = field(default_factory=RAGSettings)
    sleep: Callable = time.sleep


@dataclass
class IngestResult:
    topic_id: str
    topic_name: str
    created: bool
    total_chunks: int
    sources: list = field(default_factory=list)


@dataclass
class AnswerResult:
    answer: str
    sources: list
    chunks_used: int
    confidence: int
    topic: str
    warnings: list = field(default_factory=list)
    context_used: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def new_session(settings: RAGSettings = None) -> ConversationState:
    settings = settings or RAGSettings()
    return ConversationState(max_history=settings.max_history_length)


def build_context_from_env() -> RAGContext:
    """Wire ChromaDB, Ollama, the file cache and the configured search provider."""
    from .backend_chroma import ChromaBackend
    from .llm import OllamaClient
    from .search_providers import get_provider

    validate_config()
    settings = RAGSettings.from_env()
    return RAGContext(
        backend=ChromaBackend(),
        llm=OllamaClient(),
        search_fn=get_provider(),
        cache=SearchCache(default_ttl=settings.cache_ttl),
        settings=settings,
    )


# ── Start-up ──


def initialize(ctx: RAGContext) -> dict:
    """Sweep the cache, make sure Ollama has both models, check the store.

    Raises:
        UpstreamError: Ollama unreachable, a model pull failed, or the
            vector store is unhealthy.
    """
    report = {"cache_removed": 0, "models_pulled": [], "backend": ctx.backend.name}

    if ctx.cache is not None:
        report["cache_removed"] = ctx.cache.sweep_expired()

    status = ctx.llm.check_connection()
    if not status.get("connected"):
        raise UpstreamError(f"cannot connect to Ollama: {status.get('error', 'unknown error')}")
    for model in status.get("missing_models", []):
        ctx.llm.pull_model(model)
        report["models_pulled"].append(model)
        log.info("pulled missing model %s", model)

    if not ctx.backend.health():
        raise UpstreamError(f"{ctx.backend.name} vector store is not healthy")

    log.info("initialized: backend=%s, cache_removed=%d, models_pulled=%s",
             ctx.backend.name, report["cache_removed"], report["models_pulled"])
    return report


# ── Topics ──


def _stored_sources(records: list) -> list:
    return list(dict.fromkeys(
        r.metadata.get("source") for r in records
        if r.metadata.get("source") and r.metadata.get("source") != "unknown"
    ))


def ingest_topic(ctx: RAGContext, state: ConversationState, name: str) -> IngestResult:
    """Research ``name`` unless its collection already holds chunks, then make it active.

    Raises:
        ValidationError: bad topic name.
        NoDataFoundError: every search template came back empty.
        ConsistencyError / UpstreamError: storing the chunks failed.
    """
    name = validate_topic(name)
    topic_id = generate_topic_id(name)
    m = Metrics("ingest", ctx.settings.metrics_path)
    m.flag("topic_id", topic_id)

    existing = ctx.backend.get_all(topic_id) if ctx.backend.collection_exists(topic_id) else []
    if existing:
        log.info("topic %s already in knowledge base (%d chunks), skipping research", topic_id, len(existing))
        m.flag("created", False)
        result = IngestResult(topic_id=topic_id, topic_name=name, created=False,
                              total_chunks=len(existing), sources=_stored_sources(existing))
    else:
        with m.timed("research") as extra:
            research = research_topic(name, ctx.search_fn, ctx.cache, ctx.settings, sleep=ctx.sleep)
            extra.update(chunks=len(research.chunks), failed=research.metadata.get("templates_failed", 0))
        with m.timed("store") as extra:
            stored = store_topic_chunks(ctx.backend, ctx.llm, topic_id, research.chunks,
                                        ctx.settings, sleep=ctx.sleep)
            extra["stored"] = stored
        m.flag("created", True)
        result = IngestResult(topic_id=topic_id, topic_name=name, created=True,
                              total_chunks=stored, sources=research.sources)

    set_topic(state, ctx.backend, topic_id, name)
    m.score("total_chunks", result.total_chunks)
    m.finalize()
    log.info("topic ready: %s (%d chunks, %d sources)", topic_id, result.total_chunks, len(result.sources))
    return result


def set_active_topic(ctx: RAGContext, state: ConversationState, topic: str) -> str:
    """Switch to an existing topic given its id or display name."""
    topic_id = topic if ctx.backend.collection_exists(topic) else generate_topic_id(topic)
    set_topic(state, ctx.backend, topic_id, None if topic_id == topic else topic)
    return topic_id


def list_topics(ctx: RAGContext) -> list[str]:
    return ctx.backend.list_topics()


def topic_stats(ctx: RAGContext, topic_id: str) -> dict:
    if not ctx.backend.collection_exists(topic_id):
        raise NoTopicError(f'Topic "{topic_id}" not found in knowledge base')
    records = ctx.backend.get_all(topic_id)
    return {
        "topic_id": topic_id,
        "total_chunks": len(records),
        "chunk_types": dict(Counter(r.metadata.get("type", "unknown") for r in records)),
        "sources": dict(Counter(r.metadata.get("source", "unknown") for r in records)),
        "search_types": dict(Counter(r.metadata.get("search_type", "unknown") for r in records)),
        "collection_name": ctx.backend.collection_name(topic_id),
    }


def delete_topic(ctx: RAGContext, state: ConversationState, topic_id: str) -> bool:
    """Forget a topic. Resets the session if it was the active one."""
    deleted = ctx.backend.delete_collection(topic_id)
    if deleted and state.topic_id == topic_id:
        reset(state)
    return deleted


def knowledge_stats(ctx: RAGContext) -> dict:
    topics = list_topics(ctx)
    total = 0
    for topic_id in topics:
        try:
            total += len(ctx.backend.get_all(topic_id))
        except Exception as e:
            log.warning("could not count chunks for %s: %s", topic_id, e)
    s = ctx.settings
    return {
        "topics": len(topics),
        "total_chunks": total,
        "backend": ctx.backend.name,
        "models": ctx.llm.model_info(),
        "configuration": {
            "chunk_size": s.chunk_size,
            "chunk_overlap": s.chunk_overlap,
            "max_retrieved_chunks": s.max_retrieved_chunks,
            "max_context_length": s.max_context_length,
            "allow_model_knowledge": s.allow_model_knowledge,
            "search_templates": len(s.search_templates),
        },
    }


# ── Questions ──


def clear_history(state: ConversationState) -> None:
    _clear_session_history(state)


def _context_preview(chunks: list) -> list[dict]:
    return [
        {"content": c.content[:100] + "...", "source": c.source, "type": c.type.value}
        for c in chunks
    ]


def answer(ctx: RAGContext, state: ConversationState, question: str) -> AnswerResult:
    """Answer ``question`` about the active topic.

    Raises:
        ValidationError: empty or oversized question.
        NoTopicError: no active topic.
        UpstreamError: generation failed. History is left untouched.
    """
    question = validate_question(question)
    topic_id = require_topic(state)
    s = ctx.settings
    m = Metrics("answer", s.metrics_path)

    chunks = retrieve_relevant_chunks(ctx.backend, ctx.llm, topic_id, question, s.max_retrieved_chunks)
    m.step("retrieve", True, {"chunks": len(chunks)})

    warnings = analyze_retrieval(ctx.llm, topic_id, question, chunks, s)
    confidence = confidence_score(chunks, s.trusted_sources)
    m.step("analyze", True, {"warnings": len(warnings)})
    m.score("confidence", confidence)

    try:
        draft = synthesize_answer(ctx.llm, question, chunks, state,
                                  allow_model_knowledge=s.allow_model_knowledge,
                                  max_context_length=s.max_context_length)
    except TopicRAGError:
        m.step("generate", False)
        m.finalize()
        raise
    except Exception as e:
        m.step("generate", False, {"error": str(e)})
        m.finalize()
        raise UpstreamError(f"answer generation failed: {e}") from e
    m.step("generate", True, {"called": draft.generated})

    record_turn(state, question, draft.text)

    result = AnswerResult(
        answer=draft.text,
        sources=extract_sources(chunks),
        chunks_used=len(chunks),
        confidence=confidence,
        topic=topic_id,
        warnings=warnings,
        context_used=_context_preview(chunks),
    )
    report = m.finalize()
    _log_query(s.query_log_path, question, result, report["duration_sec"])
    return result


def _log_query(path: str, question: str, result: AnswerResult, duration_sec: float) -> None:
    """Append one line to the query log (append mode, failures never raise)."""
    if not path:
        return
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "topic": result.topic,
            "question": question,
            "chunks_used": result.chunks_used,
            "confidence": result.confidence,
            "sources": result.sources,
            "warnings": result.warnings,
            "duration_sec": duration_sec,
        }
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    except Exception as e:
        log.warning("query log write failed: %s", e)
