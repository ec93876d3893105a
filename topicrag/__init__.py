"""topicrag: research a topic on the web, then answer questions about it.

Architecture:
- Ingest: search templates → SERP results → word-window chunks → dedup →
          embeddings → one vector collection per topic
- Answer: question → nearest chunks → warnings + confidence → prompt → LLM
- VectorBackend: abstract per-topic store (ChromaDB default, in-memory for tests)
- OllamaClient: embeddings + chat generation
- ConversationState: active topic + capped history, one session per process

Boundaries:
- Collaborators (search provider, Ollama, vector store, cache) sit behind
  small interfaces and surface failures as UpstreamError
- topicrag handles: chunking, dedup, ranking, context packing, warnings,
                    confidence, conversation state, prompt selection
"""

# Re-export public API
from .backend import (
    VectorBackend, Chunk, ChunkType, RetrievedChunk, QueryHit, StoredRecord,
    check_batch_lengths,
)
from .backend_memory import InMemoryVectorBackend
from .backend_chroma import ChromaBackend
from .cache import SearchCache, CacheEntry
from .config import env, validate_config, log, RAGSettings
from .errors import (
    TopicRAGError, ValidationError, NoTopicError, NoDataFoundError,
    ConsistencyError, UpstreamError,
)
from .llm import OllamaClient, GenerationResult
from .search_providers import search, get_provider, parse_search_response, SerpResponse
from .text import generate_topic_id, validate_topic, validate_question, chunk_text
from .dedup import content_fingerprint, dedupe_chunks
from .ingest import research_topic, store_topic_chunks, ResearchResult
from .retrieval import retrieve_relevant_chunks, build_context, extract_sources
from .relevance import analyze_retrieval
from .confidence import confidence_score
from .session import ConversationState, Phase
from .answer import NO_INFO_ANSWER, synthesize_answer
from .pipeline import (
    RAGContext, IngestResult, AnswerResult, build_context_from_env, new_session,
    initialize, ingest_topic, set_active_topic, answer, clear_history,
    list_topics, topic_stats, delete_topic, knowledge_stats,
)

__all__ = [
    # caller-facing operations
    "RAGContext", "IngestResult", "AnswerResult", "build_context_from_env", "new_session",
    "initialize", "ingest_topic", "set_active_topic", "answer", "clear_history",
    "list_topics", "topic_stats", "delete_topic", "knowledge_stats",
    # storage
    "VectorBackend", "InMemoryVectorBackend", "ChromaBackend",
    "Chunk", "ChunkType", "RetrievedChunk", "QueryHit", "StoredRecord", "check_batch_lengths",
    # collaborators
    "OllamaClient", "GenerationResult", "SearchCache", "CacheEntry",
    "search", "get_provider", "parse_search_response", "SerpResponse",
    # core steps
    "generate_topic_id", "validate_topic", "validate_question", "chunk_text",
    "content_fingerprint", "dedupe_chunks",
    "research_topic", "store_topic_chunks", "ResearchResult",
    "retrieve_relevant_chunks", "build_context", "extract_sources",
    "analyze_retrieval", "confidence_score",
    "ConversationState", "Phase", "NO_INFO_ANSWER", "synthesize_answer",
    # errors
    "TopicRAGError", "ValidationError", "NoTopicError", "NoDataFoundError",
    "ConsistencyError", "UpstreamError",
    # config
    "env", "log", "validate_config", "RAGSettings",
]
