"""Ingest: research a topic across search templates, chunk, embed, store.

Search calls run strictly one after another with ``request_delay`` seconds
between them. A failing template is logged and skipped; ingestion only fails
when no template produced any chunk.
"""

import hashlib
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .backend import Chunk, ChunkType, check_batch_lengths
from .config import log, RAGSettings
from .dedup import dedupe_chunks
from .errors import NoDataFoundError
from .search_providers import parse_search_response
from .text import chunk_text, generate_topic_id

KNOWLEDGE_GRAPH_SOURCE = "Google Knowledge Graph"

_KEY_CHARS = re.compile(r"[^a-zA-Z0-9]")


@dataclass
class ResearchResult:
    chunks: list
    sources: list
    metadata: dict = field(default_factory=dict)


def render_query(template: str, topic: str) -> str:
    return template.replace("{topic}", topic)


def template_key(template: str) -> str:
    """Short key naming a template: its first word, or the second if the first is ``{topic}``."""
    parts = template.split()
    if not parts:
        return "general"
    key = parts[1] if parts[0] == "{topic}" and len(parts) > 1 else parts[0]
    return _KEY_CHARS.sub("", key).lower() or "general"


def search_type(template: str) -> str:
    t = template.lower()
    if "explained" in t:
        return "explanation"
    if "guide" in t:
        return "guide"
    if "definition" in t:
        return "definition"
    if "how" in t:
        return "howto"
    if "examples" in t:
        return "examples"
    if " vs " in f" {t} " or "alternatives" in t:
        return "comparison"
    if "news" in t or "update" in t:
        return "news"
    return "general"


def short_hash(text: str, length: int = 8) -> str:
    return hashlib.sha1((text or "").encode("utf-8")).hexdigest()[:length]


def process_search_results(raw, topic: str, topic_id: str, template: str,
                           chunk_size: int = 400, overlap: int = 50) -> list[Chunk]:
    """Turn one raw search payload into chunks.

    Organic results need both a title and a description. The optional
    knowledge graph (description + key/value facts) becomes separate
    ``KNOWLEDGE_GRAPH`` chunks.
    """
    serp = parse_search_response(raw)
    key = template_key(template)
    stype = search_type(template)
    chunks = []

    for index, result in enumerate(serp.organic):
        if not (result.title and result.description):
            continue
        content = f"{result.title}\n{result.description}"
        url_hash = short_hash(result.link or content)
        source = result.display_link or "unknown"
        for chunk_index, text in enumerate(chunk_text(content, chunk_size, overlap)):
            chunks.append(Chunk(
                id=f"{key}_organic_{index}_{chunk_index}_{url_hash}",
                content=text,
                source=source,
                url=result.link,
                type=ChunkType.SEARCH_RESULT,
                metadata={
                    "topic": topic,
                    "topic_id": topic_id,
                    "title": result.title,
                    "search_type": stype,
                    "rank": index + 1,
                    "chunk_index": chunk_index,
                },
            ))

    if serp.knowledge is not None:
        lines = serp.knowledge.lines()
        if lines:
            for chunk_index, text in enumerate(chunk_text("\n".join(lines), chunk_size, overlap)):
                chunks.append(Chunk(
                    id=f"{key}_knowledge_graph_{chunk_index}_{short_hash(text)}",
                    content=text,
                    source=KNOWLEDGE_GRAPH_SOURCE,
                    url="",
                    type=ChunkType.KNOWLEDGE_GRAPH,
                    metadata={
                        "topic": topic,
                        "topic_id": topic_id,
                        "title": "Knowledge Graph",
                        "search_type": "knowledge_graph",
                        "rank": 0,
                        "chunk_index": chunk_index,
                    },
                ))

    return chunks


def fetch_query(query: str, search_fn, cache=None, result_count: int = 10, ttl: float = None):
    """Cached search: return a fresh cache entry or call the provider and cache it."""
    if cache is not None:
        entry = cache.get(query)
        if entry is not None:
            log.info("loaded cached data for: %s", query)
            return entry.payload
    raw = search_fn(query, result_count)
    if cache is not None:
        try:
            cache.put(query, raw, ttl)
        except OSError as e:
            log.warning("failed to save cache for %r: %s", query, e)
    return raw


def _unique_ids(chunks: list[Chunk]) -> list[Chunk]:
    """Suffix repeated ids (``_2``, ``_3``...) so ids stay unique per topic."""
    seen = {}
    out = []
    for c in chunks:
        n = seen.get(c.id, 0) + 1
        seen[c.id] = n
        if n == 1:
            out.append(c)
        else:
            out.append(Chunk(id=f"{c.id}_{n}", content=c.content, source=c.source,
                             url=c.url, type=c.type, metadata=c.metadata))
    return out


def research_topic(topic: str, search_fn, cache=None, settings: RAGSettings = None,
                   sleep=time.sleep) -> ResearchResult:
    """Run every search template for ``topic`` and collect deduplicated chunks.

    Raises:
        NoDataFoundError: no template produced a single chunk.
    """
    settings = settings or RAGSettings()
    topic_id = generate_topic_id(topic)
    templates = list(settings.search_templates)
    all_chunks = []
    failed = []

    log.info("researching topic %r with %d search templates", topic, len(templates))
    for i, template in enumerate(templates):
        if i > 0 and settings.request_delay > 0:
            sleep(settings.request_delay)
        query = render_query(template, topic)
        try:
            raw = fetch_query(query, search_fn, cache,
                              result_count=settings.search_result_count, ttl=settings.cache_ttl)
            chunks = process_search_results(raw, topic, topic_id, template,
                                            settings.chunk_size, settings.chunk_overlap)
        except Exception as e:
            log.warning("search failed for template %r: %s", template, e)
            failed.append(template)
            continue
        log.debug("template %r → %d chunks", template, len(chunks))
        all_chunks.extend(chunks)

    collected = len(all_chunks)
    unique = _unique_ids(dedupe_chunks(all_chunks))
    sources = list(dict.fromkeys(c.source for c in unique))
    log.info("collected %d chunks (%d after dedup) from %d sources for %r",
             collected, len(unique), len(sources), topic)

    if not unique:
        raise NoDataFoundError(f"no data found for topic {topic!r} ({len(failed)}/{len(templates)} templates failed)")

    return ResearchResult(
        chunks=unique,
        sources=sources,
        metadata={
            "topic": topic,
            "topic_id": topic_id,
            "templates_used": len(templates),
            "templates_failed": len(failed),
            "total_chunks": len(unique),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


def chunk_metadata(chunk: Chunk, topic_id: str, stored_at: str) -> dict:
    meta = dict(chunk.metadata)
    meta.update({
        "topic_id": topic_id,
        "stored_at": stored_at,
        "chunk_id": chunk.id,
        "source": chunk.source,
        "url": chunk.url,
        "type": chunk.type.value,
    })
    return meta


def store_topic_chunks(backend, embedder, topic_id: str, chunks: list[Chunk],
                       settings: RAGSettings = None, sleep=time.sleep) -> int:
    """Embed chunks one at a time and write them as a single batch.

    Raises:
        ConsistencyError: ids / embeddings / documents / metadatas differ in
            length. The write is not attempted.
    """
    settings = settings or RAGSettings()
    backend.get_or_create_collection(topic_id)
    log.info("storing %d chunks for topic %s", len(chunks), topic_id)

    embeddings = []
    for i, chunk in enumerate(chunks):
        if i > 0 and settings.embed_delay > 0:
            sleep(settings.embed_delay)
        embeddings.append(embedder.embed(chunk.content))

    stored_at = datetime.now(timezone.utc).isoformat()
    ids = [f"{topic_id}_{c.id}" for c in chunks]
    documents = [c.content for c in chunks]
    metadatas = [chunk_metadata(c, topic_id, stored_at) for c in chunks]

    check_batch_lengths(ids, embeddings, documents, metadatas)
    return backend.upsert(topic_id, ids, embeddings, documents, metadatas)
