"""Retrieval: nearest chunks for a question, ranked and packed into a context.

Public functions:
- retrieve_relevant_chunks(): embed + query + dedup, never raises
- sort_chunks() / select_context_chunks() / build_context(): context packing
- extract_sources(): distinct, displayable sources
"""

from .backend import ChunkType, RetrievedChunk
from .config import log
from .dedup import dedupe_chunks


def retrieve_relevant_chunks(backend, embedder, topic_id: str, question: str,
                             k: int = 8) -> list[RetrievedChunk]:
    """Top-``k`` chunks for ``question`` in the topic's collection.

    Any failure (embedding, missing collection, backend error) is logged and
    degrades to an empty list.
    """
    try:
        embedding = embedder.embed(question)
        hits = backend.query(topic_id, embedding, k)
    except Exception as e:
        log.error("failed to retrieve chunks for topic %s: %s", topic_id, e)
        return []
    chunks = dedupe_chunks([h.to_chunk() for h in hits])
    log.info("retrieved %d relevant chunks (%d hits)", len(chunks), len(hits))
    return chunks


def sort_chunks(chunks: list) -> list:
    """Knowledge-graph chunks first, then by ascending distance (stable)."""
    return sorted(chunks, key=lambda c: (c.type != ChunkType.KNOWLEDGE_GRAPH, c.distance))


def format_block(chunk) -> str:
    return f"Source: {chunk.source}\n{chunk.content}\n\n"


def select_context_chunks(chunks: list, max_length: int) -> list:
    """Leading run of sorted chunks whose formatted blocks fit in ``max_length``.

    Stops at the first block that would overflow; nothing is truncated.
    """
    selected = []
    total = 0
    for chunk in sort_chunks(chunks):
        block = format_block(chunk)
        if total + len(block) > max_length:
            break
        selected.append(chunk)
        total += len(block)
    return selected


def build_context(chunks: list, max_length: int = 6000) -> str:
    return "".join(format_block(c) for c in select_context_chunks(chunks, max_length)).strip()


def extract_sources(chunks: list) -> list[str]:
    return list(dict.fromkeys(c.source for c in chunks if c.source and c.source != "unknown"))
