"""Chunk types and the vector storage backend interface.

topicrag needs a per-topic vector store that can:
  - create / check / list / delete one collection per topic
  - batch-write embedded chunks
  - answer nearest-neighbour queries by cosine distance
  - dump everything stored for a topic (stats)

ChromaDB is the default backend; ``InMemoryVectorBackend`` covers tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional

from .errors import ConsistencyError


class ChunkType(str, Enum):
    """Where a chunk came from. Knowledge-graph chunks are ranked first."""

    SEARCH_RESULT = "search_result"
    KNOWLEDGE_GRAPH = "knowledge_graph"

    @classmethod
    def parse(cls, value) -> "ChunkType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.SEARCH_RESULT


@dataclass(frozen=True)
class Chunk:
    """A unit of retrievable text plus provenance.

    Attributes:
        id: Unique within a topic.
        content: Passage text that gets embedded.
        source: Display domain, ``"Google Knowledge Graph"`` or ``"unknown"``.
        url: Link of the originating result (empty for knowledge graph).
        type: :class:`ChunkType`.
        metadata: Flat dict (title, search_type, rank, chunk_index, ...).
    """

    id: str
    content: str
    source: str = "unknown"
    url: str = ""
    type: ChunkType = ChunkType.SEARCH_RESULT
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["type"] = self.type.value
        return d


@dataclass(frozen=True)
class RetrievedChunk(Chunk):
    """A chunk returned by a query, annotated with its cosine distance."""

    distance: float = 0.0

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


@dataclass
class QueryHit:
    """Raw nearest-neighbour hit as returned by a backend."""

    id: str
    document: str
    metadata: dict = field(default_factory=dict)
    distance: float = 0.0

    def to_chunk(self) -> RetrievedChunk:
        meta = dict(self.metadata or {})
        return RetrievedChunk(
            id=meta.get("chunk_id", self.id),
            content=self.document or "",
            source=meta.get("source") or "unknown",
            url=meta.get("url", ""),
            type=ChunkType.parse(meta.get("type")),
            metadata=meta,
            distance=float(self.distance),
        )


@dataclass
class StoredRecord:
    id: str
    document: str
    metadata: dict = field(default_factory=dict)


def check_batch_lengths(ids: list, embeddings: list, documents: list, metadatas: list) -> None:
    """Raise ConsistencyError unless all four arrays have the same length."""
    n = len(ids)
    if len(embeddings) != n or len(documents) != n or len(metadatas) != n:
        raise ConsistencyError(
            f"Length mismatch: ids={len(ids)}, embeddings={len(embeddings)}, "
            f"documents={len(documents)}, metadatas={len(metadatas)}"
        )


class VectorBackend(ABC):
    """Abstract interface for per-topic vector stores.

    Every topic maps to one collection named
    ``{collection_prefix}_{topic_id}``. Implementations must call
    :func:`check_batch_lengths` before writing anything in :meth:`upsert`.
    """

    def __init__(self, collection_prefix: str = "topic_knowledge"):
        self.collection_prefix = collection_prefix

    def collection_name(self, topic_id: str) -> str:
        return f"{self.collection_prefix}_{topic_id}"

    def topic_from_collection(self, name: str) -> Optional[str]:
        """Inverse of :meth:`collection_name`; ``None`` for foreign collections."""
        prefix = self.collection_prefix + "_"
        if isinstance(name, str) and name.startswith(prefix):
            return name[len(prefix):]
        return None

    # ── Required ──

    @abstractmethod
    def health(self) -> bool:
        """Check if the store is reachable."""
        ...

    @abstractmethod
    def get_or_create_collection(self, topic_id: str) -> str:
        """Ensure the topic's collection exists.

        Returns:
            The collection name.
        """
        ...

    @abstractmethod
    def collection_exists(self, topic_id: str) -> bool:
        ...

    @abstractmethod
    def upsert(self, topic_id: str, ids: list, embeddings: list,
               documents: list, metadatas: list) -> int:
        """Write one batch of embedded chunks.

        Raises:
            ConsistencyError: the four arrays differ in length. Nothing is
                written in that case.

        Returns:
            Number of records written.
        """
        ...

    @abstractmethod
    def query(self, topic_id: str, embedding: list, k: int) -> list[QueryHit]:
        """Nearest neighbours by cosine distance, closest first."""
        ...

    @abstractmethod
    def list_collections(self) -> list[str]:
        """Raw collection names (all prefixes)."""
        ...

    @abstractmethod
    def delete_collection(self, topic_id: str) -> bool:
        ...

    @abstractmethod
    def get_all(self, topic_id: str) -> list[StoredRecord]:
        ...

    # ── Derived ──

    def list_topics(self) -> list[str]:
        topics = []
        for name in self.list_collections():
            topic_id = self.topic_from_collection(name)
            if topic_id:
                topics.append(topic_id)
        return topics

    @property
    def name(self) -> str:
        """Human-readable backend name."""
        return self.__class__.__name__
