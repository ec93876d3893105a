"""In-memory backend: implements VectorBackend for testing.

No external dependencies. Stores vectors in plain Python dicts and ranks
by exact cosine distance.
"""

from __future__ import annotations

import math

from .backend import VectorBackend, QueryHit, StoredRecord, check_batch_lengths


def cosine_distance(a: list, b: list) -> float:
    """1 - cosine similarity; 1.0 when either vector has zero norm."""
    if len(a) != len(b):
        return 1.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 1.0
    return 1.0 - dot / (na * nb)


class InMemoryVectorBackend(VectorBackend):
    """Pure in-memory vector backend for unit / integration tests.

    Features:
        - One dict per collection, keyed by record id (upsert semantics).
        - Brute-force cosine ranking, deterministic tie order (insertion).
        - ``fail_on`` lets tests make a given method raise.

    Example::

        backend = InMemoryVectorBackend()
        backend.get_or_create_collection("rust")
        backend.upsert("rust", ["a"], [[1.0, 0.0]], ["doc"], [{"source": "x"}])
        assert backend.query("rust", [1.0, 0.0], k=1)[0].id == "a"
    """

    def __init__(self, collection_prefix: str = "topic_knowledge"):
        super().__init__(collection_prefix)
        # collection name → {record id → {"embedding", "document", "metadata"}}
        self._collections: dict[str, dict[str, dict]] = {}
        self.fail_on: set[str] = set()
        self.upsert_calls = 0

    def _maybe_fail(self, method: str):
        if method in self.fail_on:
            raise RuntimeError(f"InMemoryVectorBackend.{method} forced failure")

    def health(self) -> bool:
        return True

    def get_or_create_collection(self, topic_id: str) -> str:
        self._maybe_fail("get_or_create_collection")
        name = self.collection_name(topic_id)
        self._collections.setdefault(name, {})
        return name

    def collection_exists(self, topic_id: str) -> bool:
        return self.collection_name(topic_id) in self._collections

    def upsert(self, topic_id: str, ids: list, embeddings: list,
               documents: list, metadatas: list) -> int:
        self._maybe_fail("upsert")
        check_batch_lengths(ids, embeddings, documents, metadatas)
        self.upsert_calls += 1
        store = self._collections.setdefault(self.collection_name(topic_id), {})
        for rid, emb, doc, meta in zip(ids, embeddings, documents, metadatas):
            store[rid] = {"embedding": list(emb), "document": doc, "metadata": dict(meta or {})}
        return len(ids)

    def query(self, topic_id: str, embedding: list, k: int) -> list[QueryHit]:
        self._maybe_fail("query")
        store = self._collections.get(self.collection_name(topic_id))
        if store is None:
            raise KeyError(f"collection for topic {topic_id!r} does not exist")
        hits = [
            QueryHit(
                id=rid,
                document=rec["document"],
                metadata=dict(rec["metadata"]),
                distance=cosine_distance(embedding, rec["embedding"]),
            )
            for rid, rec in store.items()
        ]
        hits.sort(key=lambda h: h.distance)
        return hits[:max(0, k)]

    def list_collections(self) -> list[str]:
        return sorted(self._collections)

    def delete_collection(self, topic_id: str) -> bool:
        return self._collections.pop(self.collection_name(topic_id), None) is not None

    def get_all(self, topic_id: str) -> list[StoredRecord]:
        store = self._collections.get(self.collection_name(topic_id), {})
        return [
            StoredRecord(id=rid, document=rec["document"], metadata=dict(rec["metadata"]))
            for rid, rec in store.items()
        ]

    @property
    def name(self) -> str:
        return "InMemory"
