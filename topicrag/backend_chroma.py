"""ChromaDB backend: implements VectorBackend on a persistent Chroma client.

All Chroma-specific code (client construction, include lists, the nested
list-of-lists query results) lives here, not in the pipeline.
"""

from datetime import datetime, timezone

from .backend import VectorBackend, QueryHit, StoredRecord, check_batch_lengths
from .config import log, CHROMA_PATH, COLLECTION_PREFIX
from .errors import UpstreamError


class ChromaBackend(VectorBackend):
    """Persistent ChromaDB store, one cosine-space collection per topic.

    Embeddings are always supplied by the caller, so collections are created
    without an embedding function.
    """

    def __init__(self, path: str = None, collection_prefix: str = None, client=None):
        super().__init__(collection_prefix or COLLECTION_PREFIX)
        if client is None:
            import chromadb
            client = chromadb.PersistentClient(path=path or CHROMA_PATH)
            log.info("ChromaDB connected: %s", path or CHROMA_PATH)
        self._client = client

    @property
    def name(self) -> str:
        return "ChromaDB"

    def health(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception as e:
            log.warning("ChromaDB heartbeat failed: %s", e)
            return False

    def _get(self, topic_id: str):
        return self._client.get_collection(name=self.collection_name(topic_id))

    def get_or_create_collection(self, topic_id: str) -> str:
        name = self.collection_name(topic_id)
        # metadata (and the distance space) is fixed at creation time
        if self.collection_exists(topic_id):
            return name
        log.info("creating collection %s", name)
        try:
            self._client.create_collection(
                name=name,
                metadata={
                    "hnsw:space": "cosine",
                    "description": f"knowledge base for topic: {topic_id}",
                    "topic_id": topic_id,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception as e:
            raise UpstreamError(f"ChromaDB create collection {name} failed: {e}") from e
        return name

    def collection_exists(self, topic_id: str) -> bool:
        try:
            self._get(topic_id)
            return True
        except Exception as e:
            log.debug("collection %s not found: %s", self.collection_name(topic_id), e)
            return False

    def upsert(self, topic_id: str, ids: list, embeddings: list,
               documents: list, metadatas: list) -> int:
        check_batch_lengths(ids, embeddings, documents, metadatas)
        if not ids:
            return 0
        try:
            collection = self._get(topic_id)
            collection.upsert(ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas)
        except Exception as e:
            raise UpstreamError(f"ChromaDB upsert into {self.collection_name(topic_id)} failed: {e}") from e
        log.info("stored %d chunks in %s", len(ids), self.collection_name(topic_id))
        return len(ids)

    def query(self, topic_id: str, embedding: list, k: int) -> list[QueryHit]:
        try:
            res = self._get(topic_id).query(
                query_embeddings=[embedding],
                n_results=k,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            raise UpstreamError(f"ChromaDB query on {self.collection_name(topic_id)} failed: {e}") from e
        ids = (res.get("ids") or [[]])[0]
        docs = (res.get("documents") or [[]])[0]
        metas = (res.get("metadatas") or [[]])[0]
        dists = (res.get("distances") or [[]])[0]
        return [
            QueryHit(id=ids[i], document=docs[i] or "", metadata=dict(metas[i] or {}), distance=dists[i])
            for i in range(len(ids))
        ]

    def list_collections(self) -> list[str]:
        names = []
        for c in self._client.list_collections():
            # chromadb < 0.6 returns Collection objects, newer versions return names
            name = c if isinstance(c, str) else getattr(c, "name", None)
            if name:
                names.append(name)
        return names

    def delete_collection(self, topic_id: str) -> bool:
        try:
            self._client.delete_collection(name=self.collection_name(topic_id))
            log.info("deleted collection %s", self.collection_name(topic_id))
            return True
        except Exception as e:
            log.warning("delete collection %s failed: %s", self.collection_name(topic_id), e)
            return False

    def get_all(self, topic_id: str) -> list[StoredRecord]:
        try:
            res = self._get(topic_id).get(include=["documents", "metadatas"])
        except Exception as e:
            raise UpstreamError(f"ChromaDB read of {self.collection_name(topic_id)} failed: {e}") from e
        ids = res.get("ids") or []
        docs = res.get("documents") or []
        metas = res.get("metadatas") or []
        return [
            StoredRecord(id=ids[i], document=docs[i] or "", metadata=dict(metas[i] or {}))
            for i in range(len(ids))
        ]

    @property
    def raw_client(self):
        """Access the underlying chromadb client (bypasses the abstraction)."""
        return self._client
