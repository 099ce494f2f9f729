"""Vector store adapters consumed by the hybrid search index."""

import asyncio
import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence, Tuple

from chromadb.api.models.Collection import Collection

from storage.models import VectorHit
from utils.errors import StorageError


logger = logging.getLogger("workspace-runtime.vector_store")


class VectorStore(ABC):
    """Narrow vector store contract: keyed upsert plus nearest-neighbour search."""

    @abstractmethod
    async def store(self, id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        """Store (or replace) the vector for ``id``."""

    @abstractmethod
    async def search(self, vector: Sequence[float], limit: int) -> List[VectorHit]:
        """Return up to ``limit`` hits ordered by descending similarity."""

    @abstractmethod
    async def delete(self, id: str) -> None:
        """Remove the vector for ``id``; a missing id is not an error."""


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryVectorStore(VectorStore):
    """Process-local vector store with brute-force cosine search."""

    def __init__(self):
        self._vectors: Dict[str, Tuple[List[float], Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._vectors)

    async def store(self, id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        with self._lock:
            self._vectors[id] = (list(vector), dict(metadata))

    async def delete(self, id: str) -> None:
        with self._lock:
            self._vectors.pop(id, None)

    async def search(self, vector: Sequence[float], limit: int) -> List[VectorHit]:
        if limit < 1:
            return []
        with self._lock:
            items = list(self._vectors.items())

        hits = [
            VectorHit(id=id, score=cosine_similarity(vector, stored), metadata=metadata)
            for id, (stored, metadata) in items
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]


class ChromaVectorStore(VectorStore):
    """ChromaDB-backed vector store; vectors persist with the Chroma server."""

    def __init__(self, collection: Collection):
        """
        Args:
            collection: Collection created with cosine distance
        """
        self.collection = collection

    async def store(self, id: str, vector: Sequence[float], metadata: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(
                self.collection.upsert,
                ids=[id],
                embeddings=[list(vector)],
                metadatas=[metadata],
            )
        except Exception as e:
            logger.error(f"Chroma upsert failed for {id}: {e}")
            raise StorageError(f"Failed to store vector for {id}: {e}") from e

    async def delete(self, id: str) -> None:
        try:
            await asyncio.to_thread(self.collection.delete, ids=[id])
        except Exception as e:
            logger.error(f"Chroma delete failed for {id}: {e}")
            raise StorageError(f"Failed to delete vector for {id}: {e}") from e

    async def search(self, vector: Sequence[float], limit: int) -> List[VectorHit]:
        if limit < 1:
            return []
        try:
            count = await asyncio.to_thread(self.collection.count)
            if count == 0:
                return []
            results = await asyncio.to_thread(
                self.collection.query,
                query_embeddings=[list(vector)],
                n_results=min(limit, count),
                include=["metadatas", "distances"],
            )
        except Exception as e:
            logger.error(f"Chroma query failed: {e}")
            raise StorageError(f"Vector search failed: {e}") from e

        ids = results["ids"][0] if results.get("ids") else []
        distances = results["distances"][0] if results.get("distances") else []
        metadatas = results["metadatas"][0] if results.get("metadatas") else []

        hits = []
        for i, id in enumerate(ids):
            # Cosine distance -> similarity
            distance = distances[i] if i < len(distances) else 1.0
            metadata = metadatas[i] if i < len(metadatas) and metadatas[i] else {}
            hits.append(VectorHit(id=id, score=1.0 - distance, metadata=dict(metadata)))
        return hits
