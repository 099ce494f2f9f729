"""Hybrid BM25 + vector search over workspace documents."""

import asyncio
import logging
import math
import re
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from storage.models import IndexedDocument, SearchHit
from storage.vector_store import VectorStore


logger = logging.getLogger("workspace-runtime.search")


BM25_K1 = 1.2
BM25_B = 0.75
HYBRID_CANDIDATE_MULTIPLIER = 3
SNIPPET_CONTEXT_LINES = 2

SEARCH_MODES = ("bm25", "vector", "hybrid")

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_LINE_SPLIT = re.compile(r"\r?\n")


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


def tokenize(text: str) -> List[str]:
    """Lowercase, split on non-alphanumeric runs, drop tokens shorter than 2 chars."""
    return [token for token in _TOKEN_SPLIT.split(text.lower()) if len(token) >= 2]


def normalize_scores(results: List[Tuple[str, float]]) -> List[Tuple[str, float]]:
    """
    Min-max normalize scores into [0, 1].

    A zero score range (e.g. a single result) collapses every score to 1.
    """
    if not results:
        return results
    scores = [score for _, score in results]
    low, high = min(scores), max(scores)
    spread = high - low
    if spread <= 0:
        return [(path, 1.0) for path, _ in results]
    return [(path, (score - low) / spread) for path, score in results]


def extract_snippet(content: str, query: str, max_length: int) -> Tuple[str, Tuple[int, int]]:
    """
    Extract the lines around the first occurrence of ``query``.

    Args:
        content: Document content
        query: Raw query; matched case-insensitively as a substring
        max_length: Maximum snippet characters before truncation

    Returns:
        (snippet, (start_line, end_line)) with 1-indexed inclusive line range
    """
    lines = _LINE_SPLIT.split(content)
    needle = query.strip().lower()

    best_line = 0
    for i, line in enumerate(lines):
        if needle in line.lower():
            best_line = i
            break

    start = max(0, best_line - SNIPPET_CONTEXT_LINES)
    end = min(len(lines) - 1, best_line + SNIPPET_CONTEXT_LINES)
    combined = "\n".join(lines[start:end + 1])
    if len(combined) > max_length:
        combined = combined[:max_length] + "\n..."
    return combined, (start + 1, end + 1)


class SearchIndex(ABC):
    """Index contract the search tools depend on."""

    @abstractmethod
    async def upsert(self, doc: IndexedDocument) -> None:
        ...

    @abstractmethod
    async def search(
        self,
        query: str,
        mode: str = "hybrid",
        top_k: int = 5,
        vector_weight: float = 0.6
    ) -> List[SearchHit]:
        ...

    @abstractmethod
    def get(self, path: str) -> Optional[IndexedDocument]:
        ...


class HybridSearchIndex(SearchIndex):
    """
    In-memory BM25 index blended with a delegated vector index.

    Lexical state (documents, document frequencies, document lengths, average
    length) lives in process memory and is guarded by a lock; every mutation
    and every BM25 scoring pass holds it, so searches never observe a
    half-applied upsert. Vector state lives in the injected VectorStore.
    """

    def __init__(self, embedding_provider: EmbeddingProvider, vector_store: VectorStore):
        """
        Initialize search index.

        Args:
            embedding_provider: Turns text into vectors
            vector_store: Stores vectors keyed by workspace path
        """
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store

        self._docs: Dict[str, IndexedDocument] = {}
        self._doc_freq: Dict[str, int] = {}
        self._doc_len: Dict[str, int] = {}
        self._avg_len = 0.0
        self._lock = threading.Lock()
        self._path_locks: Dict[str, asyncio.Lock] = {}

    @property
    def document_count(self) -> int:
        with self._lock:
            return len(self._docs)

    @property
    def average_length(self) -> float:
        with self._lock:
            return self._avg_len

    def document_frequency(self, term: str) -> int:
        with self._lock:
            return self._doc_freq.get(term, 0)

    def get(self, path: str) -> Optional[IndexedDocument]:
        with self._lock:
            return self._docs.get(path)

    def list_documents(self) -> List[IndexedDocument]:
        with self._lock:
            return list(self._docs.values())

    async def upsert(self, doc: IndexedDocument) -> None:
        """
        Insert or replace the document stored under ``doc.path``.

        The vector is computed and stored first; lexical statistics change
        only after that succeeds, so a failed upsert leaves no trace in the
        lexical index. Blank content removes any earlier vector for the path.
        Upserts of one path are serialized so both halves end on the same
        document.
        """
        async with self._path_lock(doc.path):
            if doc.content.strip():
                vector = await self.embedding_provider.embed(doc.content)
                await self.vector_store.store(doc.path, vector, {"path": doc.path, "source": doc.source})
            else:
                await self.vector_store.delete(doc.path)
            tokens = self._apply_lexical(doc)

        logger.debug(f"Indexed {doc.path}: tokens={len(tokens)} source={doc.source}")

    def _path_lock(self, path: str) -> asyncio.Lock:
        with self._lock:
            lock = self._path_locks.get(path)
            if lock is None:
                lock = self._path_locks[path] = asyncio.Lock()
            return lock

    def _apply_lexical(self, doc: IndexedDocument) -> List[str]:
        tokens = tokenize(doc.content)
        new_terms = set(tokens)

        with self._lock:
            previous = self._docs.get(doc.path)
            if previous is not None:
                for term in set(tokenize(previous.content)):
                    remaining = self._doc_freq.get(term, 0) - 1
                    if remaining > 0:
                        self._doc_freq[term] = remaining
                    else:
                        self._doc_freq.pop(term, None)

            for term in new_terms:
                self._doc_freq[term] = self._doc_freq.get(term, 0) + 1

            self._docs[doc.path] = doc
            self._doc_len[doc.path] = len(tokens)
            lengths = self._doc_len.values()
            self._avg_len = sum(lengths) / len(lengths) if lengths else 0.0
        return tokens

    async def search(
        self,
        query: str,
        mode: str = "hybrid",
        top_k: int = 5,
        vector_weight: float = 0.6
    ) -> List[SearchHit]:
        """
        Rank indexed documents for ``query``.

        Args:
            query: Free text query
            mode: "bm25", "vector" or "hybrid"
            top_k: Maximum results
            vector_weight: Share of the vector score in hybrid mode

        Returns:
            Hits sorted by descending score, each score in [0, 1]
        """
        if mode not in SEARCH_MODES:
            raise ValueError(f"Invalid search mode '{mode}'. Must be one of: {', '.join(SEARCH_MODES)}")
        if not query or not query.strip() or top_k < 1 or self.document_count == 0:
            return []

        bm25 = self.score_bm25(tokenize(query))

        if mode == "bm25":
            return [SearchHit(path=path, score=score, bm25_score=score) for path, score in bm25[:top_k]]

        vector_results = await self._search_vector(query, top_k)
        if mode == "vector":
            return [SearchHit(path=path, score=score, vector_score=score) for path, score in vector_results]

        combined: Dict[str, Dict[str, float]] = {}
        for path, score in bm25[:top_k * HYBRID_CANDIDATE_MULTIPLIER]:
            combined.setdefault(path, {})["bm25"] = score
        for path, score in vector_results:
            combined.setdefault(path, {})["vector"] = score

        hits = []
        for path, parts in combined.items():
            blended = (
                vector_weight * parts.get("vector", 0.0)
                + (1 - vector_weight) * parts.get("bm25", 0.0)
            )
            hits.append(SearchHit(
                path=path,
                score=blended,
                bm25_score=parts.get("bm25"),
                vector_score=parts.get("vector"),
            ))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]

    def score_bm25(self, query_tokens: Sequence[str]) -> List[Tuple[str, float]]:
        """Normalized BM25 scores for every document with a positive raw score."""
        return normalize_scores(self.raw_bm25(query_tokens))

    def raw_bm25(self, query_tokens: Sequence[str]) -> List[Tuple[str, float]]:
        """Unnormalized BM25 scores, sorted descending."""
        if not query_tokens:
            return []

        with self._lock:
            total_docs = len(self._docs)
            if total_docs == 0:
                return []
            avg_len = self._avg_len or 1

            results = []
            for doc in self._docs.values():
                # Term frequencies are recomputed from content on every search
                doc_tokens = tokenize(doc.content)
                term_freq = Counter(doc_tokens)
                doc_len = len(doc_tokens)

                score = 0.0
                for term in query_tokens:
                    freq = term_freq.get(term, 0)
                    if freq == 0:
                        continue
                    df = self._doc_freq.get(term, 0)
                    idf = math.log(1 + (total_docs - df + 0.5) / (df + 0.5))
                    denom = freq + BM25_K1 * (1 - BM25_B + BM25_B * doc_len / avg_len)
                    score += idf * (freq * (BM25_K1 + 1)) / denom

                if score > 0:
                    results.append((doc.path, score))

        results.sort(key=lambda item: item[1], reverse=True)
        return results

    async def _search_vector(self, query: str, top_k: int) -> List[Tuple[str, float]]:
        query_vector = await self.embedding_provider.embed(query)
        hits = await self.vector_store.search(query_vector, limit=top_k)
        return normalize_scores([(str(hit.id), hit.score) for hit in hits])
