"""
Policy Search Service - Semantic search over policy chunks.

Provides exhaustive cosine similarity search within a plan and hybrid
search that unions keyword matches with vector matches.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from policyrag.config import RAGSettings
from policyrag.errors import Err, FailureKind, Ok, PolicyRAGError, Result
from policyrag.models import PolicyChunk
from policyrag.rag.repository import PolicyStore
from policyrag.rag.vocabulary import RetrievalVocabulary
from policyrag.utils import setup_logging

logger = setup_logging()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 for vectors of different length or zero magnitude.
    """
    if len(a) != len(b):
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


@dataclass
class SearchResult:
    """Represents a search result with relevance score."""

    chunk_text: str
    chunk_index: int
    similarity_score: float
    document_id: str

    @property
    def key(self) -> tuple[str, int]:
        return (self.document_id, self.chunk_index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunk_text": self.chunk_text,
            "chunk_index": self.chunk_index,
            "similarity_score": round(self.similarity_score, 4),
            "document_id": self.document_id,
        }


def _to_result(chunk: PolicyChunk, score: float) -> SearchResult:
    return SearchResult(
        chunk_text=chunk.chunk_text,
        chunk_index=chunk.chunk_index,
        similarity_score=score,
        document_id=chunk.document_id,
    )


def rank_chunks(
    query_vector: Sequence[float],
    chunks: Iterable[PolicyChunk],
    top_k: int,
    similarity_threshold: float,
) -> list[SearchResult]:
    """
    Score every chunk, keep those at or above the threshold, best first.

    The sort is stable, so equal scores keep the order the store returned.
    """
    scored = [
        _to_result(chunk, cosine_similarity(query_vector, chunk.embedding))
        for chunk in chunks
    ]
    kept = [r for r in scored if r.similarity_score >= similarity_threshold]
    kept.sort(key=lambda r: r.similarity_score, reverse=True)
    return kept[:top_k]


def merge_results(*pools: Iterable[SearchResult]) -> list[SearchResult]:
    """Union result pools on (document_id, chunk_index), keeping the higher score."""
    merged: dict[tuple[str, int], SearchResult] = {}
    for pool in pools:
        for result in pool:
            existing = merged.get(result.key)
            if existing is None or result.similarity_score > existing.similarity_score:
                merged[result.key] = result
    return list(merged.values())


class PolicySearchService:
    """
    Semantic search service for policy chunks.

    Supports:
    - Vector similarity search (cosine, exhaustive per plan)
    - Similarity threshold filtering
    - Hybrid search (keyword pool + vector pool)
    """

    def __init__(
        self,
        store: PolicyStore,
        vocabulary: RetrievalVocabulary,
        rag_settings: RAGSettings | None = None,
    ):
        """
        Initialize search service.

        Args:
            store: Policy store holding the plan's chunks
            vocabulary: Keyword list used for the keyword pool
            rag_settings: Defaults for top_k, threshold and keyword score floor
        """
        self.store = store
        self.vocabulary = vocabulary
        self.rag_settings = rag_settings or RAGSettings()

    async def _check_request(self, plan_id: str, top_k: int) -> Err | None:
        if top_k < 1:
            return Err(FailureKind.INVALID_INPUT, f"top_k must be at least 1, got {top_k}")
        if await self.store.get_plan(plan_id) is None:
            return Err(FailureKind.PLAN_NOT_FOUND, f"Plan {plan_id} not found")
        return None

    async def search(
        self,
        query_vector: Sequence[float],
        plan_id: str,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
    ) -> Result[list[SearchResult]]:
        """
        Vector similarity search within one plan.

        Args:
            query_vector: Embedded query
            plan_id: Plan whose chunks are searched
            top_k: Number of results (default from settings)
            similarity_threshold: Minimum similarity (default from settings)

        Returns:
            Ok with results ordered by similarity, or Err
        """
        if top_k is None:
            top_k = self.rag_settings.top_k
        if similarity_threshold is None:
            similarity_threshold = self.rag_settings.similarity_threshold

        try:
            failure = await self._check_request(plan_id, top_k)
            if failure:
                return failure
            chunks = await self.store.find_chunks_for_plan(plan_id)
        except PolicyRAGError as e:
            logger.error(f"Search for plan {plan_id} failed: {e}")
            return e.to_err()

        results = rank_chunks(query_vector, chunks, top_k, similarity_threshold)
        logger.debug(f"Search in plan {plan_id} scanned {len(chunks)} chunks, returned {len(results)}")
        return Ok(results)

    async def hybrid_search(
        self,
        query_vector: Sequence[float],
        raw_query: str,
        plan_id: str,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
    ) -> Result[list[SearchResult]]:
        """
        Hybrid search combining keyword matching and vector similarity.

        Keyword hits are scored max(cosine, keyword_score_floor) so literal
        matches survive a weak embedding. The vector pool is over-fetched
        (2 x top_k) before the union is re-ranked and truncated.

        query_vector must embed the synonym-expanded query, as
        RAGService.retrieve builds it. Colloquial wording such as
        "gestohlen" only reaches "Diebstahl" chunks through that
        expansion; raw_query alone drives the keyword side.

        Args:
            query_vector: Embedding of the synonym-expanded query
            raw_query: The question as typed, used for keyword matching
            plan_id: Plan whose chunks are searched
            top_k: Number of results
            similarity_threshold: Minimum similarity for the vector pool

        Returns:
            Ok with merged results ordered by score, or Err
        """
        if top_k is None:
            top_k = self.rag_settings.top_k
        if similarity_threshold is None:
            similarity_threshold = self.rag_settings.similarity_threshold
        floor = self.rag_settings.keyword_score_floor
        keywords = self.vocabulary.extract_keywords(raw_query)

        try:
            failure = await self._check_request(plan_id, top_k)
            if failure:
                return failure
            keyword_chunks = (
                await self.store.find_chunks_for_plan_containing(plan_id, keywords)
                if keywords
                else []
            )
        except PolicyRAGError as e:
            logger.error(f"Keyword search for plan {plan_id} failed: {e}")
            return e.to_err()

        keyword_pool = [
            _to_result(chunk, max(cosine_similarity(query_vector, chunk.embedding), floor))
            for chunk in keyword_chunks
        ]

        vector_pool = await self.search(
            query_vector,
            plan_id,
            top_k=top_k * 2,
            similarity_threshold=similarity_threshold,
        )
        if isinstance(vector_pool, Err):
            return vector_pool

        merged = merge_results(keyword_pool, vector_pool.value)
        merged.sort(key=lambda r: r.similarity_score, reverse=True)
        results = merged[:top_k]

        logger.info(
            f"Hybrid search in plan {plan_id}: keywords={keywords}, "
            f"keyword_hits={len(keyword_pool)}, vector_hits={len(vector_pool.value)}, "
            f"returned={len(results)}"
        )
        return Ok(results)
