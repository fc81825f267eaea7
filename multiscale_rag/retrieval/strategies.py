# -*- coding: utf-8 -*-
"""
Base retrieval strategies.

Each RetrievalStrategy tag maps to one strategy class through
STRATEGY_CLASSES. A strategy turns (query text, query vector) into scored
candidates filtered to the minimum chunk quality:

- VectorOnlyStrategy: dense similarity on content views of paragraph and
  sentence chunks.
- HybridStrategy: 0.7 * vector score + 0.3 * keyword score over the union of
  dense and lexical hits.
- MultiScaleStrategy: searches section, paragraph and sentence scales
  separately and merges, so broad and narrow matches compete.
- ContextualStrategy: the query is embedded together with the last prior
  conversation turns ("Context: ...\\n\\nQuery: ...") and matched against
  contextual views.

When the query vector is unavailable every strategy falls back to the
store's keyword search.
"""
# Standard library
import logging
from abc import ABC
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

# Third-party
import numpy as np

# Foundation
from multiscale_rag.config.settings import RetrievalOptions
from multiscale_rag.storage.vector_store import ChunkFilter, VectorStore
from multiscale_rag.utils.dataclasses import (
    Chunk,
    ChunkScale,
    EmbeddingType,
    QueryAnalysis,
    RetrievalCandidate,
)

# Config
from multiscale_rag.config.retrieval_config import (
    RETRIEVAL_CONFIG,
    STRATEGY_SCALES,
    STRATEGY_VIEWS,
    RetrievalStrategy,
)

logger = logging.getLogger(__name__)

VECTOR_WEIGHT = RETRIEVAL_CONFIG.get('hybrid_vector_weight', 0.7)
KEYWORD_WEIGHT = RETRIEVAL_CONFIG.get('hybrid_keyword_weight', 0.3)
CONVERSATION_TURNS = RETRIEVAL_CONFIG.get('conversation_turns', 3)
MIN_SIMILARITY = RETRIEVAL_CONFIG.get('min_similarity', 0.0)


class BaseStrategy(ABC):
    """Shared vector and keyword search; subclasses set tag, views and scales."""

    tag: RetrievalStrategy = RetrievalStrategy.VECTOR_ONLY

    def __init__(self, store: VectorStore):
        self.store = store
        self.views = [EmbeddingType(v) for v in STRATEGY_VIEWS.get(self.tag.value, ['content'])]
        self.scales = tuple(ChunkScale(s) for s in STRATEGY_SCALES.get(self.tag.value, []))

    def query_text(self, query: str, context: Optional[Sequence[str]] = None) -> str:
        """Text to embed for this strategy."""
        return query

    def chunk_filter(self, options: RetrievalOptions, scales: Optional[Tuple[ChunkScale, ...]] = None) -> ChunkFilter:
        return ChunkFilter(
            scales=self.scales if scales is None else scales,
            document_ids=tuple(options.document_ids),
            min_quality=options.quality_threshold,
        )

    def search(
        self,
        query_vector: Optional[np.ndarray],
        analysis: QueryAnalysis,
        options: RetrievalOptions,
    ) -> List[RetrievalCandidate]:
        """
        Top-N candidates for a query.

        Args:
            query_vector: Embedded query text, or None to use keyword search
            analysis: Query classification (key terms feed keyword search)
            options: Retrieval options
        """
        if query_vector is None:
            return self.keyword_fallback(analysis, options)
        return self._top(self._vector_hits(query_vector, options, self.chunk_filter(options)), options.top_n)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _vector_hits(self, query_vector: np.ndarray, options: RetrievalOptions,
                     chunk_filter: ChunkFilter, k: Optional[int] = None) -> Dict[str, RetrievalCandidate]:
        """Search each view of the strategy; a chunk keeps its best view score."""
        hits: Dict[str, RetrievalCandidate] = {}
        for view_type in self.views:
            for chunk, score in self.store.query_nearest(query_vector, view_type, k or options.top_n, chunk_filter):
                if score < MIN_SIMILARITY:
                    continue
                current = hits.get(chunk.chunk_id)
                if current is None or score > current.similarity_score:
                    hits[chunk.chunk_id] = RetrievalCandidate(
                        chunk=chunk,
                        similarity_score=float(score),
                        strategy_used=self.tag,
                        view_type=view_type,
                    )
        return hits

    def _keyword_hits(self, terms: Iterable[str], options: RetrievalOptions,
                      chunk_filter: ChunkFilter, k: Optional[int] = None) -> List[Tuple[Chunk, float]]:
        return self.store.keyword_search(terms, k or options.top_n, chunk_filter)

    def keyword_fallback(self, analysis: QueryAnalysis, options: RetrievalOptions) -> List[RetrievalCandidate]:
        terms = list(analysis.key_terms) + [t.lower() for t in analysis.exact_terms]
        return [
            RetrievalCandidate(chunk=chunk, similarity_score=score, strategy_used=self.tag)
            for chunk, score in self._keyword_hits(terms, options, self.chunk_filter(options))
        ]

    @staticmethod
    def _top(hits: Dict[str, RetrievalCandidate], n: int) -> List[RetrievalCandidate]:
        ranked = sorted(hits.values(), key=lambda c: (-c.similarity_score, c.chunk_id))
        return ranked[:n]


class VectorOnlyStrategy(BaseStrategy):
    tag = RetrievalStrategy.VECTOR_ONLY


class HybridStrategy(BaseStrategy):
    """Blend dense similarity with lexical term coverage."""

    tag = RetrievalStrategy.HYBRID

    def search(self, query_vector, analysis, options):
        if query_vector is None:
            return self.keyword_fallback(analysis, options)

        chunk_filter = self.chunk_filter(options)
        pool = options.top_n * 2
        vector_hits = self._vector_hits(query_vector, options, chunk_filter, k=pool)
        terms = list(analysis.key_terms) + [t.lower() for t in analysis.exact_terms]
        keyword_scores = {chunk.chunk_id: (chunk, score)
                          for chunk, score in self._keyword_hits(terms, options, chunk_filter, k=pool)}

        blended: Dict[str, RetrievalCandidate] = {}
        for chunk_id in set(vector_hits) | set(keyword_scores):
            vector_candidate = vector_hits.get(chunk_id)
            chunk, keyword_score = keyword_scores.get(chunk_id, (None, 0.0))
            vector_score = max(0.0, vector_candidate.similarity_score) if vector_candidate else 0.0
            chunk = vector_candidate.chunk if vector_candidate else chunk
            blended[chunk_id] = RetrievalCandidate(
                chunk=chunk,
                similarity_score=VECTOR_WEIGHT * vector_score + KEYWORD_WEIGHT * keyword_score,
                strategy_used=self.tag,
                view_type=vector_candidate.view_type if vector_candidate else None,
            )
        return self._top(blended, options.top_n)


class MultiScaleStrategy(BaseStrategy):
    """Search every scale in its own pass so coarse chunks are not crowded out."""

    tag = RetrievalStrategy.MULTI_SCALE

    def search(self, query_vector, analysis, options):
        if query_vector is None:
            return self.keyword_fallback(analysis, options)

        merged: Dict[str, RetrievalCandidate] = {}
        for scale in self.scales:
            hits = self._vector_hits(query_vector, options, self.chunk_filter(options, scales=(scale,)))
            for candidate in self._top(hits, options.top_n):
                current = merged.get(candidate.chunk_id)
                if current is None or candidate.similarity_score > current.similarity_score:
                    merged[candidate.chunk_id] = candidate
        return self._top(merged, options.top_n)


class ContextualStrategy(BaseStrategy):
    """Embed the query with recent conversation turns."""

    tag = RetrievalStrategy.CONTEXTUAL

    def query_text(self, query, context=None):
        turns = [t.strip() for t in (context or []) if t and t.strip()]
        if not turns:
            return query
        recent = ' '.join(turns[-CONVERSATION_TURNS:])
        return f"Context: {recent}\n\nQuery: {query}"


STRATEGY_CLASSES = {
    RetrievalStrategy.VECTOR_ONLY: VectorOnlyStrategy,
    RetrievalStrategy.HYBRID: HybridStrategy,
    RetrievalStrategy.MULTI_SCALE: MultiScaleStrategy,
    RetrievalStrategy.CONTEXTUAL: ContextualStrategy,
}


def build_strategies(store: VectorStore) -> Dict[RetrievalStrategy, BaseStrategy]:
    return {tag: cls(store) for tag, cls in STRATEGY_CLASSES.items()}
