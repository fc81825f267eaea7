# -*- coding: utf-8 -*-
"""
Result ranking: complementarity selection and ordering-bias mitigation.

Three stages turn an expanded candidate pool into the final result:

1. Complementarity (greedy MMR): take the most relevant candidate, then
   repeatedly take the one maximizing
       relevance - lambda * max_similarity_to_selected (+ relationship bonus)
   until K (default 5) are selected. A candidate whose similarity to any
   selected chunk exceeds the duplication ceiling (default 0.9) is skipped,
   so no two results are near-duplicates.
2. Token budget: selected chunks are kept in selection order while they fit
   ``max_context_tokens``.
3. Lost-in-the-middle: results are sorted by relevance and placed
   alternately at the front and the back (0, last, 1, last-1, ...) so the
   strongest chunks sit at the edges of the context.

Chunk-to-chunk similarity is the cosine of stored content vectors when both
are available, and word Jaccard otherwise.

Examples:
    ranker = ResultRanker(vector_lookup=lambda cid: store.get_vector(cid, EmbeddingType.CONTENT))
    final = ranker.rank(candidates, options)

    ResultRanker.lost_in_middle([9, 8, 7, 6, 5])     # [9, 7, 5, 6, 8]
"""
# Standard library
import logging
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

# Third-party
import numpy as np

# Foundation
from multiscale_rag.config.settings import RetrievalOptions
from multiscale_rag.utils.dataclasses import Relationship, RetrievalCandidate
from multiscale_rag.utils.text_analysis import cosine, jaccard, words

# Config
from multiscale_rag.config.retrieval_config import RANKING_CONFIG

logger = logging.getLogger(__name__)

RELATIONSHIP_BONUS = RANKING_CONFIG.get('relationship_bonus', 0.05)

T = TypeVar('T')


class ResultRanker:
    """
    MMR selection, budget trimming and lost-in-the-middle ordering.

    Args:
        vector_lookup: chunk_id -> content vector (or None)
        relationship_lookup: chunk_id -> relationships touching the chunk
    """

    def __init__(
        self,
        vector_lookup: Optional[Callable[[str], Optional[np.ndarray]]] = None,
        relationship_lookup: Optional[Callable[[str], List[Relationship]]] = None,
    ):
        self.vector_lookup = vector_lookup
        self.relationship_lookup = relationship_lookup

    def rank(self, candidates: List[RetrievalCandidate], options: RetrievalOptions) -> List[RetrievalCandidate]:
        if not candidates:
            return []
        selected = self.select_complementary(
            candidates, k=options.final_k, mmr_lambda=options.mmr_lambda,
            duplication_ceiling=options.duplication_ceiling,
        )
        selected = self.trim_to_budget(selected, options.max_context_tokens)
        if options.lost_in_middle:
            ordered = self.lost_in_middle(sorted(selected, key=lambda c: -c.similarity_score))
        else:
            ordered = sorted(selected, key=lambda c: -c.similarity_score)
        for rank, candidate in enumerate(ordered):
            candidate.final_rank = rank
        return ordered

    # ========================================================================
    # COMPLEMENTARITY
    # ========================================================================

    def similarity(self, a: RetrievalCandidate, b: RetrievalCandidate,
                   cache: Optional[Dict[str, Optional[np.ndarray]]] = None) -> float:
        """Content similarity of two candidates in [0, 1]."""
        if a.chunk_id == b.chunk_id:
            return 1.0
        if self.vector_lookup is not None:
            vec_a = self._vector(a.chunk_id, cache)
            vec_b = self._vector(b.chunk_id, cache)
            if vec_a is not None and vec_b is not None:
                return max(0.0, cosine(vec_a, vec_b))
        return jaccard(words(a.chunk.content), words(b.chunk.content))

    def _vector(self, chunk_id: str, cache: Optional[Dict]) -> Optional[np.ndarray]:
        if cache is None:
            return self.vector_lookup(chunk_id)
        if chunk_id not in cache:
            cache[chunk_id] = self.vector_lookup(chunk_id)
        return cache[chunk_id]

    def _linked(self, candidate: RetrievalCandidate, selected_ids: set) -> int:
        if self.relationship_lookup is None:
            return 0
        count = 0
        for relationship in self.relationship_lookup(candidate.chunk_id):
            other = (relationship.target_chunk_id if relationship.source_chunk_id == candidate.chunk_id
                     else relationship.source_chunk_id)
            if other in selected_ids:
                count += 1
        return count

    def select_complementary(
        self,
        candidates: Sequence[RetrievalCandidate],
        k: int,
        mmr_lambda: float = 0.5,
        duplication_ceiling: float = 0.9,
    ) -> List[RetrievalCandidate]:
        """
        Greedy MMR selection of up to k candidates.

        Returns:
            Selected candidates in selection order
        """
        remaining = sorted(candidates, key=lambda c: (-c.similarity_score, c.chunk_id))
        vectors: Dict[str, Optional[np.ndarray]] = {}
        selected: List[RetrievalCandidate] = []
        selected_ids = set()
        skipped = 0

        while remaining and len(selected) < k:
            best_index, best_score = None, None
            rejected = []
            for i, candidate in enumerate(remaining):
                max_similarity = max(
                    (self.similarity(candidate, chosen, vectors) for chosen in selected),
                    default=0.0,
                )
                if selected and max_similarity > duplication_ceiling:
                    rejected.append(i)
                    continue
                score = (candidate.similarity_score - mmr_lambda * max_similarity
                         + RELATIONSHIP_BONUS * self._linked(candidate, selected_ids))
                if best_score is None or score > best_score:
                    best_index, best_score = i, score

            if best_index is None:
                skipped += len(rejected)
                break
            chosen = remaining[best_index]
            selected.append(chosen)
            selected_ids.add(chosen.chunk_id)
            # Near-duplicates of anything selected can never qualify again
            drop = set(rejected) | {best_index}
            skipped += len(rejected)
            remaining = [c for i, c in enumerate(remaining) if i not in drop]

        if skipped:
            logger.debug(f"Skipped {skipped} near-duplicate candidates")
        return selected

    # ========================================================================
    # BUDGET & ORDERING
    # ========================================================================

    @staticmethod
    def trim_to_budget(candidates: Sequence[RetrievalCandidate], max_tokens: int) -> List[RetrievalCandidate]:
        """Keep candidates in order while they fit the token budget; always keep the first."""
        if max_tokens <= 0:
            return list(candidates)
        kept, used = [], 0
        for candidate in candidates:
            tokens = candidate.chunk.token_count
            if kept and used + tokens > max_tokens:
                continue
            kept.append(candidate)
            used += tokens
        return kept

    @staticmethod
    def lost_in_middle(items: Sequence[T]) -> List[T]:
        """
        Place items (already sorted best first) at alternating edges.

        [9, 8, 7, 6, 5] -> [9, 7, 5, 6, 8]
        """
        result: List[Optional[T]] = [None] * len(items)
        left, right = 0, len(items) - 1
        for i, item in enumerate(items):
            if i % 2 == 0:
                result[left] = item
                left += 1
            else:
                result[right] = item
                right -= 1
        return result
