# -*- coding: utf-8 -*-
"""
Context expansion for retrieval candidates.

Hierarchical expansion adds each candidate's parent (score x 0.8) and up to
two nearest siblings (score x 0.9). Document-scale parents are skipped; a
whole document is never useful as supporting context.

Semantic expansion adds chunks related to the strongest candidates, first
through stored cross-reference relationships (score x 0.7 x strength), then
through keyword overlap: chunks whose extracted key terms have Jaccard
overlap >= 0.2 with the candidate's (score x 0.7). Semantic additions are
capped across the whole result (default 3).

Expanded chunks pass the same quality, document and embedded-view filters as
base hits.
The output is deduplicated by chunk id, keeping the higher score.
"""
# Standard library
import logging
from typing import Dict, List

# Foundation
from multiscale_rag.config.settings import RetrievalOptions
from multiscale_rag.storage.vector_store import ChunkFilter, VectorStore
from multiscale_rag.utils.dataclasses import (
    Chunk,
    ChunkScale,
    ExpansionSource,
    RetrievalCandidate,
)
from multiscale_rag.utils.text_analysis import jaccard

# Config
from multiscale_rag.config.retrieval_config import EXPANSION_CONFIG

logger = logging.getLogger(__name__)

PARENT_FACTOR = EXPANSION_CONFIG.get('parent_score_factor', 0.8)
SIBLING_FACTOR = EXPANSION_CONFIG.get('sibling_score_factor', 0.9)
SEMANTIC_FACTOR = EXPANSION_CONFIG.get('semantic_score_factor', 0.7)
KEYWORD_SEARCH_POOL = 10


class ContextExpander:
    """Adds hierarchical and semantic neighbors to a candidate list."""

    def __init__(self, store: VectorStore):
        self.store = store

    def expand(self, candidates: List[RetrievalCandidate],
               options: RetrievalOptions) -> List[RetrievalCandidate]:
        merged: Dict[str, RetrievalCandidate] = {c.chunk_id: c for c in candidates}
        ordered = sorted(candidates, key=lambda c: -c.similarity_score)

        if options.expand_hierarchical:
            for candidate in ordered:
                for addition in self._hierarchical(candidate, options):
                    self._merge(merged, addition)

        if options.expand_semantic and options.max_semantic_expansions > 0:
            added = 0
            for candidate in ordered:
                if added >= options.max_semantic_expansions:
                    break
                for addition in self._semantic(candidate, options, merged):
                    if added >= options.max_semantic_expansions:
                        break
                    if addition.chunk_id not in merged:
                        merged[addition.chunk_id] = addition
                        added += 1

        expanded = len(merged) - len(candidates)
        if expanded:
            logger.debug(f"Expanded {len(candidates)} candidates by {expanded} chunks")
        return sorted(merged.values(), key=lambda c: (-c.similarity_score, c.chunk_id))

    # ------------------------------------------------------------------
    # Hierarchical
    # ------------------------------------------------------------------

    def _hierarchical(self, candidate: RetrievalCandidate,
                      options: RetrievalOptions) -> List[RetrievalCandidate]:
        chunk = candidate.chunk
        additions = []

        parent = self.store.get_chunk(chunk.parent_id)
        if parent is not None and parent.scale != ChunkScale.DOCUMENT and self._admissible(parent, options):
            additions.append(self._derived(candidate, parent, PARENT_FACTOR, ExpansionSource.HIERARCHICAL))

        siblings = [s for s in (self.store.get_chunk(sid) for sid in chunk.sibling_ids) if s is not None]
        siblings.sort(key=lambda s: (abs(s.sequence_order - chunk.sequence_order), s.sequence_order))
        taken = 0
        for sibling in siblings:
            if taken >= options.max_siblings:
                break
            if self._admissible(sibling, options):
                additions.append(self._derived(candidate, sibling, SIBLING_FACTOR, ExpansionSource.HIERARCHICAL))
                taken += 1
        return additions

    # ------------------------------------------------------------------
    # Semantic
    # ------------------------------------------------------------------

    def _semantic(self, candidate: RetrievalCandidate, options: RetrievalOptions,
                  present: Dict[str, RetrievalCandidate]) -> List[RetrievalCandidate]:
        chunk = candidate.chunk
        additions = []

        relationships = sorted(self.store.relationships_for(chunk.chunk_id), key=lambda r: -r.strength)
        for relationship in relationships:
            other_id = (relationship.target_chunk_id if relationship.source_chunk_id == chunk.chunk_id
                        else relationship.source_chunk_id)
            other = self.store.get_chunk(other_id)
            if other is None or other_id in present or not self._admissible(other, options):
                continue
            additions.append(self._derived(candidate, other, SEMANTIC_FACTOR * relationship.strength,
                                           ExpansionSource.SEMANTIC))

        if chunk.keywords:
            chunk_filter = ChunkFilter(
                scales=(chunk.scale,),
                document_ids=tuple(options.document_ids),
                min_quality=options.quality_threshold,
            )
            scored = []
            for other, _ in self.store.keyword_search(chunk.keywords, KEYWORD_SEARCH_POOL, chunk_filter):
                if other.chunk_id == chunk.chunk_id or other.chunk_id in present:
                    continue
                overlap = jaccard(chunk.keywords, other.keywords)
                if overlap >= options.min_keyword_overlap:
                    scored.append((overlap, other))
            scored.sort(key=lambda item: (-item[0], item[1].chunk_id))
            for _, other in scored:
                additions.append(self._derived(candidate, other, SEMANTIC_FACTOR, ExpansionSource.SEMANTIC))

        return additions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _admissible(self, chunk: Chunk, options: RetrievalOptions) -> bool:
        if self.store.current_version(chunk.document_id) != chunk.document_version:
            return False
        if options.document_ids and chunk.document_id not in options.document_ids:
            return False
        if not self.store.has_any_view(chunk.chunk_id):
            return False
        return chunk.quality_score >= options.quality_threshold

    @staticmethod
    def _derived(candidate: RetrievalCandidate, chunk: Chunk, factor: float,
                 source: ExpansionSource) -> RetrievalCandidate:
        return RetrievalCandidate(
            chunk=chunk,
            similarity_score=candidate.similarity_score * factor,
            strategy_used=candidate.strategy_used,
            expansion_source=source,
            hop=candidate.hop,
        )

    @staticmethod
    def _merge(merged: Dict[str, RetrievalCandidate], addition: RetrievalCandidate) -> None:
        current = merged.get(addition.chunk_id)
        if current is None:
            merged[addition.chunk_id] = addition
        elif (current.expansion_source != ExpansionSource.NONE
              and addition.similarity_score > current.similarity_score):
            # Direct hits keep their provenance
            merged[addition.chunk_id] = addition
