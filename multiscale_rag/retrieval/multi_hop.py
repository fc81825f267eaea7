# -*- coding: utf-8 -*-
"""
Multi-hop retrieval.

Hop 1 runs the original query. Its confidence combines the mean of the top
three similarity scores with the share of query key terms covered by the
retrieved text (for queries asking for several facts, the lower of the two
counts, since every fact has to be covered). When confidence is below the
threshold (default 0.7), a follow-up query is built from the key terms hop 1
did not cover and retrieved with the original query added to the
conversation context. Hops stop at ``max_hops`` (default 2), when nothing
is left uncovered, or when a hop adds no new chunk of sufficient quality.

Cancellation is cooperative: the event is checked before each hop and
results up to the last completed hop are returned.
"""
# Standard library
import logging
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

# Foundation
from multiscale_rag.config.settings import RetrievalOptions
from multiscale_rag.utils.dataclasses import HopRecord, QueryAnalysis, RetrievalCandidate
from multiscale_rag.utils.errors import RetrievalCancelled
from multiscale_rag.utils.text_analysis import words

# Config
from multiscale_rag.config.retrieval_config import MULTI_HOP_CONFIG

logger = logging.getLogger(__name__)

MIN_NEW_QUALITY = MULTI_HOP_CONFIG.get('min_new_quality', 0.5)
MAX_GAP_TERMS = MULTI_HOP_CONFIG.get('max_gap_terms', 6)
TOP_SCORES = 3

# (query text, hop number, conversation context) -> candidates
HopRetriever = Callable[[str, int, List[str]], List[RetrievalCandidate]]


def covered_terms(terms: Sequence[str], candidates: Sequence[RetrievalCandidate]) -> List[str]:
    present = set()
    for candidate in candidates:
        present.update(words(candidate.chunk.content))
    return [t for t in terms if t.lower() in present]


def hop_confidence(analysis: QueryAnalysis, candidates: Sequence[RetrievalCandidate]) -> float:
    """Answer confidence in [0,1] from similarity strength and key-term coverage."""
    if not candidates:
        return 0.0
    top = sorted((c.similarity_score for c in candidates), reverse=True)[:TOP_SCORES]
    similarity = min(1.0, max(0.0, sum(top) / len(top)))
    terms = analysis.key_terms
    coverage = len(covered_terms(terms, candidates)) / len(terms) if terms else 1.0
    if analysis.implies_multiple_facts:
        return min(similarity, coverage)
    return 0.5 * similarity + 0.5 * coverage


class MultiHopReasoner:
    """Iterative retrieval driven by uncovered query terms."""

    def __init__(self, min_new_quality: float = MIN_NEW_QUALITY, max_gap_terms: int = MAX_GAP_TERMS):
        self.min_new_quality = min_new_quality
        self.max_gap_terms = max_gap_terms

    def gap_query(self, analysis: QueryAnalysis, candidates: Sequence[RetrievalCandidate]) -> Optional[str]:
        """Follow-up query from key terms absent in retrieved text, or None."""
        covered = set(covered_terms(analysis.key_terms, candidates))
        missing = [t for t in analysis.key_terms if t not in covered][:self.max_gap_terms]
        if not missing:
            return None
        return ' '.join(missing)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], hop: int) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RetrievalCancelled(f"Retrieval cancelled before hop {hop}")

    def run(
        self,
        query: str,
        analysis: QueryAnalysis,
        options: RetrievalOptions,
        retrieve_hop: HopRetriever,
        context: Optional[Sequence[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[List[RetrievalCandidate], List[HopRecord], bool]:
        """
        Run hop 1 and follow-up hops while confidence stays low.

        Returns:
            (merged candidates, hop records, cancelled)
        """
        merged: Dict[str, RetrievalCandidate] = {}
        hops: List[HopRecord] = []
        accumulated = list(context or [])
        max_hops = max(1, options.max_hops) if options.multi_hop else 1

        try:
            self._check_cancelled(cancel_event, 1)
            first = retrieve_hop(query, 1, list(accumulated))
            for candidate in first:
                candidate.hop = 1
                merged[candidate.chunk_id] = candidate
            confidence = hop_confidence(analysis, first)
            hops.append(HopRecord(hop=1, query=query, new_chunk_ids=[c.chunk_id for c in first],
                                  confidence=confidence))

            hop = 1
            while hop < max_hops and confidence < options.confidence_threshold:
                follow_up = self.gap_query(analysis, list(merged.values()))
                if follow_up is None:
                    break
                hop += 1
                self._check_cancelled(cancel_event, hop)
                accumulated.append(query)

                new = []
                for candidate in retrieve_hop(follow_up, hop, list(accumulated)):
                    if candidate.chunk_id in merged or candidate.chunk.quality_score < self.min_new_quality:
                        continue
                    candidate.hop = hop
                    merged[candidate.chunk_id] = candidate
                    new.append(candidate)

                confidence = hop_confidence(analysis, list(merged.values()))
                hops.append(HopRecord(hop=hop, query=follow_up, new_chunk_ids=[c.chunk_id for c in new],
                                      confidence=confidence))
                logger.debug(f"Hop {hop}: '{follow_up}' added {len(new)} chunks, confidence {confidence:.2f}")
                if not new:
                    break
        except RetrievalCancelled as e:
            logger.info(f"{e}; returning {len(merged)} candidates from {len(hops)} completed hops")
            return list(merged.values()), hops, True

        return list(merged.values()), hops, False
