# -*- coding: utf-8 -*-
"""
Semantic boundary detection over sentence streams

Scores every gap between adjacent sentences by similarity drop
(1 - cosine similarity of the two sentence embeddings) and packs sentences
into segments that respect a scale's token bounds. A gap becomes a boundary
when its drop exceeds the threshold (default 0.3, i.e. similarity < 0.7) and
the segment it closes satisfies the min/max token bounds. Among qualifying
gaps the largest drop wins, ties going to the gap whose segment is closest to
the target size. When nothing qualifies before the max bound, the segment is
hard-split at the token limit and marked forced. Sentences are atomic and no
text is ever dropped; a single sentence over the max bound becomes its own
oversized segment.

References:
    config.ingestion_config.CHUNKING_CONFIG: similarity_drop_threshold
    processing/chunks/hierarchical_chunker.py: consumer of segment()
"""
# Standard library
import logging
import threading
from typing import List, Optional, Sequence, Set

# Third-party
import numpy as np

# Foundation
from multiscale_rag.utils.dataclasses import BoundaryCandidate, Segment
from multiscale_rag.utils.embedder import EmbeddingCapability
from multiscale_rag.utils.text_analysis import adjacent_similarities, estimate_tokens

# Config
from multiscale_rag.config.ingestion_config import CHUNKING_CONFIG

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = CHUNKING_CONFIG.get('similarity_drop_threshold', 0.3)
TIE_EPSILON = 1e-6
PREFERRED_BREAK_MARGIN = 0.2


class BoundaryDetector:
    """
    Split point scoring and size-constrained segmentation.

    Args:
        embedder: Capability used for on-demand sentence embeddings. Without
            one (or when semantic detection is disabled) segmentation packs
            sentences toward the target size.
        threshold: Minimum similarity drop for a semantic boundary
    """

    def __init__(self, embedder: Optional[EmbeddingCapability] = None,
                 threshold: float = DEFAULT_THRESHOLD):
        self.embedder = embedder
        self.threshold = threshold
        self.stats = {'segments': 0, 'semantic_boundaries': 0, 'forced_splits': 0,
                      'oversized_units': 0, 'embedding_failures': 0}
        self.stats_lock = threading.Lock()

    def _count(self, key: str, n: int = 1) -> None:
        with self.stats_lock:
            self.stats[key] += n

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def embed_sentences(self, sentences: Sequence[str]) -> Optional[np.ndarray]:
        """Embed sentences, or None when no capability is available or it fails."""
        if self.embedder is None or len(sentences) < 2:
            return None
        try:
            return self.embedder.embed(list(sentences))
        except Exception as e:
            # Boundary scoring degrades to size-based packing
            logger.warning(f"Sentence embedding failed, using size-based boundaries: {e}")
            self._count('embedding_failures')
            return None

    def confidence_for(self, similarity_drop: float) -> float:
        """Map a drop to [0,1]; exactly 0.5 at the threshold."""
        if self.threshold <= 0:
            return 1.0
        if similarity_drop <= self.threshold:
            return 0.5 * similarity_drop / self.threshold
        span = max(1e-9, 1.0 - self.threshold)
        return min(1.0, 0.5 + 0.5 * (similarity_drop - self.threshold) / span)

    def score_boundaries(
        self,
        sentences: Sequence[str],
        embeddings: Optional[np.ndarray] = None
    ) -> List[BoundaryCandidate]:
        """
        Score the gap before every sentence after the first.

        Args:
            sentences: Ordered sentences
            embeddings: Precomputed sentence embeddings (embedded on demand if None)

        Returns:
            One BoundaryCandidate per gap, ``position`` = index of the sentence
            that would start the next segment
        """
        if len(sentences) < 2:
            return []
        if embeddings is None:
            embeddings = self.embed_sentences(sentences)
        if embeddings is None:
            return [BoundaryCandidate(position=i, similarity_drop=0.0, confidence=0.0)
                    for i in range(1, len(sentences))]

        candidates = []
        for i, similarity in enumerate(adjacent_similarities(embeddings), start=1):
            drop = float(np.clip(1.0 - similarity, 0.0, 1.0))
            candidates.append(BoundaryCandidate(
                position=i,
                similarity_drop=drop,
                confidence=self.confidence_for(drop),
            ))
        return candidates

    # ------------------------------------------------------------------
    # Segmentation
    # ------------------------------------------------------------------

    def segment(
        self,
        sentences: Sequence[str],
        min_tokens: int,
        max_tokens: int,
        target_tokens: Optional[int] = None,
        embeddings: Optional[np.ndarray] = None,
        semantic: bool = True,
        preferred_breaks: Optional[Set[int]] = None,
    ) -> List[Segment]:
        """
        Pack sentences into segments within [min_tokens, max_tokens].

        Args:
            sentences: Ordered sentences
            min_tokens: Minimum tokens for a segment closed at a semantic boundary
            max_tokens: Hard maximum (only exceeded by a single oversized sentence)
            target_tokens: Preferred size for tie-breaking and size-based packing
            embeddings: Precomputed sentence embeddings
            semantic: Use similarity drops; False packs toward target_tokens
            preferred_breaks: Positions of structural breaks (paragraph starts),
                scored at least PREFERRED_BREAK_MARGIN above the threshold

        Returns:
            Segments covering every sentence exactly once, in order
        """
        if not sentences:
            return []

        target = target_tokens or (min_tokens + max_tokens) // 2
        token_counts = [estimate_tokens(s) for s in sentences]
        prefix = np.concatenate([[0], np.cumsum(token_counts)]).astype(int)

        # Empty when semantic scoring is off or embeddings are unavailable
        drops = {}
        if semantic and len(sentences) > 1:
            if embeddings is None:
                embeddings = self.embed_sentences(sentences)
            if embeddings is not None:
                for candidate in self.score_boundaries(sentences, embeddings):
                    drops[candidate.position] = candidate
        semantic_active = bool(drops)

        for position in preferred_breaks or ():
            if not 0 < position < len(sentences):
                continue
            floor = min(1.0, self.threshold + PREFERRED_BREAK_MARGIN)
            current = drops.get(position)
            if current is None or current.similarity_drop < floor:
                drops[position] = BoundaryCandidate(
                    position=position,
                    similarity_drop=floor,
                    confidence=self.confidence_for(floor),
                )

        def span(a: int, b: int) -> int:
            return int(prefix[b] - prefix[a])

        segments: List[Segment] = []
        n = len(sentences)
        start = 0

        while start < n:
            if token_counts[start] > max_tokens:
                segments.append(self._make(sentences, token_counts, start, start + 1,
                                           confidence=1.0, oversized=True))
                self._count('oversized_units')
                start += 1
                continue

            remainder_fits = span(start, n) <= max_tokens

            # Semantic boundaries closing a segment within bounds
            best = None
            for position in range(start + 1, n):
                size = span(start, position)
                if size > max_tokens:
                    break
                candidate = drops.get(position)
                if candidate is None or candidate.similarity_drop <= self.threshold:
                    continue
                if size < min_tokens:
                    continue
                if remainder_fits and span(position, n) < min_tokens:
                    continue
                key = (candidate.similarity_drop, -abs(size - target))
                if best is None or self._better(key, best[0]):
                    best = (key, position, candidate.confidence)

            if best is not None:
                _, end, confidence = best
                segments.append(self._make(sentences, token_counts, start, end, confidence))
                self._count('semantic_boundaries')
                start = end
                continue

            if remainder_fits:
                segments.append(self._make(sentences, token_counts, start, n, confidence=1.0))
                start = n
                continue

            # No qualifying boundary inside the window
            forced = semantic_active
            limit = max_tokens if forced else max(min_tokens, target)
            end = start + 1
            while end < n and span(start, end + 1) <= limit:
                end += 1
            confidence = drops[end].confidence if end in drops else 0.5
            segments.append(self._make(sentences, token_counts, start, end,
                                       confidence=0.0 if forced else confidence,
                                       forced=forced))
            if forced:
                self._count('forced_splits')
            start = end

        self._count('segments', len(segments))
        return segments

    @staticmethod
    def _better(key, other) -> bool:
        drop, closeness = key
        other_drop, other_closeness = other
        if abs(drop - other_drop) > TIE_EPSILON:
            return drop > other_drop
        return closeness > other_closeness

    @staticmethod
    def _make(sentences, token_counts, start, end, confidence, forced=False, oversized=False) -> Segment:
        return Segment(
            sentences=list(sentences[start:end]),
            token_count=int(sum(token_counts[start:end])),
            start_index=start,
            boundary_confidence=float(confidence),
            forced=forced,
            oversized=oversized,
        )
