# -*- coding: utf-8 -*-
"""
Embedding quality validation.

A vector is rejected when it is degenerate (non-finite or zero norm) or when
its cosine similarity to the embedding of the source text's TF summary (top
terms by frequency) falls below a floor. The summary comparison is a cheap
proxy for "this vector is about this text"; it catches zeroed, truncated or
mis-ordered model outputs.
"""
# Standard library
import logging
from typing import Callable, List, Optional, Sequence, Tuple

# Third-party
import numpy as np

# Foundation
from multiscale_rag.utils.text_analysis import cosine, tf_summary

logger = logging.getLogger(__name__)


def is_degenerate(vector: np.ndarray) -> bool:
    """True for non-finite or zero-norm vectors."""
    vector = np.asarray(vector, dtype=np.float32)
    if vector.size == 0 or not np.all(np.isfinite(vector)):
        return True
    return float(np.linalg.norm(vector)) <= 1e-12


class EmbeddingQualityValidator:
    """
    Score vectors against their texts.

    Args:
        min_quality: Minimum cosine to the summary embedding
        summary_terms: Number of TF terms in the summary
    """

    def __init__(self, min_quality: float = 0.1, summary_terms: int = 8):
        self.min_quality = min_quality
        self.summary_terms = summary_terms

    def validate(
        self,
        texts: Sequence[str],
        vectors: np.ndarray,
        embed_fn: Optional[Callable[[List[str]], np.ndarray]] = None,
    ) -> List[Tuple[bool, float]]:
        """
        Validate a batch of vectors.

        Args:
            texts: Source texts, aligned with vectors
            vectors: Embeddings to validate
            embed_fn: Embeds summaries with the same model; when missing or
                failing, only the degenerate-vector check applies

        Returns:
            (accepted, quality_score) per vector, quality in [0, 1]
        """
        results: List[Optional[Tuple[bool, float]]] = [None] * len(texts)
        summary_index = []
        summaries = []

        for i, (text, vector) in enumerate(zip(texts, vectors)):
            if is_degenerate(vector):
                results[i] = (False, 0.0)
                continue
            summary = tf_summary(text, self.summary_terms)
            if summary and embed_fn is not None:
                summary_index.append(i)
                summaries.append(summary)
            else:
                results[i] = (True, 1.0)

        if summaries:
            summary_vectors = None
            try:
                summary_vectors = embed_fn(summaries)
            except Exception as e:
                logger.warning(f"Summary embedding failed, skipping similarity check: {e}")

            for j, i in enumerate(summary_index):
                if summary_vectors is None or j >= len(summary_vectors):
                    results[i] = (True, 1.0)
                    continue
                similarity = max(0.0, min(1.0, cosine(vectors[i], summary_vectors[j])))
                results[i] = (similarity >= self.min_quality, similarity)

        return results
