# -*- coding: utf-8 -*-
"""
Scoring functions for hierarchical chunking

- complexity_factor: adaptive sizing multiplier in [0.5, 1.5]; dense
  technical text (high vocabulary diversity, long sentences) gets a factor
  below 1 and therefore smaller chunks, plain prose a factor above 1.
- parent_score: weighted parent/child link score
  0.4 containment + 0.3 path similarity + 0.2 position proximity
  + 0.1 content similarity.
- coherence_score: intra-chunk consistency from the variance of sentence
  similarities to the chunk centroid.
- quality_score: length-within-bounds, boundary confidence and reference
  completeness.

All scores are clipped to [0, 1].
"""
# Standard library
import re
from typing import Dict, Optional, Sequence, Tuple

# Third-party
import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

# Foundation
from multiscale_rag.config.settings import ScaleConfig
from multiscale_rag.utils.text_analysis import (
    average_sentence_length,
    jaccard,
    long_words,
    vocabulary_diversity,
    word_overlap_ratio,
)

# Config
from multiscale_rag.config.ingestion_config import CHUNKING_CONFIG

RELATIONSHIP_WEIGHTS = CHUNKING_CONFIG.get('relationship_weights', {
    'containment': 0.4,
    'path_similarity': 0.3,
    'position_proximity': 0.2,
    'content_similarity': 0.1,
})

QUALITY_WEIGHTS = {
    'length': 0.5,
    'boundary': 0.3,
    'references': 0.2,
}

# Openers that lean on an antecedent outside the chunk
DANGLING_OPENERS = re.compile(
    r'^(?:it|this|that|these|those|they|he|she|however|therefore|thus|'
    r'furthermore|moreover|also|additionally|consequently)\b',
    re.IGNORECASE
)

LONG_SENTENCE_WORDS = 40.0


def _clip(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def _normalize(text: str) -> str:
    return ' '.join(text.split()).lower()


# ============================================================================
# ADAPTIVE SIZING
# ============================================================================

def complexity_score(text: str, sentences: Sequence[str]) -> float:
    """Complexity in [0,1]: mean of vocabulary diversity and normalized sentence length."""
    diversity = vocabulary_diversity(text)
    length = min(1.0, average_sentence_length(sentences) / LONG_SENTENCE_WORDS)
    return _clip(0.5 * diversity + 0.5 * length)


def complexity_factor(text: str, sentences: Sequence[str],
                      min_factor: float = 0.5, max_factor: float = 1.5) -> float:
    """Size multiplier: max_factor for trivial text down to min_factor for dense text."""
    complexity = complexity_score(text, sentences)
    return float(max_factor - complexity * (max_factor - min_factor))


# ============================================================================
# PARENT / CHILD RELATIONSHIPS
# ============================================================================

def containment(child_text: str, parent_text: str) -> float:
    """1.0 when the child is a substring of the parent, else word overlap ratio."""
    child_norm, parent_norm = _normalize(child_text), _normalize(parent_text)
    if child_norm and child_norm in parent_norm:
        return 1.0
    return word_overlap_ratio(child_text, parent_text)


def path_similarity(child_path: Sequence[str], parent_path: Sequence[str]) -> float:
    """1.0 when the parent path is a proper prefix of the child path, else shared-prefix share."""
    if not parent_path:
        return 0.0
    if len(parent_path) < len(child_path) and list(child_path[:len(parent_path)]) == list(parent_path):
        return 1.0
    shared = 0
    for a, b in zip(child_path, parent_path):
        if a != b:
            break
        shared += 1
    return shared / max(len(child_path), len(parent_path))


def position_proximity(child_range: Tuple[int, int], parent_range: Tuple[int, int],
                       total_units: int) -> float:
    """1.0 when the child span lies inside the parent span, else decays with center distance."""
    c_start, c_end = child_range
    p_start, p_end = parent_range
    if p_start <= c_start and c_end <= p_end:
        return 1.0
    child_center = (c_start + c_end) / 2.0
    parent_center = (p_start + p_end) / 2.0
    return _clip(1.0 - abs(child_center - parent_center) / max(1, total_units))


def content_similarity(child_text: str, parent_text: str) -> float:
    """Jaccard similarity on words longer than three characters."""
    return jaccard(long_words(child_text), long_words(parent_text))


def parent_score(
    child_text: str,
    child_path: Sequence[str],
    child_range: Tuple[int, int],
    parent_text: str,
    parent_path: Sequence[str],
    parent_range: Tuple[int, int],
    total_units: int,
    weights: Optional[Dict[str, float]] = None,
) -> Tuple[float, Dict[str, float]]:
    """
    Score a candidate parent for a child chunk.

    Returns:
        (score, components)
    """
    weights = weights or RELATIONSHIP_WEIGHTS
    components = {
        'containment': containment(child_text, parent_text),
        'path_similarity': path_similarity(child_path, parent_path),
        'position_proximity': position_proximity(child_range, parent_range, total_units),
        'content_similarity': content_similarity(child_text, parent_text),
    }
    score = sum(weights.get(name, 0.0) * value for name, value in components.items())
    return _clip(score), components


# ============================================================================
# CHUNK QUALITY
# ============================================================================

def coherence_score(sentence_embeddings: Optional[np.ndarray]) -> float:
    """
    Coherence from sentence similarity to the chunk centroid.

    Mean similarity penalized by its variance; a single sentence is fully
    coherent, and missing embeddings give a neutral 0.5.
    """
    if sentence_embeddings is None:
        return 0.5
    if len(sentence_embeddings) < 2:
        return 1.0
    centroid = sentence_embeddings.mean(axis=0, keepdims=True)
    if not np.any(centroid):
        return 0.0
    sims = cosine_similarity(sentence_embeddings, centroid)[:, 0]
    return _clip(float(np.mean(sims)) * (1.0 - min(1.0, 4.0 * float(np.var(sims)))))


def length_score(token_count: int, bounds: ScaleConfig) -> float:
    """1.0 inside [min, max], proportional shortfall/excess outside."""
    if token_count <= 0:
        return 0.0
    if token_count < bounds.min_tokens:
        return token_count / bounds.min_tokens
    if token_count > bounds.max_tokens:
        return bounds.max_tokens / token_count
    return 1.0


def reference_completeness(text: str, unresolved_references: int = 0) -> float:
    """
    Penalize text that depends on context it does not contain.

    Dangling openers, unbalanced brackets or quotes, a missing terminal
    punctuation mark and unresolved cross-references each cost a share.
    """
    stripped = text.strip()
    if not stripped:
        return 0.0
    score = 1.0
    if DANGLING_OPENERS.match(stripped):
        score -= 0.3
    if stripped.count('(') != stripped.count(')') or stripped.count('"') % 2:
        score -= 0.2
    if stripped[-1] not in '.!?:;)"\'':
        score -= 0.1
    score -= 0.2 * unresolved_references
    return _clip(score)


def quality_score(token_count: int, bounds: ScaleConfig, boundary_confidence: float,
                  completeness: float) -> float:
    return _clip(
        QUALITY_WEIGHTS['length'] * length_score(token_count, bounds)
        + QUALITY_WEIGHTS['boundary'] * _clip(boundary_confidence)
        + QUALITY_WEIGHTS['references'] * completeness
    )
