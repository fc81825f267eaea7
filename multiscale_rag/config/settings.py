# -*- coding: utf-8 -*-
"""
Immutable configuration structs built from the dict configs.

Components receive these frozen dataclasses by value instead of reading
module-level dicts at call time, so one pipeline can run several
configurations side by side. Every struct has a ``from_config()`` classmethod
that takes its defaults from ingestion_config / retrieval_config and accepts
keyword overrides.

Examples:
    from multiscale_rag.config.settings import ChunkingConfig, ScaleConfig

    config = ChunkingConfig.from_config(adaptive_sizing=False)
    config = config.with_scale('paragraph', max_tokens=500)
"""
# Standard library
import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

# Config
from multiscale_rag.config.ingestion_config import (
    CHUNKING_CONFIG,
    DEFAULT_DOMAIN,
    DOMAIN_KEYWORDS,
    EMBEDDING_CONFIG,
    PIPELINE_CONFIG,
    SCALE_CONFIG,
)
from multiscale_rag.config.retrieval_config import (
    EXPANSION_CONFIG,
    MULTI_HOP_CONFIG,
    RANKING_CONFIG,
    RETRIEVAL_CONFIG,
    RetrievalStrategy,
)


# ============================================================================
# CHUNKING
# ============================================================================

@dataclass(frozen=True)
class ScaleConfig:
    """Token bounds for one chunk scale."""
    max_tokens: int
    min_tokens: int
    overlap_tokens: int = 0

    @property
    def target_tokens(self) -> int:
        return (self.max_tokens + self.min_tokens) // 2

    def scaled(self, factor: float) -> 'ScaleConfig':
        """Bounds multiplied by an adaptive sizing factor (dense text gets < 1)."""
        return ScaleConfig(
            max_tokens=max(1, int(round(self.max_tokens * factor))),
            min_tokens=max(1, int(round(self.min_tokens * factor))),
            overlap_tokens=self.overlap_tokens,
        )


def _default_scales() -> Dict[str, ScaleConfig]:
    return {
        name: ScaleConfig(
            max_tokens=values.get('max_tokens'),
            min_tokens=values.get('min_tokens'),
            overlap_tokens=values.get('overlap_tokens', 0),
        )
        for name, values in SCALE_CONFIG.items()
    }


@dataclass(frozen=True)
class ChunkingConfig:
    """Per-scale bounds plus global chunking flags."""
    scales: Dict[str, ScaleConfig] = field(default_factory=_default_scales, hash=False)
    adaptive_sizing: bool = True
    semantic_boundary_detection: bool = True
    preserve_cross_references: bool = True
    similarity_drop_threshold: float = 0.3
    quality_floor: float = 0.4
    complexity_min_factor: float = 0.5
    complexity_max_factor: float = 1.5
    min_parent_score: float = 0.3

    @classmethod
    def from_config(cls, **overrides) -> 'ChunkingConfig':
        values = dict(
            scales=_default_scales(),
            adaptive_sizing=CHUNKING_CONFIG.get('adaptive_sizing', True),
            semantic_boundary_detection=CHUNKING_CONFIG.get('semantic_boundary_detection', True),
            preserve_cross_references=CHUNKING_CONFIG.get('preserve_cross_references', True),
            similarity_drop_threshold=CHUNKING_CONFIG.get('similarity_drop_threshold', 0.3),
            quality_floor=CHUNKING_CONFIG.get('quality_floor', 0.4),
            complexity_min_factor=CHUNKING_CONFIG.get('complexity_min_factor', 0.5),
            complexity_max_factor=CHUNKING_CONFIG.get('complexity_max_factor', 1.5),
            min_parent_score=CHUNKING_CONFIG.get('min_parent_score', 0.3),
        )
        values.update(overrides)
        return cls(**values)

    def scale(self, name: str) -> ScaleConfig:
        return self.scales[name]

    def with_scale(self, name: str, **bounds) -> 'ChunkingConfig':
        """Copy with one scale's bounds replaced."""
        scales = dict(self.scales)
        scales[name] = replace(scales[name], **bounds)
        return replace(self, scales=scales)


# ============================================================================
# EMBEDDING
# ============================================================================

@dataclass(frozen=True)
class EmbeddingConfig:
    """Batching, retry, cache and enrichment settings for embedding views."""
    model_id: str = 'BAAI/bge-small-en-v1.5'
    batch_size: int = 100
    max_retries: int = 3
    retry_base_delay: float = 1.0
    batch_timeout: float = 30.0
    max_outstanding_requests: int = 4
    max_calls_per_minute: int = 600
    context_window_tokens: int = 1000
    max_keywords: int = 10
    domain_boost: float = 1.2
    domain_terms: Tuple[str, ...] = ()
    min_vector_quality: float = 0.1
    summary_terms: int = 8
    cache_max_size: int = 1000

    @classmethod
    def from_config(cls, domain: Optional[str] = None, **overrides) -> 'EmbeddingConfig':
        vocab = DOMAIN_KEYWORDS.get(domain or DEFAULT_DOMAIN, {})
        terms = tuple(sorted({t for group in vocab.values() for t in group}))
        values = dict(
            model_id=EMBEDDING_CONFIG.get('model_name', 'BAAI/bge-small-en-v1.5'),
            batch_size=EMBEDDING_CONFIG.get('batch_size', 100),
            max_retries=EMBEDDING_CONFIG.get('max_retries', 3),
            retry_base_delay=EMBEDDING_CONFIG.get('retry_base_delay', 1.0),
            batch_timeout=EMBEDDING_CONFIG.get('batch_timeout', 30.0),
            max_outstanding_requests=EMBEDDING_CONFIG.get('max_outstanding_requests', 4),
            max_calls_per_minute=EMBEDDING_CONFIG.get('max_calls_per_minute', 600),
            context_window_tokens=EMBEDDING_CONFIG.get('context_window_tokens', 1000),
            max_keywords=EMBEDDING_CONFIG.get('max_keywords', 10),
            domain_boost=EMBEDDING_CONFIG.get('domain_boost', 1.2),
            domain_terms=terms,
            min_vector_quality=EMBEDDING_CONFIG.get('min_vector_quality', 0.1),
            summary_terms=EMBEDDING_CONFIG.get('summary_terms', 8),
            cache_max_size=EMBEDDING_CONFIG.get('cache_max_size', 1000),
        )
        values.update(overrides)
        return cls(**values)


# ============================================================================
# RETRIEVAL
# ============================================================================

@dataclass(frozen=True)
class RetrievalOptions:
    """Per-call retrieval options. ``strategy`` forces a strategy when set."""
    top_n: int = 10
    quality_threshold: float = 0.5
    final_k: int = 5
    max_context_tokens: int = 8000
    strategy: Optional[RetrievalStrategy] = None
    expand_hierarchical: bool = True
    expand_semantic: bool = True
    max_siblings: int = 2
    max_semantic_expansions: int = 3
    min_keyword_overlap: float = 0.2
    mmr_lambda: float = 0.5
    duplication_ceiling: float = 0.9
    lost_in_middle: bool = True
    multi_hop: bool = True
    max_hops: int = 2
    confidence_threshold: float = 0.7
    document_ids: Tuple[str, ...] = ()

    @classmethod
    def from_config(cls, **overrides) -> 'RetrievalOptions':
        values = dict(
            top_n=RETRIEVAL_CONFIG.get('top_n', 10),
            quality_threshold=RETRIEVAL_CONFIG.get('quality_threshold', 0.5),
            final_k=RETRIEVAL_CONFIG.get('final_k', 5),
            max_context_tokens=RETRIEVAL_CONFIG.get('max_context_tokens', 8000),
            expand_hierarchical=EXPANSION_CONFIG.get('hierarchical', True),
            expand_semantic=EXPANSION_CONFIG.get('semantic', True),
            max_siblings=EXPANSION_CONFIG.get('max_siblings', 2),
            max_semantic_expansions=EXPANSION_CONFIG.get('max_semantic_expansions', 3),
            min_keyword_overlap=EXPANSION_CONFIG.get('min_keyword_overlap', 0.2),
            mmr_lambda=RANKING_CONFIG.get('mmr_lambda', 0.5),
            duplication_ceiling=RANKING_CONFIG.get('duplication_ceiling', 0.9),
            lost_in_middle=RANKING_CONFIG.get('lost_in_middle', True),
            multi_hop=MULTI_HOP_CONFIG.get('enabled', True),
            max_hops=MULTI_HOP_CONFIG.get('max_hops', 2),
            confidence_threshold=MULTI_HOP_CONFIG.get('confidence_threshold', 0.7),
        )
        values.update(overrides)
        return cls(**values)


# ============================================================================
# PIPELINE
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """End-to-end ingestion settings."""
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig.from_config)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig.from_config)
    requested_views: Tuple[str, ...] = ('content', 'contextual', 'hierarchical', 'semantic')
    max_workers: int = 4
    merge_flagged_chunks: bool = False

    @classmethod
    def from_config(cls, **overrides) -> 'PipelineConfig':
        workers = PIPELINE_CONFIG.get('max_workers', 4)
        values = dict(
            chunking=ChunkingConfig.from_config(),
            embedding=EmbeddingConfig.from_config(),
            requested_views=tuple(EMBEDDING_CONFIG.get('default_views', cls.requested_views)),
            max_workers=min(workers, os.cpu_count() or 1),
            merge_flagged_chunks=PIPELINE_CONFIG.get('merge_flagged_chunks', False),
        )
        values.update(overrides)
        return cls(**values)
