# -*- coding: utf-8 -*-
"""
Embedding package for multi-view chunk embeddings.

Contains view_builder (content, contextual, hierarchical and semantic view
texts), quality_validator (degenerate and low-quality vector detection) and
embedding_orchestrator (batched, cached, rate-limited generation).
"""
from multiscale_rag.embedding.embedding_orchestrator import EmbeddingOrchestrator
from multiscale_rag.embedding.quality_validator import EmbeddingQualityValidator
from multiscale_rag.embedding.view_builder import ViewBuilder

__all__ = [
    'EmbeddingOrchestrator',
    'EmbeddingQualityValidator',
    'ViewBuilder',
]
