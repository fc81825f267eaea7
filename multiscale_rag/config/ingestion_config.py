# -*- coding: utf-8 -*-
"""
Module: ingestion_config.py
Package: multiscale_rag.config
Purpose: Configuration for chunking, embedding and the ingestion pipeline

Dict-based defaults read by the processing, embedding and pipeline modules via
``CONFIG.get('key', default)``. A handful of runtime knobs (embedding model,
device, batch size, worker count) can be overridden from the environment or a
``.env`` file.

References:
    - processing/chunks/hierarchical_chunker.py (SCALE_CONFIG, CHUNKING_CONFIG)
    - embedding/embedding_orchestrator.py (EMBEDDING_CONFIG)
    - pipeline/pipeline_orchestrator.py (PIPELINE_CONFIG)
"""

import os
from dotenv import load_dotenv

load_dotenv()


# ============================================================================
# CHUNK SCALES
# ============================================================================

# Token bounds per scale (tokens estimated as ceil(words * 1.33))
SCALE_CONFIG = {
    'document': {
        'max_tokens': 8000,
        'min_tokens': 4000,
        'overlap_tokens': 0,           # Roots carry no overlap
    },
    'section': {
        'max_tokens': 2000,
        'min_tokens': 500,
        'overlap_tokens': 100,
    },
    'paragraph': {
        'max_tokens': 500,
        'min_tokens': 100,
        'overlap_tokens': 50,
    },
    'sentence': {
        'max_tokens': 150,
        'min_tokens': 20,
        'overlap_tokens': 10,
    },
}


# ============================================================================
# HIERARCHICAL CHUNKING
# ============================================================================

CHUNKING_CONFIG = {
    # Global flags
    'adaptive_sizing': True,
    'semantic_boundary_detection': True,
    'preserve_cross_references': True,

    # Boundary detection
    'similarity_drop_threshold': 0.3,    # Accept boundary when 1 - cos > 0.3
    'tokens_per_word': 1.33,

    # Adaptive sizing factor bounds
    'complexity_min_factor': 0.5,
    'complexity_max_factor': 1.5,

    # Quality gate (flag, never drop)
    'quality_floor': 0.4,

    # Parent/child relationship weights
    'relationship_weights': {
        'containment': 0.4,
        'path_similarity': 0.3,
        'position_proximity': 0.2,
        'content_similarity': 0.1,
    },
    'min_parent_score': 0.3,

    # Heading detection (markdown, numbered, legal-style, all caps)
    'heading_patterns': [
        r'^#{1,6}\s+\S.*$',
        r'^(?:Chapter|Section|Article|Part)\s+[\dIVXLC]+\b.*$',
        r'^\d+(?:\.\d+)*\.?\s+[A-Z].{0,80}$',
        r'^[A-Z][A-Z0-9\s\-&]{3,60}$',
    ],

    # Cross-reference detection
    'cross_reference_patterns': [
        r'\b(?:see|refer to|as described in)\s+(?:section|chapter|article)\s+(\d+(?:\.\d+)*)',
        r'\bstep\s+(\d+)\b',
    ],
}


# ============================================================================
# EMBEDDING VIEWS
# ============================================================================

EMBEDDING_CONFIG = {
    # Embedding capability
    'model_name': os.getenv('EMBEDDING_MODEL', 'BAAI/bge-small-en-v1.5'),
    'device': os.getenv('EMBEDDING_DEVICE'),
    'hashing_features': 1024,            # Offline HashingEmbedder dimension

    # Views requested by default
    'default_views': ['content', 'contextual', 'hierarchical', 'semantic'],

    # Batching and retries
    'batch_size': int(os.getenv('EMBEDDING_BATCH_SIZE', '100')),
    'max_retries': 3,
    'retry_base_delay': 1.0,             # Seconds, doubled per attempt
    'batch_timeout': 30.0,               # Seconds per external call
    'max_outstanding_requests': 4,       # Concurrent external calls
    'max_calls_per_minute': 600,

    # Contextual view window
    'context_window_tokens': 1000,

    # Semantic view enrichment
    'max_keywords': 10,
    'domain_boost': 1.2,

    # Quality validation
    'min_vector_quality': 0.1,           # Cosine vs TF summary embedding
    'summary_terms': 8,

    # Cache
    'cache_max_size': 1000,
}

# Domain vocabularies used to boost semantic-view keywords
DOMAIN_KEYWORDS = {
    'fund_management': {
        'core': ['fund', 'nav', 'portfolio', 'investment', 'asset', 'management'],
        'technical': ['valuation', 'allocation', 'diversification', 'benchmark', 'performance'],
        'regulatory': ['compliance', 'audit', 'regulation', 'sec', 'reporting'],
        'financial': ['return', 'risk', 'yield', 'expense', 'fee', 'capital'],
    },
}

DEFAULT_DOMAIN = os.getenv('RAG_DOMAIN', 'fund_management')


# ============================================================================
# PIPELINE
# ============================================================================

PIPELINE_CONFIG = {
    'max_workers': int(os.getenv('PIPELINE_MAX_WORKERS', '4')),
    'merge_flagged_chunks': False,
    'store_backend': os.getenv('VECTOR_STORE_BACKEND', 'memory'),   # memory | faiss
}
