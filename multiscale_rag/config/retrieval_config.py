# -*- coding: utf-8 -*-
"""
Retrieval Config

Defaults for strategy selection, base retrieval, context expansion, ranking
and multi-hop reasoning.

References:
    retrieval/query_analyzer.py (QUERY_PATTERNS)
    retrieval/retrieval_engine.py (RETRIEVAL_CONFIG, MULTI_HOP_CONFIG)
"""
from enum import Enum
from dotenv import load_dotenv

load_dotenv()

# ============================================================================
# RETRIEVAL STRATEGY
# ============================================================================

class RetrievalStrategy(Enum):
    """
    Retrieval strategies selected per query.

    VECTOR_ONLY: Dense similarity on content views
    HYBRID: Dense similarity blended with keyword overlap (default)
    MULTI_SCALE: Search section, paragraph and sentence scales and merge
    CONTEXTUAL: Query embedded together with prior conversation turns
    """
    VECTOR_ONLY = "vector_only"
    HYBRID = "hybrid"
    MULTI_SCALE = "multi_scale"
    CONTEXTUAL = "contextual"


# ============================================================================
# BASE RETRIEVAL
# ============================================================================

RETRIEVAL_CONFIG = {
    'top_n': 10,                     # Candidates per strategy
    'quality_threshold': 0.5,        # Min chunk quality_score
    'final_k': 5,                    # Result budget after diversification
    'max_context_tokens': 8000,      # Approximate token budget for results
    'hybrid_vector_weight': 0.7,
    'hybrid_keyword_weight': 0.3,
    'conversation_turns': 3,         # Prior turns used by CONTEXTUAL
    'min_similarity': 0.0,
}

# Embedding view searched per strategy
STRATEGY_VIEWS = {
    'vector_only': ['content'],
    'hybrid': ['content', 'semantic'],
    'multi_scale': ['hierarchical', 'content'],
    'contextual': ['contextual', 'content'],
}

# Scales searched per strategy (None = all)
STRATEGY_SCALES = {
    'vector_only': ['paragraph', 'sentence'],
    'hybrid': ['paragraph', 'sentence'],
    'multi_scale': ['section', 'paragraph', 'sentence'],
    'contextual': ['paragraph', 'section'],
}


# ============================================================================
# CONTEXT EXPANSION
# ============================================================================

EXPANSION_CONFIG = {
    'hierarchical': True,
    'semantic': True,
    'max_siblings': 2,
    'max_semantic_expansions': 3,
    'min_keyword_overlap': 0.2,      # Jaccard on extracted key terms
    'parent_score_factor': 0.8,
    'sibling_score_factor': 0.9,
    'semantic_score_factor': 0.7,
}


# ============================================================================
# RANKING & DIVERSIFICATION
# ============================================================================

RANKING_CONFIG = {
    'mmr_lambda': 0.5,
    'duplication_ceiling': 0.9,      # Max pairwise similarity in final set
    'lost_in_middle': True,
    'relationship_bonus': 0.05,      # Per linked already-selected chunk
}


# ============================================================================
# MULTI-HOP
# ============================================================================

MULTI_HOP_CONFIG = {
    'enabled': True,
    'max_hops': 2,
    'confidence_threshold': 0.7,
    'min_new_quality': 0.5,
    'max_gap_terms': 6,
}


# ============================================================================
# QUERY ANALYSIS PATTERNS
# ============================================================================

QUERY_PATTERNS = {
    'factual': [r'^(?:what|who|when|where|which)\b', r'\bdefine\b', r'\bdefinition of\b', r'\bmeaning of\b'],
    'procedural': [r'^how (?:do|can|to|should)\b', r'\bsteps?\b', r'\bprocess\b', r'\bprocedure\b', r'\binstructions?\b'],
    'comparative': [r'\bcompare\b', r'\bcomparison\b', r'\bversus\b', r'\bvs\.?\b', r'\bdifference(?:s)? between\b', r'\bacross\b'],
    'troubleshooting': [r'\berror\b', r'\bfail(?:s|ed|ure)?\b', r'\bnot working\b', r'\bissue\b', r'\bproblem\b', r'\bfix\b', r'\btroubleshoot'],
}

STRUCTURE_SPANNING_PATTERNS = [
    r'\bacross (?:sections|chapters|documents|the document)\b',
    r'\bthroughout\b',
    r'\bsections?\b.*\band\b.*\bsections?\b',
    r'\bsummar(?:y|ize|ise)\b',
    r'\boverall\b',
]

EXACT_TERM_PATTERNS = [
    r'"[^"]+"',
    r"'[^']+'",
    r'\b[A-Z]{2,}[-_]?\d+\b',        # Codes like ISO-27001, SEC10
    r'\b\w+_\w+\b',                  # Identifiers
    r'\b\d+(?:\.\d+)+\b',            # Section numbers
]

AMBIGUOUS_REFERENTS = [
    'it', 'this', 'that', 'these', 'those', 'they', 'them', 'he', 'she',
    'its', 'their', 'the above', 'the former', 'the latter',
]

SYSTEM_QUERY_KEYWORDS = [
    'health check', 'system status', 'service test', 'ping',
    'status check', 'health test',
]

MULTI_FACT_PATTERNS = [
    r'\band\b.*\?',
    r'\bboth\b',
    r'\bas well as\b',
    r'\bwhat\b.*\band\b.*\b(?:how|why|when)\b',
]
