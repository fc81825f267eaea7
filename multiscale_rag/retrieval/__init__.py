# -*- coding: utf-8 -*-
"""
Retrieval package for multi-strategy contextual retrieval.

Contains QueryAnalyzer (query classification and strategy selection), the
retrieval strategies (vector-only, hybrid, multi-scale, contextual),
ContextExpander (hierarchical and semantic expansion), MultiHopReasoner
(gap-driven follow-up hops), ResultRanker (MMR, token budget,
lost-in-the-middle ordering) and RetrievalEngine (full query flow).
"""
from multiscale_rag.retrieval.query_analyzer import QueryAnalyzer
from multiscale_rag.retrieval.context_expander import ContextExpander
from multiscale_rag.retrieval.multi_hop import MultiHopReasoner
from multiscale_rag.retrieval.result_ranker import ResultRanker
from multiscale_rag.retrieval.retrieval_engine import RetrievalEngine

__all__ = [
    'QueryAnalyzer',
    'ContextExpander',
    'MultiHopReasoner',
    'ResultRanker',
    'RetrievalEngine',
]
