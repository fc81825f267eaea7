# -*- coding: utf-8 -*-
"""
Retrieval engine coordinating strategy selection, search, expansion and ranking.

Query flow:
    (1) Query analysis - classify the query; health-check queries bypass
        retrieval with status SYSTEM_BYPASS
    (2) Strategy selection - VECTOR_ONLY / HYBRID / MULTI_SCALE / CONTEXTUAL
        (or the strategy forced through RetrievalOptions)
    (3) Base retrieval per hop - top-N candidates above the quality threshold;
        keyword search when the query embedding is unavailable
    (4) Context expansion - parents, siblings and semantic neighbors
    (5) Multi-hop - follow-up hops while answer confidence is low
    (6) Ranking - MMR complementarity, token budget, lost-in-the-middle order

An empty candidate set is a normal outcome (status NO_QUALIFYING_CONTEXT);
retrieve() does not raise for it. The engine is read-only against the store
and safe to call from several threads.

Examples:
    engine = RetrievalEngine(store, orchestrator)
    result = engine.retrieve("How is net asset value calculated?")
    for candidate in result.candidates:
        print(candidate.final_rank, candidate.chunk_id, f"{candidate.similarity_score:.3f}")

    # Follow-up question in a conversation
    result = engine.retrieve("What about its fees?", context=["Tell me about fund A"])
    result.strategy      # RetrievalStrategy.CONTEXTUAL
"""
# Standard library
import logging
import threading
import time
from typing import Dict, List, Optional, Sequence

# Third-party
import numpy as np

# Foundation
from multiscale_rag.config.settings import RetrievalOptions
from multiscale_rag.embedding.embedding_orchestrator import EmbeddingOrchestrator
from multiscale_rag.retrieval.context_expander import ContextExpander
from multiscale_rag.retrieval.multi_hop import MultiHopReasoner
from multiscale_rag.retrieval.query_analyzer import QueryAnalyzer
from multiscale_rag.retrieval.result_ranker import ResultRanker
from multiscale_rag.retrieval.strategies import build_strategies
from multiscale_rag.storage.vector_store import VectorStore
from multiscale_rag.utils.dataclasses import (
    EmbeddingType,
    RetrievalCandidate,
    RetrievalResult,
    RetrievalStatus,
)
from multiscale_rag.utils.errors import EmbeddingCapabilityError

# Config
from multiscale_rag.config.retrieval_config import RetrievalStrategy

logger = logging.getLogger(__name__)


class RetrievalEngine:
    """
    Multi-strategy contextual retrieval over a VectorStore.

    Args:
        store: Chunk and embedding store
        orchestrator: Embeds queries; None restricts retrieval to keyword search
        options: Default options (per-call options override)
        analyzer: Query analyzer (default rule-based)
    """

    def __init__(
        self,
        store: VectorStore,
        orchestrator: Optional[EmbeddingOrchestrator] = None,
        options: Optional[RetrievalOptions] = None,
        analyzer: Optional[QueryAnalyzer] = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.options = options or RetrievalOptions.from_config()
        self.analyzer = analyzer or QueryAnalyzer()
        self.strategies = build_strategies(store)
        self.expander = ContextExpander(store)
        self.ranker = ResultRanker(
            vector_lookup=lambda chunk_id: store.get_vector(chunk_id, EmbeddingType.CONTENT),
            relationship_lookup=store.relationships_for,
        )
        self.reasoner = MultiHopReasoner()

        self.stats = {
            'total_queries': 0,
            'total_time': 0.0,
            'strategy_usage': {s.value: 0 for s in RetrievalStrategy},
            'no_context_results': 0,
            'system_bypasses': 0,
            'fallback_searches': 0,
            'cancelled': 0,
        }
        self.stats_lock = threading.Lock()

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def retrieve(
        self,
        query: str,
        context: Optional[Sequence[str]] = None,
        options: Optional[RetrievalOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrievalResult:
        """
        Retrieve ranked context for a query.

        Args:
            query: Query text
            context: Prior conversation turns, oldest first
            options: Per-call options (defaults to the engine's)
            cancel_event: Set to stop between hops; partial results are returned

        Returns:
            RetrievalResult; status NO_QUALIFYING_CONTEXT when nothing qualifies
        """
        start = time.time()
        options = options or self.options
        analysis = self.analyzer.analyze(query, context)

        if analysis.is_system_query:
            logger.info(f"System query bypassed retrieval: '{query}'")
            self._record(start, None, system=True)
            return RetrievalResult(query=query, status=RetrievalStatus.SYSTEM_BYPASS, analysis=analysis)

        tag = options.strategy or self.analyzer.select_strategy(analysis)
        strategy = self.strategies[tag]
        trace = {'base_candidates': 0, 'expanded_candidates': 0, 'fallback_searches': 0}

        def run_hop(text: str, hop: int, hop_context: List[str]) -> List[RetrievalCandidate]:
            vector = self._embed_query(strategy.query_text(text, hop_context))
            if vector is None:
                trace['fallback_searches'] += 1
            hop_analysis = analysis if hop == 1 else self.analyzer.analyze(text, hop_context)
            base = strategy.search(vector, hop_analysis, options)
            expanded = self.expander.expand(base, options)
            trace['base_candidates'] += len(base)
            trace['expanded_candidates'] += len(expanded) - len(base)
            return expanded

        if not query.strip():
            candidates, hops, cancelled = [], [], False
        else:
            candidates, hops, cancelled = self.reasoner.run(
                query, analysis, options, run_hop, context=context, cancel_event=cancel_event,
            )

        ranked = self.ranker.rank(candidates, options)
        stats = {
            'strategy': tag.value,
            'hops': len(hops),
            'elapsed_sec': round(time.time() - start, 4),
            'final_tokens': sum(c.chunk.token_count for c in ranked),
            **trace,
        }

        if not ranked:
            status = RetrievalStatus.CANCELLED if cancelled else RetrievalStatus.NO_QUALIFYING_CONTEXT
            self._record(start, tag, empty=True, cancelled=cancelled, fallbacks=trace['fallback_searches'])
            logger.info(f"No qualifying context for '{query}' ({tag.value})")
            result = RetrievalResult.no_qualifying_context(query, tag, analysis, stats)
            result.status = status
            result.hops = hops
            return result

        self._record(start, tag, cancelled=cancelled, fallbacks=trace['fallback_searches'])
        logger.info(
            f"Retrieved {len(ranked)} chunks for '{query}' "
            f"(strategy={tag.value}, hops={len(hops)}, {stats['elapsed_sec']:.3f}s)"
        )
        return RetrievalResult(
            query=query,
            candidates=ranked,
            strategy=tag,
            status=RetrievalStatus.CANCELLED if cancelled else RetrievalStatus.OK,
            analysis=analysis,
            hops=hops,
            stats=stats,
        )

    def get_stats(self) -> Dict:
        with self.stats_lock:
            stats = dict(self.stats)
            stats['strategy_usage'] = dict(self.stats['strategy_usage'])
        total = stats['total_queries']
        stats['average_retrieval_time'] = round(stats.pop('total_time') / total, 4) if total else 0.0
        return stats

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _embed_query(self, text: str) -> Optional[np.ndarray]:
        if self.orchestrator is None:
            return None
        try:
            return self.orchestrator.embed_query(text)
        except (EmbeddingCapabilityError, TimeoutError) as e:
            logger.warning(f"Query embedding unavailable, falling back to keyword search: {e}")
            return None

    def _record(self, start: float, tag: Optional[RetrievalStrategy], system: bool = False,
                empty: bool = False, cancelled: bool = False, fallbacks: int = 0) -> None:
        with self.stats_lock:
            self.stats['total_queries'] += 1
            self.stats['total_time'] += time.time() - start
            if system:
                self.stats['system_bypasses'] += 1
            if tag is not None:
                self.stats['strategy_usage'][tag.value] += 1
            if empty:
                self.stats['no_context_results'] += 1
            if cancelled:
                self.stats['cancelled'] += 1
            self.stats['fallback_searches'] += fallbacks
