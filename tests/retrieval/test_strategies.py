# -*- coding: utf-8 -*-
"""
Base retrieval strategy and context expansion tests on the hand-built fund store.
"""
import numpy as np
import pytest

from multiscale_rag.config.retrieval_config import RetrievalStrategy
from multiscale_rag.config.settings import RetrievalOptions
from multiscale_rag.retrieval.context_expander import ContextExpander
from multiscale_rag.retrieval.query_analyzer import QueryAnalyzer
from multiscale_rag.retrieval.strategies import build_strategies
from multiscale_rag.utils.dataclasses import (
    ChunkScale,
    EmbeddingType,
    ExpansionSource,
    Relationship,
    RelationType,
    RetrievalCandidate,
)

FEES_DIRECTION = np.array([1.0, 0.0, 0.0, 0.0])
RISK_DIRECTION = np.array([0.0, 0.0, 0.0, 1.0])


@pytest.fixture
def strategies(fund_store):
    return build_strategies(fund_store)


@pytest.fixture
def options():
    return RetrievalOptions.from_config()


def analyze(query, context=None):
    return QueryAnalyzer().analyze(query, context)


class TestBaseStrategies:
    """Vector, hybrid, multi-scale and contextual search"""

    def test_vector_only_ranks_paragraphs(self, strategies, options):
        hits = strategies[RetrievalStrategy.VECTOR_ONLY].search(
            FEES_DIRECTION, analyze("What is the management fee?"), options
        )

        assert [c.chunk_id for c in hits[:2]] == ['fees_p0', 'fees_p1']
        assert hits[0].similarity_score == pytest.approx(1.0, abs=1e-5)
        assert all(c.chunk.scale in (ChunkScale.PARAGRAPH, ChunkScale.SENTENCE) for c in hits)
        assert all(c.strategy_used == RetrievalStrategy.VECTOR_ONLY for c in hits)
        assert hits[0].view_type == EmbeddingType.CONTENT

    def test_hybrid_blends_vector_and_keyword_scores(self, strategies, options):
        hits = strategies[RetrievalStrategy.HYBRID].search(FEES_DIRECTION, analyze("management fee"), options)
        scores = {c.chunk_id: c.similarity_score for c in hits}

        p1_cosine = 0.9 / np.sqrt(0.82)
        assert scores['fees_p0'] == pytest.approx(1.0, abs=1e-5)
        assert scores['fees_p1'] == pytest.approx(0.7 * p1_cosine + 0.3, abs=1e-5)
        assert hits[0].chunk_id == 'fees_p0'

    def test_hybrid_keeps_keyword_only_hits(self, strategies, options):
        hits = strategies[RetrievalStrategy.HYBRID].search(RISK_DIRECTION, analyze("custody charges"), options)
        scores = {c.chunk_id: c.similarity_score for c in hits}

        assert scores['risk_p0'] == pytest.approx(0.7, abs=1e-5)
        assert scores['fees_p2'] == pytest.approx(0.3, abs=1e-5)

    def test_keyword_fallback_without_vector(self, strategies, options):
        hits = strategies[RetrievalStrategy.VECTOR_ONLY].search(None, analyze("custody charges"), options)

        assert [c.chunk_id for c in hits] == ['fees_p2']
        assert hits[0].similarity_score == 1.0
        assert hits[0].view_type is None

    def test_multi_scale_returns_several_scales(self, strategies, options):
        hits = strategies[RetrievalStrategy.MULTI_SCALE].search(
            RISK_DIRECTION, analyze("Summarize the risks"), options
        )
        ids = {c.chunk_id for c in hits}

        assert {'risk', 'risk_p0'} <= ids
        assert 'doc' not in ids
        assert {c.chunk.scale for c in hits} >= {ChunkScale.SECTION, ChunkScale.PARAGRAPH}

    def test_contextual_query_text(self, strategies):
        contextual = strategies[RetrievalStrategy.CONTEXTUAL]

        text = contextual.query_text("What about fees?", ["Tell me about fund A", "", "It holds equities"])

        assert text == "Context: Tell me about fund A It holds equities\n\nQuery: What about fees?"
        assert contextual.query_text("What about fees?") == "What about fees?"

    def test_contextual_uses_last_three_turns(self, strategies):
        text = strategies[RetrievalStrategy.CONTEXTUAL].query_text("q", ["one", "two", "three", "four"])
        assert text == "Context: two three four\n\nQuery: q"

    def test_quality_and_document_filters(self, strategies):
        analysis = analyze("What is the management fee?")
        strategy = strategies[RetrievalStrategy.VECTOR_ONLY]

        assert strategy.search(FEES_DIRECTION, analysis, RetrievalOptions.from_config(quality_threshold=0.9)) == []
        assert strategy.search(FEES_DIRECTION, analysis, RetrievalOptions.from_config(document_ids=('other',))) == []


class TestContextExpander:
    """Hierarchical and semantic expansion"""

    @staticmethod
    def candidate(store, chunk_id, score=1.0):
        return RetrievalCandidate(chunk=store.get_chunk(chunk_id), similarity_score=score,
                                  strategy_used=RetrievalStrategy.HYBRID)

    def test_parent_and_nearest_siblings(self, fund_store, options):
        expanded = ContextExpander(fund_store).expand([self.candidate(fund_store, 'fees_p1')], options)
        scores = {c.chunk_id: c.similarity_score for c in expanded}

        assert set(scores) == {'fees_p1', 'fees', 'fees_p0', 'fees_p2'}
        assert scores['fees'] == pytest.approx(0.8)
        assert scores['fees_p0'] == pytest.approx(0.9)
        assert scores['fees_p2'] == pytest.approx(0.9)
        assert all(c.expansion_source == ExpansionSource.HIERARCHICAL
                   for c in expanded if c.chunk_id != 'fees_p1')

    def test_document_parent_is_skipped(self, fund_store, options):
        expanded = ContextExpander(fund_store).expand([self.candidate(fund_store, 'fees')], options)
        scores = {c.chunk_id: c.similarity_score for c in expanded}

        assert 'doc' not in scores
        assert scores['risk'] == pytest.approx(0.9)

    def test_relationship_expansion(self, fund_store):
        options = RetrievalOptions.from_config(expand_hierarchical=False)

        expanded = ContextExpander(fund_store).expand([self.candidate(fund_store, 'fees_p2')], options)

        assert [c.chunk_id for c in expanded] == ['fees_p2', 'risk_p0']
        assert expanded[1].similarity_score == pytest.approx(0.7 * 0.9)
        assert expanded[1].expansion_source == ExpansionSource.SEMANTIC

    def test_keyword_overlap_expansion(self, fund_store):
        options = RetrievalOptions.from_config(expand_hierarchical=False)

        expanded = ContextExpander(fund_store).expand([self.candidate(fund_store, 'fees_p0')], options)

        assert [c.chunk_id for c in expanded] == ['fees_p0', 'fees_p1']
        assert expanded[1].similarity_score == pytest.approx(0.7)

    def test_semantic_expansions_are_capped(self, fund_store):
        options = RetrievalOptions.from_config(expand_hierarchical=False, max_semantic_expansions=0)

        expanded = ContextExpander(fund_store).expand([self.candidate(fund_store, 'fees_p2')], options)

        assert [c.chunk_id for c in expanded] == ['fees_p2']

    def test_expansions_respect_quality_threshold(self, fund_store):
        options = RetrievalOptions.from_config(quality_threshold=0.9)

        expanded = ContextExpander(fund_store).expand([self.candidate(fund_store, 'fees_p1')], options)

        assert [c.chunk_id for c in expanded] == ['fees_p1']

    def test_unpublished_chunks_not_added(self, fund_store, make_chunk):
        fund_store.upsert_chunk(make_chunk('draft', ChunkScale.PARAGRAPH, "Draft fee schedule.", version=2))
        fund_store.add_relationship(Relationship('fees_p3', 'draft', RelationType.CROSS_REFERENCE, 1.0))
        options = RetrievalOptions.from_config(expand_hierarchical=False)

        expanded = ContextExpander(fund_store).expand([self.candidate(fund_store, 'fees_p3')], options)

        assert 'draft' not in {c.chunk_id for c in expanded}

    def test_chunks_without_views_not_added(self, fund_store, make_chunk):
        fund_store.upsert_chunk(make_chunk('bare', ChunkScale.PARAGRAPH, "Custody charges schedule.",
                                           parent_id='fees', keywords=['custody', 'charges', 'billed']))
        fund_store.add_relationship(Relationship('fees_p2', 'bare', RelationType.CROSS_REFERENCE, 1.0))
        options = RetrievalOptions.from_config(expand_hierarchical=False)

        expanded = ContextExpander(fund_store).expand([self.candidate(fund_store, 'fees_p2')], options)

        assert 'bare' not in {c.chunk_id for c in expanded}
        assert 'risk_p0' in {c.chunk_id for c in expanded}

    def test_direct_hits_keep_provenance(self, fund_store, options):
        candidates = [self.candidate(fund_store, 'fees_p1'), self.candidate(fund_store, 'fees', score=0.5)]

        expanded = ContextExpander(fund_store).expand(candidates, options)
        fees = next(c for c in expanded if c.chunk_id == 'fees')

        assert fees.expansion_source == ExpansionSource.NONE
        assert fees.similarity_score == 0.5
