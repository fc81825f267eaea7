# -*- coding: utf-8 -*-
"""
Ranking and diversification tests
"""
import numpy as np
import pytest

from multiscale_rag.config.settings import RetrievalOptions
from multiscale_rag.retrieval.result_ranker import ResultRanker
from multiscale_rag.utils.dataclasses import Relationship, RelationType


def ranker_for(vectors, relationships=()):
    def lookup(chunk_id):
        vector = vectors.get(chunk_id)
        return None if vector is None else np.asarray(vector, dtype=float)

    def related(chunk_id):
        return [r for r in relationships if chunk_id in (r.source_chunk_id, r.target_chunk_id)]

    return ResultRanker(vector_lookup=lookup, relationship_lookup=related)


class TestOrdering:
    """Lost-in-the-middle placement and budget trimming"""

    def test_lost_in_middle(self):
        assert ResultRanker.lost_in_middle([9, 8, 7, 6, 5]) == [9, 7, 5, 6, 8]
        assert ResultRanker.lost_in_middle([3, 2]) == [3, 2]
        assert ResultRanker.lost_in_middle([]) == []

    def test_trim_to_budget_keeps_first(self, candidate):
        # token_count is twice the word count
        big = candidate('big', 0.9, content=' '.join(['word'] * 50))
        small = candidate('small', 0.8, content="Two words.")

        assert [c.chunk_id for c in ResultRanker.trim_to_budget([big, small], 10)] == ['big']
        assert [c.chunk_id for c in ResultRanker.trim_to_budget([small, big], 10)] == ['small']
        assert len(ResultRanker.trim_to_budget([big, small], 0)) == 2

    def test_rank_sets_final_rank(self, candidate):
        vectors = {f"c{i}": np.eye(5)[i] for i in range(5)}
        candidates = [candidate(f"c{i}", score) for i, score in enumerate([0.9, 0.8, 0.7, 0.6, 0.5])]

        ranked = ranker_for(vectors).rank(candidates, RetrievalOptions.from_config())

        assert [c.chunk_id for c in ranked] == ['c0', 'c2', 'c4', 'c3', 'c1']
        assert [c.final_rank for c in ranked] == [0, 1, 2, 3, 4]

    def test_rank_without_lost_in_middle(self, candidate):
        vectors = {f"c{i}": np.eye(3)[i] for i in range(3)}
        candidates = [candidate(f"c{i}", score) for i, score in enumerate([0.5, 0.9, 0.7])]

        ranked = ranker_for(vectors).rank(candidates, RetrievalOptions.from_config(lost_in_middle=False))

        assert [c.chunk_id for c in ranked] == ['c1', 'c2', 'c0']

    def test_rank_empty(self):
        assert ResultRanker().rank([], RetrievalOptions.from_config()) == []


class TestComplementarity:
    """Greedy MMR selection"""

    def test_prefers_diverse_chunk(self, candidate):
        ranker = ranker_for({'a': [1, 0], 'b': [0.8, 0.6], 'c': [0, 1]})
        candidates = [candidate('a', 0.9), candidate('b', 0.8), candidate('c', 0.6)]

        selected = ranker.select_complementary(candidates, k=2)

        assert [c.chunk_id for c in selected] == ['a', 'c']

    def test_duplication_ceiling(self, candidate):
        ranker = ranker_for({'a': [1, 0], 'dup': [0.99, 0.14], 'c': [0, 1]})
        candidates = [candidate('a', 0.9), candidate('dup', 0.89), candidate('c', 0.2)]

        selected = ranker.select_complementary(candidates, k=3)

        assert [c.chunk_id for c in selected] == ['a', 'c']

    def test_word_jaccard_without_vectors(self, candidate):
        text = "The management fee accrues daily."
        candidates = [candidate('a', 0.9, content=text), candidate('b', 0.8, content=text)]

        selected = ResultRanker().select_complementary(candidates, k=2)

        assert [c.chunk_id for c in selected] == ['a']

    def test_relationship_bonus_breaks_ties(self, candidate):
        vectors = {'a': [1, 0, 0], 'b': [0, 1, 0], 'c': [0, 0, 1]}
        candidates = [candidate('a', 0.9), candidate('b', 0.6), candidate('c', 0.6)]
        linked = [Relationship('a', 'c', RelationType.CROSS_REFERENCE, 0.9)]

        plain = ranker_for(vectors).select_complementary(candidates, k=2)
        bonus = ranker_for(vectors, linked).select_complementary(candidates, k=2)

        assert [c.chunk_id for c in plain] == ['a', 'b']
        assert [c.chunk_id for c in bonus] == ['a', 'c']

    def test_no_pair_above_ceiling(self, candidate):
        rng = np.random.default_rng(7)
        vectors = {f"c{i}": rng.normal(size=8) for i in range(12)}
        vectors['c11'] = vectors['c0'] + 0.01
        candidates = [candidate(f"c{i}", 1.0 - i * 0.05) for i in range(12)]
        ranker = ranker_for(vectors)

        selected = ranker.select_complementary(candidates, k=6)

        for i, a in enumerate(selected):
            for b in selected[i + 1:]:
                assert ranker.similarity(a, b) <= 0.9
