# -*- coding: utf-8 -*-
"""
Boundary detection tests

Segmentation runs on hand-built sentence embeddings so every boundary
decision is deterministic.
"""
import numpy as np
import pytest

from multiscale_rag.processing.chunks.boundary_detector import BoundaryDetector
from multiscale_rag.utils.text_analysis import estimate_tokens


def sentence(i: int, n_words: int = 15) -> str:
    return ' '.join(f"term{i}x{j}" for j in range(n_words)) + '.'


class TestBoundaryScoring:
    """Similarity drops and confidence mapping"""

    @pytest.fixture
    def detector(self):
        return BoundaryDetector(embedder=None, threshold=0.3)

    def test_confidence_is_half_at_threshold(self, detector):
        assert detector.confidence_for(0.3) == pytest.approx(0.5)
        assert detector.confidence_for(0.0) == 0.0
        assert detector.confidence_for(1.0) == pytest.approx(1.0)

    def test_score_boundaries_reports_drops(self, detector):
        embeddings = np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        candidates = detector.score_boundaries(['a.', 'b.', 'c.'], embeddings)

        assert [c.position for c in candidates] == [1, 2]
        assert candidates[0].similarity_drop == pytest.approx(0.0)
        assert candidates[1].similarity_drop == pytest.approx(1.0)

    def test_without_embeddings_every_gap_scores_zero(self, detector):
        candidates = detector.score_boundaries(['a.', 'b.', 'c.'])
        assert all(c.similarity_drop == 0.0 for c in candidates)

    def test_single_sentence_has_no_gaps(self, detector):
        assert detector.score_boundaries(['only.']) == []


class TestSegmentation:
    """Size-constrained packing"""

    @pytest.fixture
    def detector(self):
        return BoundaryDetector(embedder=None, threshold=0.3)

    @pytest.fixture
    def sentences(self):
        return [sentence(i) for i in range(6)]

    def test_sentence_token_estimate(self, sentences):
        # 15 words -> ceil(15 * 1.33)
        assert estimate_tokens(sentences[0]) == 20

    def test_splits_at_topic_shift(self, detector, sentences):
        embeddings = np.array([[1.0, 0.0]] * 3 + [[0.0, 1.0]] * 3)

        segments = detector.segment(sentences, min_tokens=30, max_tokens=100,
                                    target_tokens=60, embeddings=embeddings)

        assert [len(s.sentences) for s in segments] == [3, 3]
        assert segments[0].boundary_confidence == pytest.approx(1.0)
        assert not any(s.forced for s in segments)

    def test_forced_split_when_no_boundary_qualifies(self, detector, sentences):
        embeddings = np.array([[1.0, 0.0]] * 6)

        segments = detector.segment(sentences, min_tokens=30, max_tokens=50,
                                    embeddings=embeddings)

        assert len(segments) > 1
        assert all(s.token_count <= 50 for s in segments)
        assert any(s.forced for s in segments)

    def test_size_packing_without_semantics(self, detector, sentences):
        segments = detector.segment(sentences, min_tokens=30, max_tokens=50, semantic=False)

        assert all(s.token_count <= 50 for s in segments)
        assert not any(s.forced for s in segments)

    def test_oversized_sentence_kept_whole(self, detector):
        long_one = sentence(99, n_words=120)
        sentences = [sentence(0), long_one, sentence(1)]

        segments = detector.segment(sentences, min_tokens=10, max_tokens=60, semantic=False)

        oversized = [s for s in segments if s.oversized]
        assert len(oversized) == 1
        assert oversized[0].sentences == [long_one]

    def test_every_sentence_covered_once_in_order(self, detector):
        sentences = [sentence(i) for i in range(17)]
        rng = np.random.default_rng(7)
        embeddings = rng.normal(size=(17, 8))

        segments = detector.segment(sentences, min_tokens=30, max_tokens=90, embeddings=embeddings)

        flattened = [s for segment in segments for s in segment.sentences]
        assert flattened == sentences
        starts = [segment.start_index for segment in segments]
        assert starts == sorted(starts)
        assert starts[0] == 0

    def test_preferred_breaks_win_over_flat_similarity(self, detector, sentences):
        embeddings = np.array([[1.0, 0.0]] * 6)

        segments = detector.segment(sentences, min_tokens=30, max_tokens=100,
                                    embeddings=embeddings, preferred_breaks={2})

        assert len(segments[0].sentences) == 2

    def test_empty_input(self, detector):
        assert detector.segment([], min_tokens=1, max_tokens=10) == []
