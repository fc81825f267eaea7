# -*- coding: utf-8 -*-
"""
Embedding adapter tests

HashingEmbedder runs offline. The sentence-transformers model is exercised
only for lazy loading, so no model download happens at construction time.
"""
import numpy as np
import pytest

from multiscale_rag.utils.embedder import HashingEmbedder, SentenceTransformerEmbedder


class TestHashingEmbedder:
    """Deterministic offline embedder"""

    @pytest.fixture
    def embedder(self):
        return HashingEmbedder(n_features=256)

    def test_shape_and_norm(self, embedder):
        """Test rows are L2 normalized and sized to n_features"""
        vectors = embedder.embed(["Net asset value is computed daily.", "Fees accrue monthly."])

        assert vectors.shape == (2, 256)
        assert vectors.dtype == np.float32
        assert np.allclose(np.linalg.norm(vectors, axis=1), 1.0, atol=1e-5)

    def test_embedding_consistency(self, embedder):
        """Test same text produces same embedding"""
        text = "Custody fees are charged quarterly."
        assert np.array_equal(embedder.embed_single(text), embedder.embed_single(text))

    def test_related_texts_are_closer(self, embedder):
        a, b, c = embedder.embed([
            "management fee charged quarterly",
            "quarterly management fee schedule",
            "auditor reviews governance charter",
        ])
        assert float(a @ b) > float(a @ c)

    def test_stop_words_only_gives_zero_vector(self, embedder):
        assert not np.any(embedder.embed(["the and of it"])[0])

    def test_empty_batch(self, embedder):
        assert embedder.embed([]).shape == (0, 256)

    def test_model_id(self, embedder):
        assert embedder.model_id == 'hashing-256'


class TestSentenceTransformerEmbedder:
    """Lazy model loading"""

    def test_construction_does_not_load_model(self):
        embedder = SentenceTransformerEmbedder('BAAI/bge-small-en-v1.5', device='cpu')
        assert embedder._model is None
        assert embedder.model_id == 'BAAI/bge-small-en-v1.5'
