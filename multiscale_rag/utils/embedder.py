# -*- coding: utf-8 -*-
"""
Embedding capability contract and adapters

The core only needs "texts -> vectors for a model id". Two adapters ship:

- SentenceTransformerEmbedder: BGE-family models through sentence-transformers,
  loaded lazily on first use (production).
- HashingEmbedder: scikit-learn HashingVectorizer over stop-word filtered
  terms, L2 normalized. Deterministic, offline and fast; used in tests and for
  development without model downloads.

Examples:
    embedder = SentenceTransformerEmbedder('BAAI/bge-small-en-v1.5', device='cpu')
    vectors = embedder.embed(["Net asset value is computed daily."])
    vectors.shape    # (1, 384)

    offline = HashingEmbedder(n_features=1024)
    offline.embed(["fund risk", "fund return"]).shape    # (2, 1024)
"""
# Standard library
import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

# Third-party
import numpy as np
from sentence_transformers import SentenceTransformer
from sklearn.feature_extraction.text import HashingVectorizer

# Config
from multiscale_rag.config.ingestion_config import EMBEDDING_CONFIG

logger = logging.getLogger(__name__)

DEFAULT_MODEL = EMBEDDING_CONFIG.get('model_name', 'BAAI/bge-small-en-v1.5')
DEFAULT_DEVICE = EMBEDDING_CONFIG.get('device')
DEFAULT_HASHING_FEATURES = EMBEDDING_CONFIG.get('hashing_features', 1024)


class EmbeddingCapability(ABC):
    """
    External embedding service: ``embed(texts, model_id) -> (n, dim) array``.

    Implementations may raise on transient failure; callers retry.
    """

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier recorded on every generated view."""

    @abstractmethod
    def embed(self, texts: List[str], model_id: Optional[str] = None) -> np.ndarray:
        """Embed texts, one row per text, float32."""

    def embed_single(self, text: str) -> np.ndarray:
        return self.embed([text])[0]


class SentenceTransformerEmbedder(EmbeddingCapability):
    """
    BGE embedder backed by sentence-transformers.

    The model loads on the first embed() call so constructing a pipeline
    stays cheap. Vectors are L2 normalized.
    """

    def __init__(self, model_name: str = DEFAULT_MODEL, device: Optional[str] = DEFAULT_DEVICE,
                 encode_batch_size: int = 32):
        """
        Args:
            model_name: HuggingFace model identifier
            device: 'cpu', 'cuda', or None for auto-detect
            encode_batch_size: Batch size passed to SentenceTransformer.encode
        """
        self.model_name = model_name
        self.device = device
        self.encode_batch_size = encode_batch_size
        self._model: Optional[SentenceTransformer] = None
        self._load_lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return self.model_name

    @property
    def model(self) -> SentenceTransformer:
        with self._load_lock:
            if self._model is None:
                logger.info(f"Loading embedding model: {self.model_name}")
                self._model = SentenceTransformer(self.model_name, device=self.device)
                logger.info(
                    f"Model loaded on device: {self._model.device}, "
                    f"dimension: {self._model.get_sentence_embedding_dimension()}"
                )
        return self._model

    def get_embedding_dim(self) -> int:
        return int(self.model.get_sentence_embedding_dimension())

    def embed(self, texts: List[str], model_id: Optional[str] = None) -> np.ndarray:
        if model_id and model_id != self.model_name:
            logger.warning(f"Requested model {model_id}, serving with {self.model_name}")
        if not texts:
            return np.zeros((0, self.get_embedding_dim()), dtype=np.float32)

        embeddings = self.model.encode(
            list(texts),
            batch_size=self.encode_batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return np.asarray(embeddings, dtype=np.float32)


class HashingEmbedder(EmbeddingCapability):
    """
    Deterministic lexical embedder (hashed term frequencies, L2 normalized).

    Texts made only of stop words map to the zero vector, which quality
    validation rejects like any other degenerate embedding.
    """

    def __init__(self, n_features: int = DEFAULT_HASHING_FEATURES):
        self.n_features = n_features
        self.vectorizer = HashingVectorizer(
            n_features=n_features,
            alternate_sign=False,
            norm='l2',
            stop_words='english',
            token_pattern=r"(?u)\b[a-zA-Z][a-zA-Z0-9\-]{1,}\b",
        )

    @property
    def model_id(self) -> str:
        return f"hashing-{self.n_features}"

    def get_embedding_dim(self) -> int:
        return self.n_features

    def embed(self, texts: List[str], model_id: Optional[str] = None) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.n_features), dtype=np.float32)
        return self.vectorizer.transform(list(texts)).toarray().astype(np.float32)
