# -*- coding: utf-8 -*-
"""
Storage package: chunk, relationship and embedding store with in-memory
(scikit-learn cosine) and FAISS backends.
"""
from multiscale_rag.storage.vector_store import (
    ChunkFilter,
    FaissVectorStore,
    InMemoryVectorStore,
    VectorStore,
    create_store,
)

__all__ = [
    'ChunkFilter',
    'FaissVectorStore',
    'InMemoryVectorStore',
    'VectorStore',
    'create_store',
]
