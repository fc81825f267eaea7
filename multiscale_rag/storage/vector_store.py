# -*- coding: utf-8 -*-
"""
Chunk and embedding stores

A VectorStore holds chunks (with their tree links), cross-reference
relationships and one vector per (chunk, view type). Two backends ship:

- InMemoryVectorStore: numpy matrices per view type, exact cosine search
  through scikit-learn. Default for tests and small corpora.
- FaissVectorStore: one FAISS IndexFlatIP per view type over L2-normalized
  vectors (inner product == cosine), wrapped in IndexIDMap2 so deletes are
  exact.

Document versions: writes for a new version stay invisible to queries until
publish_version() switches the document's current version, so readers see
either the old or the new version, never a mix. delete_document() then
removes superseded versions.

Example:
    store = InMemoryVectorStore()
    store.upsert_chunks(tree)
    store.upsert_embeddings(views)
    store.publish_version("doc_001", 1)
    hits = store.query_nearest(query_vec, EmbeddingType.CONTENT, k=10,
                               chunk_filter=ChunkFilter(scales=(ChunkScale.PARAGRAPH,)))
"""
# Standard library
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

# Third-party
import faiss
import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

# Foundation
from multiscale_rag.utils.dataclasses import (
    Chunk,
    ChunkScale,
    EmbeddingType,
    EmbeddingView,
    Relationship,
)
from multiscale_rag.utils.errors import StoreUnavailableError
from multiscale_rag.utils.text_analysis import words

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkFilter:
    """Restricts searches to scales, documents and a minimum chunk quality."""
    scales: Tuple[ChunkScale, ...] = ()
    document_ids: Tuple[str, ...] = ()
    min_quality: float = 0.0

    def matches(self, chunk: Chunk) -> bool:
        if self.scales and chunk.scale not in self.scales:
            return False
        if self.document_ids and chunk.document_id not in self.document_ids:
            return False
        return chunk.quality_score >= self.min_quality


class VectorStore(ABC):
    """
    Chunk registry plus per-view vector search.

    Subclasses implement the vector side (_add_vector, _remove_vectors,
    _search); chunk bookkeeping and version visibility live here. All public
    methods are thread-safe.
    """

    def __init__(self):
        self._chunks: Dict[str, Chunk] = {}
        self._by_document: Dict[str, Set[str]] = defaultdict(set)
        self._relationships: Dict[str, List[Relationship]] = defaultdict(list)
        self._views: Dict[str, Set[EmbeddingType]] = defaultdict(set)
        self._current_version: Dict[str, int] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Vector backend
    # ------------------------------------------------------------------

    @abstractmethod
    def _add_vector(self, view_type: EmbeddingType, chunk_id: str, vector: np.ndarray) -> None:
        """Insert or replace one vector. Caller holds the lock."""

    @abstractmethod
    def _remove_vectors(self, chunk_ids: Set[str]) -> None:
        """Drop all views of the given chunks. Caller holds the lock."""

    @abstractmethod
    def _search(self, vector: np.ndarray, view_type: EmbeddingType,
                k: int) -> List[Tuple[str, float]]:
        """Nearest chunk ids by cosine, best first. Caller holds the lock."""

    @abstractmethod
    def _get_vector(self, view_type: EmbeddingType, chunk_id: str) -> Optional[np.ndarray]:
        """Stored vector or None. Caller holds the lock."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_chunk(self, chunk: Chunk) -> None:
        with self._lock:
            self._chunks[chunk.chunk_id] = chunk
            self._by_document[chunk.document_id].add(chunk.chunk_id)

    def upsert_chunks(self, chunks: Iterable[Chunk], relationships: Iterable[Relationship] = ()) -> int:
        """Insert chunks (a ChunkTree iterates as chunks) and their relationships."""
        count = 0
        with self._lock:
            for chunk in chunks:
                self.upsert_chunk(chunk)
                count += 1
            for relationship in relationships:
                self.add_relationship(relationship)
        return count

    def add_relationship(self, relationship: Relationship) -> None:
        with self._lock:
            for chunk_id in (relationship.source_chunk_id, relationship.target_chunk_id):
                if relationship not in self._relationships[chunk_id]:
                    self._relationships[chunk_id].append(relationship)

    def upsert_embedding(self, view: EmbeddingView) -> None:
        with self._lock:
            if view.chunk_id not in self._chunks:
                raise StoreUnavailableError(f"Embedding for unknown chunk {view.chunk_id}")
            self._add_vector(view.view_type, view.chunk_id, np.asarray(view.vector, dtype=np.float32))
            self._views[view.chunk_id].add(view.view_type)

    def upsert_embeddings(self, views: Dict[str, Dict[EmbeddingType, EmbeddingView]]) -> int:
        count = 0
        with self._lock:
            for per_chunk in views.values():
                for view in per_chunk.values():
                    self.upsert_embedding(view)
                    count += 1
        return count

    def publish_version(self, document_id: str, version: int) -> None:
        """Make ``version`` the only visible version of a document."""
        with self._lock:
            self._current_version[document_id] = version
        logger.debug(f"Published {document_id} v{version}")

    def delete_document(self, document_id: str, keep_version: Optional[int] = None) -> int:
        """
        Remove a document's chunks, views and relationships.

        Args:
            document_id: Document to remove
            keep_version: Version to keep (None removes every version)

        Returns:
            Number of chunks removed
        """
        with self._lock:
            doomed = {
                cid for cid in self._by_document.get(document_id, set())
                if keep_version is None or self._chunks[cid].document_version != keep_version
            }
            removed = self.delete_chunks(doomed)
        if removed:
            logger.info(f"Deleted {removed} chunks of {document_id}")
        return removed

    def delete_chunks(self, chunk_ids: Iterable[str]) -> int:
        """Remove chunks by id with their views and relationships."""
        with self._lock:
            doomed = {cid for cid in chunk_ids if cid in self._chunks}
            if not doomed:
                return 0
            self._remove_vectors(doomed)
            for cid in doomed:
                chunk = self._chunks.pop(cid)
                self._views.pop(cid, None)
                self._relationships.pop(cid, None)
                owned = self._by_document.get(chunk.document_id)
                if owned is not None:
                    owned.discard(cid)
                    if not owned:
                        del self._by_document[chunk.document_id]
                        self._current_version.pop(chunk.document_id, None)
            for cid, relationships in list(self._relationships.items()):
                self._relationships[cid] = [
                    r for r in relationships
                    if r.source_chunk_id not in doomed and r.target_chunk_id not in doomed
                ]
        return len(doomed)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_chunk(self, chunk_id: Optional[str]) -> Optional[Chunk]:
        if chunk_id is None:
            return None
        with self._lock:
            return self._chunks.get(chunk_id)

    def chunks_for_document(self, document_id: str, version: Optional[int] = None) -> List[Chunk]:
        """Chunks of a document (current version by default), by scale then sequence."""
        with self._lock:
            version = version if version is not None else self._current_version.get(document_id)
            chunks = [
                self._chunks[cid] for cid in self._by_document.get(document_id, set())
                if self._chunks[cid].document_version == version
            ]
        return sorted(chunks, key=lambda c: (c.scale.level, c.sequence_order))

    def relationships_for(self, chunk_id: str) -> List[Relationship]:
        with self._lock:
            return list(self._relationships.get(chunk_id, []))

    def has_view(self, chunk_id: str, view_type: EmbeddingType) -> bool:
        with self._lock:
            return view_type in self._views.get(chunk_id, set())

    def has_any_view(self, chunk_id: str) -> bool:
        """A chunk whose every view failed is not retrievable."""
        with self._lock:
            return bool(self._views.get(chunk_id))

    def get_vector(self, chunk_id: str, view_type: EmbeddingType) -> Optional[np.ndarray]:
        with self._lock:
            if view_type not in self._views.get(chunk_id, set()):
                return None
            return self._get_vector(view_type, chunk_id)

    def current_version(self, document_id: str) -> Optional[int]:
        with self._lock:
            return self._current_version.get(document_id)

    def document_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._by_document)

    def _visible(self, chunk: Chunk, chunk_filter: Optional[ChunkFilter]) -> bool:
        if self._current_version.get(chunk.document_id) != chunk.document_version:
            return False
        return chunk_filter is None or chunk_filter.matches(chunk)

    def query_nearest(
        self,
        vector: np.ndarray,
        view_type: EmbeddingType,
        k: int,
        chunk_filter: Optional[ChunkFilter] = None,
    ) -> List[Tuple[Chunk, float]]:
        """
        k nearest visible chunks for one view type.

        Returns:
            (chunk, cosine similarity) pairs, most similar first
        """
        if k <= 0:
            return []
        query = np.asarray(vector, dtype=np.float32).reshape(-1)
        with self._lock:
            total = sum(1 for views in self._views.values() if view_type in views)
            if total == 0:
                return []
            # Widen the search until enough hits survive the filter
            fetch = min(total, max(k * 4, k))
            while True:
                hits = []
                for chunk_id, score in self._search(query, view_type, fetch):
                    chunk = self._chunks.get(chunk_id)
                    if chunk is not None and self._visible(chunk, chunk_filter):
                        hits.append((chunk, float(score)))
                if len(hits) >= k or fetch >= total:
                    return hits[:k]
                fetch = min(total, fetch * 2)

    def keyword_search(
        self,
        terms: Iterable[str],
        k: int,
        chunk_filter: Optional[ChunkFilter] = None,
    ) -> List[Tuple[Chunk, float]]:
        """
        Lexical fallback: share of query terms present in chunk text.

        Chunks without any stored view are skipped, as in vector search.

        Returns:
            (chunk, score in [0,1]) pairs, best first, zero scores excluded
        """
        term_set = {t.lower() for t in terms if t}
        if not term_set or k <= 0:
            return []
        with self._lock:
            chunks = [
                c for c in self._chunks.values()
                if self._visible(c, chunk_filter) and self._views.get(c.chunk_id)
            ]
        scored = []
        for chunk in chunks:
            present = set(words(chunk.content)) | {kw.lower() for kw in chunk.keywords}
            score = len(term_set & present) / len(term_set)
            if score > 0:
                scored.append((chunk, score))
        scored.sort(key=lambda item: (-item[1], -item[0].quality_score, item[0].chunk_id))
        return scored[:k]

    def get_stats(self) -> Dict:
        with self._lock:
            by_view = defaultdict(int)
            for views in self._views.values():
                for view_type in views:
                    by_view[view_type.value] += 1
            return {
                'documents': len(self._by_document),
                'chunks': len(self._chunks),
                'vectors_by_view': dict(by_view),
                'relationships': sum(len(r) for r in self._relationships.values()) // 2,
            }


class InMemoryVectorStore(VectorStore):
    """Exact cosine search over numpy matrices."""

    def __init__(self):
        super().__init__()
        self._vectors: Dict[EmbeddingType, Dict[str, np.ndarray]] = defaultdict(dict)
        self._matrix_cache: Dict[EmbeddingType, Tuple[List[str], np.ndarray]] = {}

    def _add_vector(self, view_type, chunk_id, vector):
        existing = self._vectors[view_type]
        if existing:
            dim = next(iter(existing.values())).shape[0]
            if vector.shape[0] != dim:
                raise StoreUnavailableError(
                    f"Dimension {vector.shape[0]} does not match {view_type.value} index ({dim})"
                )
        existing[chunk_id] = vector
        self._matrix_cache.pop(view_type, None)

    def _remove_vectors(self, chunk_ids):
        for view_type, vectors in self._vectors.items():
            removed = False
            for cid in chunk_ids:
                if vectors.pop(cid, None) is not None:
                    removed = True
            if removed:
                self._matrix_cache.pop(view_type, None)

    def _get_vector(self, view_type, chunk_id):
        return self._vectors[view_type].get(chunk_id)

    def _search(self, vector, view_type, k):
        if view_type not in self._matrix_cache:
            ids = list(self._vectors[view_type])
            if not ids:
                return []
            self._matrix_cache[view_type] = (ids, np.vstack([self._vectors[view_type][i] for i in ids]))
        ids, matrix = self._matrix_cache[view_type]
        if vector.shape[0] != matrix.shape[1]:
            raise StoreUnavailableError(
                f"Query dimension {vector.shape[0]} does not match {view_type.value} index ({matrix.shape[1]})"
            )
        if not np.any(vector):
            return []
        scores = cosine_similarity(vector.reshape(1, -1), matrix)[0]
        top = np.argsort(-scores, kind='stable')[:k]
        return [(ids[i], float(scores[i])) for i in top]


class FaissVectorStore(VectorStore):
    """
    FAISS-backed store: IndexIDMap2(IndexFlatIP) per view type.

    Vectors are L2-normalized on insert and query, so inner product equals
    cosine similarity. Chunk ids map to sequential int64 FAISS ids.
    """

    def __init__(self):
        super().__init__()
        self._indexes: Dict[EmbeddingType, faiss.Index] = {}
        self._int_ids: Dict[str, int] = {}
        self._chunk_ids: Dict[int, str] = {}
        self._next_id = 0

    def _int_id(self, chunk_id: str) -> int:
        if chunk_id not in self._int_ids:
            self._int_ids[chunk_id] = self._next_id
            self._chunk_ids[self._next_id] = chunk_id
            self._next_id += 1
        return self._int_ids[chunk_id]

    def _index_for(self, view_type: EmbeddingType, dim: int) -> faiss.Index:
        index = self._indexes.get(view_type)
        if index is None:
            index = faiss.IndexIDMap2(faiss.IndexFlatIP(dim))
            self._indexes[view_type] = index
            logger.debug(f"Created FAISS index for {view_type.value} (dim={dim})")
        elif index.d != dim:
            raise StoreUnavailableError(
                f"Dimension {dim} does not match {view_type.value} index ({index.d})"
            )
        return index

    def _add_vector(self, view_type, chunk_id, vector):
        matrix = np.ascontiguousarray(vector.reshape(1, -1), dtype=np.float32)
        faiss.normalize_L2(matrix)
        index = self._index_for(view_type, matrix.shape[1])
        ids = np.array([self._int_id(chunk_id)], dtype=np.int64)
        try:
            index.remove_ids(ids)
            index.add_with_ids(matrix, ids)
        except RuntimeError as e:
            raise StoreUnavailableError(f"FAISS insert failed for {chunk_id}: {e}") from e

    def _remove_vectors(self, chunk_ids):
        ids = np.array([self._int_ids[c] for c in chunk_ids if c in self._int_ids], dtype=np.int64)
        if ids.size == 0:
            return
        for index in self._indexes.values():
            index.remove_ids(ids)
        for cid in chunk_ids:
            int_id = self._int_ids.pop(cid, None)
            if int_id is not None:
                self._chunk_ids.pop(int_id, None)

    def _get_vector(self, view_type, chunk_id):
        index = self._indexes.get(view_type)
        if index is None or chunk_id not in self._int_ids:
            return None
        try:
            # Normalized copy; cosine comparisons are unaffected
            return index.reconstruct(self._int_ids[chunk_id])
        except RuntimeError:
            return None

    def _search(self, vector, view_type, k):
        index = self._indexes.get(view_type)
        if index is None or index.ntotal == 0 or not np.any(vector):
            return []
        query = np.ascontiguousarray(vector.reshape(1, -1), dtype=np.float32)
        if query.shape[1] != index.d:
            raise StoreUnavailableError(
                f"Query dimension {query.shape[1]} does not match {view_type.value} index ({index.d})"
            )
        faiss.normalize_L2(query)
        scores, ids = index.search(query, min(k, index.ntotal))
        return [
            (self._chunk_ids[int(i)], float(s))
            for s, i in zip(scores[0], ids[0])
            if i != -1 and int(i) in self._chunk_ids
        ]


def create_store(backend: str = 'memory') -> VectorStore:
    """Store factory for the ``store_backend`` pipeline setting."""
    if backend == 'faiss':
        return FaissVectorStore()
    if backend == 'memory':
        return InMemoryVectorStore()
    raise ValueError(f"Unknown store backend: {backend}")
