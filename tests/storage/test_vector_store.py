# -*- coding: utf-8 -*-
"""
Vector store tests, run against both backends.
"""
import numpy as np
import pytest

from multiscale_rag.storage.vector_store import (
    ChunkFilter,
    FaissVectorStore,
    InMemoryVectorStore,
    create_store,
)
from multiscale_rag.utils.dataclasses import (
    Chunk,
    ChunkScale,
    EmbeddingType,
    EmbeddingView,
    Relationship,
    RelationType,
)
from multiscale_rag.utils.errors import StoreUnavailableError

DIM = 4


def make_chunk(chunk_id, document_id='doc', version=1, scale=ChunkScale.PARAGRAPH,
               content='', quality=0.8, keywords=()):
    return Chunk(
        chunk_id=chunk_id, document_id=document_id, document_version=version, scale=scale,
        content=content or f"Text of {chunk_id}.", token_count=5, sequence_order=0,
        hierarchy_path=[chunk_id], quality_score=quality, keywords=list(keywords),
    )


def view(chunk_id, vector, view_type=EmbeddingType.CONTENT):
    return EmbeddingView(chunk_id=chunk_id, view_type=view_type,
                         vector=np.asarray(vector, dtype=np.float32), quality_score=1.0)


@pytest.fixture(params=['memory', 'faiss'])
def store(request):
    return create_store(request.param)


@pytest.fixture
def populated(store):
    chunks = [
        make_chunk('fees', content="Management fee accrues daily.", keywords=['fee']),
        make_chunk('risk', content="Liquidity risk may rise.", quality=0.3),
        make_chunk('gov', content="The board oversees the fund.", scale=ChunkScale.SECTION),
        make_chunk('other', document_id='doc2', content="Custody fee is separate."),
    ]
    store.upsert_chunks(chunks)
    store.upsert_embeddings({
        'fees': {EmbeddingType.CONTENT: view('fees', [1, 0, 0, 0])},
        'risk': {EmbeddingType.CONTENT: view('risk', [0, 1, 0, 0])},
        'gov': {EmbeddingType.CONTENT: view('gov', [0, 0, 1, 0])},
        'other': {EmbeddingType.CONTENT: view('other', [0.9, 0.1, 0, 0])},
    })
    store.publish_version('doc', 1)
    store.publish_version('doc2', 1)
    return store


class TestNearestNeighbors:
    """Cosine search with filters"""

    def test_query_nearest_orders_by_cosine(self, populated):
        hits = populated.query_nearest(np.array([1, 0, 0, 0]), EmbeddingType.CONTENT, k=2)

        assert [c.chunk_id for c, _ in hits] == ['fees', 'other']
        assert hits[0][1] == pytest.approx(1.0, abs=1e-5)
        assert hits[0][1] >= hits[1][1]

    def test_filter_by_scale_document_and_quality(self, populated):
        query = np.array([1, 1, 1, 0])

        by_scale = populated.query_nearest(query, EmbeddingType.CONTENT, 10,
                                           ChunkFilter(scales=(ChunkScale.SECTION,)))
        by_doc = populated.query_nearest(query, EmbeddingType.CONTENT, 10,
                                         ChunkFilter(document_ids=('doc2',)))
        by_quality = populated.query_nearest(query, EmbeddingType.CONTENT, 10,
                                             ChunkFilter(min_quality=0.5))

        assert [c.chunk_id for c, _ in by_scale] == ['gov']
        assert [c.chunk_id for c, _ in by_doc] == ['other']
        assert 'risk' not in {c.chunk_id for c, _ in by_quality}

    def test_missing_view_type_returns_nothing(self, populated):
        assert populated.query_nearest(np.ones(DIM), EmbeddingType.SEMANTIC, 5) == []

    def test_dimension_mismatch_raises(self, populated):
        with pytest.raises(StoreUnavailableError):
            populated.upsert_embedding(view('fees', [1, 0, 0, 0, 0, 0]))
        with pytest.raises(StoreUnavailableError):
            populated.query_nearest(np.ones(DIM + 2), EmbeddingType.CONTENT, 3)

    def test_embedding_for_unknown_chunk_raises(self, store):
        with pytest.raises(StoreUnavailableError):
            store.upsert_embedding(view('ghost', [1, 0, 0, 0]))

    def test_get_vector(self, populated):
        vector = populated.get_vector('fees', EmbeddingType.CONTENT)
        assert vector is not None
        assert np.allclose(vector / np.linalg.norm(vector), [1, 0, 0, 0])
        assert populated.get_vector('fees', EmbeddingType.SEMANTIC) is None
        assert populated.has_view('fees', EmbeddingType.CONTENT)


class TestVersioning:
    """Version visibility and deletion"""

    def test_unpublished_version_is_invisible(self, populated):
        populated.upsert_chunk(make_chunk('fees_v2', version=2, content="Management fee accrues daily."))
        populated.upsert_embedding(view('fees_v2', [1, 0, 0, 0]))

        hits = populated.query_nearest(np.array([1, 0, 0, 0]), EmbeddingType.CONTENT, 5)
        assert 'fees_v2' not in {c.chunk_id for c, _ in hits}

        populated.publish_version('doc', 2)

        hits = populated.query_nearest(np.array([1, 0, 0, 0]), EmbeddingType.CONTENT, 5)
        ids = {c.chunk_id for c, _ in hits}
        assert 'fees_v2' in ids
        assert 'fees' not in ids

    def test_new_document_invisible_until_published(self, store):
        store.upsert_chunk(make_chunk('a'))
        store.upsert_embedding(view('a', [1, 0, 0, 0]))

        assert store.query_nearest(np.array([1, 0, 0, 0]), EmbeddingType.CONTENT, 1) == []
        store.publish_version('doc', 1)
        assert len(store.query_nearest(np.array([1, 0, 0, 0]), EmbeddingType.CONTENT, 1)) == 1

    def test_delete_superseded_versions(self, populated):
        populated.upsert_chunk(make_chunk('fees_v2', version=2))
        populated.publish_version('doc', 2)

        removed = populated.delete_document('doc', keep_version=2)

        assert removed == 3
        assert [c.chunk_id for c in populated.chunks_for_document('doc')] == ['fees_v2']
        assert populated.get_chunk('fees') is None

    def test_delete_document_removes_everything(self, populated):
        populated.add_relationship(Relationship('fees', 'other', RelationType.CROSS_REFERENCE, 0.9))

        populated.delete_document('doc')

        assert populated.document_ids() == ['doc2']
        assert populated.current_version('doc') is None
        assert populated.relationships_for('other') == []
        hits = populated.query_nearest(np.array([1, 0, 0, 0]), EmbeddingType.CONTENT, 5)
        assert [c.chunk_id for c, _ in hits] == ['other']


class TestKeywordSearch:
    """Lexical fallback"""

    def test_scores_share_of_terms(self, populated):
        hits = populated.keyword_search(['fee', 'custody'], k=5)

        assert [c.chunk_id for c, _ in hits] == ['other', 'fees']
        assert hits[0][1] == 1.0
        assert hits[1][1] == 0.5

    def test_respects_visibility_and_filter(self, populated):
        hits = populated.keyword_search(['fee'], k=5, chunk_filter=ChunkFilter(document_ids=('doc',)))
        assert [c.chunk_id for c, _ in hits] == ['fees']

    def test_no_terms(self, populated):
        assert populated.keyword_search([], k=5) == []

    def test_chunks_without_views_are_skipped(self, populated):
        populated.upsert_chunk(make_chunk('bare', content="Custody fee schedule."))

        hits = populated.keyword_search(['custody', 'fee'], k=5)

        assert 'bare' not in {c.chunk_id for c, _ in hits}
        assert not populated.has_any_view('bare')
        assert populated.has_any_view('other')


class TestStoreFactory:
    def test_backends(self):
        assert isinstance(create_store('memory'), InMemoryVectorStore)
        assert isinstance(create_store('faiss'), FaissVectorStore)
        with pytest.raises(ValueError):
            create_store('sqlite')

    def test_stats(self, populated):
        populated.add_relationship(Relationship('fees', 'gov', RelationType.CROSS_REFERENCE, 0.9))
        stats = populated.get_stats()
        assert stats == {
            'documents': 2,
            'chunks': 4,
            'vectors_by_view': {'content': 4},
            'relationships': 1,
        }
