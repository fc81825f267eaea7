# -*- coding: utf-8 -*-
"""
Hand-built chunk stores for retrieval tests.

Layout of ``fund_store`` (document "fund", version 1, 4-dim vectors):

    doc                         DOCUMENT
    +-- fees                    SECTION   "Fees"
    |   +-- fees_p0 .. fees_p3  PARAGRAPH
    +-- risk                    SECTION   "Risks"
        +-- risk_p0             PARAGRAPH
"""
import numpy as np
import pytest

from multiscale_rag.config.retrieval_config import RetrievalStrategy
from multiscale_rag.storage.vector_store import InMemoryVectorStore
from multiscale_rag.utils.dataclasses import (
    Chunk,
    ChunkScale,
    EmbeddingType,
    EmbeddingView,
    Relationship,
    RelationType,
    RetrievalCandidate,
)

PARAGRAPHS = {
    'fees_p0': ("The management fee accrues daily on net assets.", [1.0, 0.0, 0.0, 0.0],
                ['management', 'fee', 'accrues', 'daily']),
    'fees_p1': ("The management fee is paid monthly to the adviser.", [0.9, 0.1, 0.0, 0.0],
                ['management', 'fee', 'paid', 'monthly', 'adviser']),
    'fees_p2': ("Custody charges are billed by the custodian bank.", [0.0, 1.0, 0.0, 0.0],
                ['custody', 'charges', 'billed', 'custodian']),
    'fees_p3': ("Brokerage commissions depend on portfolio turnover.", [0.0, 0.0, 1.0, 0.0],
                ['brokerage', 'commissions', 'portfolio', 'turnover']),
    'risk_p0': ("Liquidity risk rises when redemptions spike.", [0.0, 0.0, 0.0, 1.0],
                ['liquidity', 'risk', 'redemptions', 'spike']),
}


def chunk(chunk_id, scale, content, parent_id=None, children=(), siblings=(), sequence=0,
          quality=0.8, keywords=(), document_id='fund', version=1):
    path = [parent_id, chunk_id] if parent_id else [chunk_id]
    return Chunk(
        chunk_id=chunk_id, document_id=document_id, document_version=version, scale=scale,
        content=content, token_count=len(content.split()) * 2, sequence_order=sequence,
        parent_id=parent_id, child_ids=list(children), sibling_ids=list(siblings),
        hierarchy_path=path, heading=None, quality_score=quality, keywords=list(keywords),
    )


def add_views(store, vectors, view_types=(EmbeddingType.CONTENT,)):
    store.upsert_embeddings({
        chunk_id: {
            view_type: EmbeddingView(chunk_id=chunk_id, view_type=view_type,
                                     vector=np.asarray(vector, dtype=np.float32), quality_score=1.0)
            for view_type in view_types
        }
        for chunk_id, vector in vectors.items()
    })


def build_fund_chunks():
    fee_ids = ['fees_p0', 'fees_p1', 'fees_p2', 'fees_p3']
    chunks = [
        chunk('doc', ChunkScale.DOCUMENT, "Fund prospectus.", children=['fees', 'risk']),
        chunk('fees', ChunkScale.SECTION, ' '.join(PARAGRAPHS[i][0] for i in fee_ids),
              parent_id='doc', children=fee_ids, siblings=['risk'], sequence=0,
              keywords=['management', 'fee', 'custody']),
        chunk('risk', ChunkScale.SECTION, PARAGRAPHS['risk_p0'][0], parent_id='doc',
              children=['risk_p0'], siblings=['fees'], sequence=1, keywords=['liquidity', 'risk']),
    ]
    for position, chunk_id in enumerate(fee_ids):
        text, _, keywords = PARAGRAPHS[chunk_id]
        chunks.append(chunk(chunk_id, ChunkScale.PARAGRAPH, text, parent_id='fees',
                            siblings=[i for i in fee_ids if i != chunk_id], sequence=position,
                            keywords=keywords))
    text, _, keywords = PARAGRAPHS['risk_p0']
    chunks.append(chunk('risk_p0', ChunkScale.PARAGRAPH, text, parent_id='risk', sequence=4,
                        keywords=keywords))
    return chunks


@pytest.fixture
def make_chunk():
    return chunk


@pytest.fixture
def candidate(make_chunk):
    """Paragraph-scale candidate built from an id and a score."""
    def build(chunk_id, score, content=None, quality=0.8):
        chunk = make_chunk(chunk_id, ChunkScale.PARAGRAPH, content or f"Passage about {chunk_id}.",
                           quality=quality)
        return RetrievalCandidate(chunk=chunk, similarity_score=score, strategy_used=RetrievalStrategy.HYBRID)
    return build


@pytest.fixture
def write_views():
    return add_views


@pytest.fixture
def fund_store():
    store = InMemoryVectorStore()
    store.upsert_chunks(build_fund_chunks())
    vectors = {chunk_id: vector for chunk_id, (_, vector, _) in PARAGRAPHS.items()}
    vectors.update({'fees': [0.5, 0.5, 0.5, 0.0], 'risk': [0.0, 0.0, 0.0, 1.0], 'doc': [1.0, 1.0, 1.0, 1.0]})
    add_views(store, vectors, view_types=tuple(EmbeddingType))
    store.add_relationship(Relationship('fees_p2', 'risk_p0', RelationType.CROSS_REFERENCE, 0.9))
    store.publish_version('fund', 1)
    return store
