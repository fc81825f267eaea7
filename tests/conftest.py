# -*- coding: utf-8 -*-
"""
Shared fixtures for the multi-scale RAG test suite.

Every fixture runs offline: the HashingEmbedder stands in for a
sentence-transformers model and stores are in-memory unless a test asks for
FAISS explicitly.
"""
import pytest

from multiscale_rag.config.settings import ChunkingConfig, EmbeddingConfig, PipelineConfig
from multiscale_rag.utils.dataclasses import Document
from multiscale_rag.utils.embedder import HashingEmbedder

TOPIC_WORDS = {
    'fees': ['management', 'performance', 'custody', 'brokerage', 'advisory', 'administration',
             'distribution', 'redemption', 'subscription', 'servicing'],
    'risk': ['liquidity', 'volatility', 'leverage', 'counterparty', 'currency', 'concentration',
             'duration', 'credit', 'settlement', 'valuation'],
    'governance': ['board', 'trustee', 'auditor', 'committee', 'charter', 'proxy',
                   'oversight', 'compliance', 'ethics', 'disclosure'],
}
OBJECTS = ['statements', 'reports', 'schedules', 'accounts', 'records', 'ledgers', 'filings', 'notices']


def make_sentence(topic: str, i: int) -> str:
    """One ~14-word sentence whose vocabulary is dominated by ``topic``."""
    vocab = TOPIC_WORDS[topic]
    a, b, c = vocab[i % len(vocab)], vocab[(i + 3) % len(vocab)], vocab[(i + 7) % len(vocab)]
    return (f"The {topic} provision requires {a} and {b} review for every {c} "
            f"holder of {OBJECTS[i % len(OBJECTS)]} each quarter.")


def make_body(topic: str, sentences: int, per_paragraph: int = 8) -> str:
    paragraphs = []
    for start in range(0, sentences, per_paragraph):
        paragraphs.append(' '.join(
            make_sentence(topic, i) for i in range(start, min(sentences, start + per_paragraph))
        ))
    return '\n\n'.join(paragraphs)


def make_document_text(sections, sentences_per_section: int = 24) -> str:
    """Markdown document with one '# Heading' per (heading, topic) pair."""
    blocks = []
    for heading, topic in sections:
        blocks.append(f"# {heading}\n\n{make_body(topic, sentences_per_section)}")
    return '\n\n'.join(blocks)


@pytest.fixture
def embedder():
    return HashingEmbedder(n_features=1024)


@pytest.fixture
def chunking_config():
    return ChunkingConfig.from_config(adaptive_sizing=False)


@pytest.fixture
def embedding_config():
    return EmbeddingConfig.from_config(
        retry_base_delay=0.0,
        batch_timeout=10.0,
        batch_size=16,
        max_outstanding_requests=2,
    )


@pytest.fixture
def pipeline_config(chunking_config, embedding_config):
    return PipelineConfig(
        chunking=chunking_config,
        embedding=embedding_config,
        max_workers=2,
    )


@pytest.fixture
def sample_document():
    text = make_document_text([
        ('1. Fees and Expenses', 'fees'),
        ('2. Principal Risks', 'risk'),
        ('3. Fund Governance', 'governance'),
    ])
    return Document(document_id='fund_a', version=1, raw_text=text)


@pytest.fixture
def document_factory():
    def build(document_id='doc', version=1, sections=(('Fees', 'fees'), ('Risks', 'risk')),
              sentences_per_section=24):
        return Document(
            document_id=document_id,
            version=version,
            raw_text=make_document_text(sections, sentences_per_section),
        )
    return build


@pytest.fixture
def text_builder():
    """make_document_text, for tests that size documents themselves."""
    return make_document_text
