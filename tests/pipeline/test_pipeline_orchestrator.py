# -*- coding: utf-8 -*-
"""
Pipeline orchestrator tests

Batch processing, failure isolation, re-ingestion and quality reports, run
offline with the hashing embedder and an in-memory store.
"""
import threading

import pytest

from multiscale_rag.pipeline.pipeline_orchestrator import PipelineOrchestrator
from multiscale_rag.processing.chunks.hierarchical_chunker import HierarchicalChunker
from multiscale_rag.storage.vector_store import InMemoryVectorStore
from multiscale_rag.utils.dataclasses import Document, EmbeddingType
from multiscale_rag.utils.embedder import HashingEmbedder


class DroppedConnectionEmbedder(HashingEmbedder):
    """Drops the connection on its first call only."""

    def __init__(self):
        super().__init__(n_features=1024)
        self.dropped = False
        self.lock = threading.Lock()

    def embed(self, texts, model_id=None):
        with self.lock:
            if not self.dropped:
                self.dropped = True
                raise ConnectionError("connection reset by peer")
        return super().embed(texts, model_id)


@pytest.fixture
def pipeline(embedder, pipeline_config):
    pipeline = PipelineOrchestrator(embedder, store=InMemoryVectorStore(), config=pipeline_config)
    yield pipeline
    pipeline.close()


class TestProcess:
    """Single-document processing"""

    def test_process_stores_tree_and_views(self, pipeline, sample_document):
        result = pipeline.process(sample_document)

        stored = pipeline.store.chunks_for_document('fund_a')
        assert {c.chunk_id for c in stored} == set(result.chunks.chunks)
        assert pipeline.store.current_version('fund_a') == 1
        assert result.stats['embeddings_generated'] == len(result.chunks) * len(EmbeddingType)
        for chunk_id in result.chunks.chunks:
            assert pipeline.store.has_view(chunk_id, EmbeddingType.CONTENT)

    def test_reprocess_is_idempotent(self, pipeline, sample_document):
        first = pipeline.process(sample_document)
        second = pipeline.process(sample_document)

        assert list(first.chunks.chunks) == list(second.chunks.chunks)
        assert second.stats['chunks_deleted'] == 0
        assert len(pipeline.store.chunks_for_document('fund_a')) == len(first.chunks)

    def test_loader_dict_input(self, pipeline, text_builder):
        result = pipeline.process({
            'id': 'fund_b',
            'version': 3,
            'text': text_builder([('Fees', 'fees')], 10),
        })

        assert result.document_id == 'fund_b'
        assert result.version == 3
        assert pipeline.store.current_version('fund_b') == 3

    def test_quality_report(self, pipeline, sample_document):
        report = pipeline.process(sample_document).quality_report

        assert set(report) >= {
            'flag_counts', 'flagged_count', 'below_floor', 'oversized', 'forced_splits',
            'missing_views', 'missing_view_count', 'tree_problems', 'merged_chunks',
            'sentence_embedding_fallback',
        }
        assert report['missing_views'] == {}
        assert report['tree_problems'] == []
        assert report['sentence_embedding_fallback'] is False

    def test_sentence_embedding_retried_after_dropped_connection(self, pipeline, pipeline_config,
                                                                 sample_document):
        flaky = PipelineOrchestrator(DroppedConnectionEmbedder(), store=InMemoryVectorStore(),
                                     config=pipeline_config)
        result = flaky.process(sample_document)
        stats = flaky.get_processing_stats()
        flaky.close()

        healthy = pipeline.process(sample_document)

        assert list(result.chunks.chunks) == list(healthy.chunks.chunks)
        assert result.quality_report['sentence_embedding_fallback'] is False
        assert any(c.coherence_score != 0.5 for c in result.chunks)
        assert stats['chunker']['sentence_embedding_failures'] == 0
        assert stats['embedding']['retries'] == 1

    def test_quality_report_flags_sentence_embedding_fallback(self, embedder, chunking_config,
                                                              sample_document):
        chunker = HierarchicalChunker(embedder, chunking_config, embed_texts=lambda texts: None)
        tree = chunker.chunk_document(sample_document)

        report = PipelineOrchestrator.build_quality_report(tree, {}, [])

        assert report['sentence_embedding_fallback'] is True


class TestBatch:
    """Parallel batches with per-document isolation"""

    def test_failures_are_isolated(self, pipeline, document_factory):
        documents = [
            document_factory('alpha'),
            Document(document_id='blank', version=1, raw_text='   '),
            document_factory('beta', sections=(('Board', 'governance'),)),
        ]

        batch = pipeline.process_batch(documents)

        assert [r.document_id for r in batch.results] == ['alpha', 'beta']
        assert len(batch.failures) == 1
        assert batch.failures[0].document_id == 'blank'
        assert batch.failures[0].error_type == 'EmptyDocumentError'
        assert batch.stats['failed'] == 1
        assert batch.stats['succeeded'] == 2
        assert batch.stats['chunks_generated'] == sum(len(r.chunks) for r in batch.results)
        assert 0.0 < batch.stats['average_quality'] <= 1.0
        assert pipeline.get_processing_stats()['documents_failed'] == 1

    def test_non_document_entry_is_a_single_failure(self, pipeline, document_factory):
        documents = [document_factory('alpha'), 42, document_factory('beta')]

        batch = pipeline.process_batch(documents)

        assert [r.document_id for r in batch.results] == ['alpha', 'beta']
        assert [(f.document_id, f.error_type) for f in batch.failures] == [('item-1', 'AttributeError')]
        assert batch.stats['failed'] == 1

    def test_versions_of_one_document_processed_in_order(self, pipeline, document_factory):
        documents = [
            document_factory('alpha', version=1),
            document_factory('alpha', version=2, sections=(('Risks', 'risk'),)),
        ]

        batch = pipeline.process_batch(documents)

        assert [r.version for r in batch.results] == [1, 2]
        assert pipeline.store.current_version('alpha') == 2
        assert {c.document_version for c in pipeline.store.chunks_for_document('alpha')} == {2}
        assert pipeline.store.chunks_for_document('alpha', version=1) == []


class TestReingest:
    """Version replacement"""

    def test_reingest_bumps_version_and_removes_old_chunks(self, pipeline, sample_document):
        first = pipeline.process(sample_document)
        updated = Document(
            document_id='fund_a',
            version=1,
            raw_text=sample_document.raw_text.replace('quarter', 'month'),
        )

        result = pipeline.reingest(updated)

        assert result.version == 2
        assert pipeline.store.current_version('fund_a') == 2
        for chunk_id in first.chunks.chunks:
            assert pipeline.store.get_chunk(chunk_id) is None
        assert {c.chunk_id for c in pipeline.store.chunks_for_document('fund_a')} == set(result.chunks.chunks)

    def test_processing_stats(self, pipeline, sample_document):
        pipeline.process(sample_document)

        stats = pipeline.get_processing_stats()

        assert stats['documents_processed'] == 1
        assert stats['chunks_generated'] > 0
        assert 0.0 < stats['average_quality'] <= 1.0
        assert stats['store']['documents'] == 1
        assert 'cache' in stats['embedding']
