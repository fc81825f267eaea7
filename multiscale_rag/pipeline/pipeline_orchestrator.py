# -*- coding: utf-8 -*-
"""
Module: pipeline_orchestrator.py
Package: multiscale_rag.pipeline
Purpose: End-to-end ingestion (chunk -> embed -> store) and retrieval entry point

Per document:
    1. HierarchicalChunker builds the chunk tree (EmptyDocumentError is fatal
       for that document only)
    2. Optional re-merge of below-floor chunks into a neighbor
    3. EmbeddingOrchestrator generates the requested views
    4. Chunks, relationships and views are written to the store, the new
       version is published and superseded chunks are removed

Batches run documents in a bounded ThreadPoolExecutor (default
min(4, cpu_count)). One document's failure is recorded as a
BatchItemFailure and never aborts the batch. Versions of the same document
in one batch are processed in input order.

Examples:
    pipeline = PipelineOrchestrator(embedder=HashingEmbedder())
    batch = pipeline.process_batch([
        {'id': 'doc_001', 'version': 1, 'text': open('prospectus.md').read()},
    ])
    print(batch.stats['chunks_generated'], batch.stats['failures'])

    result = pipeline.retrieve("How is the management fee calculated?")

References:
    - processing/chunks/hierarchical_chunker.py
    - embedding/embedding_orchestrator.py
    - retrieval/retrieval_engine.py
"""

# Standard library
import logging
import threading
import time
from collections import OrderedDict, defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

# Third-party
from tqdm import tqdm

# Foundation
from multiscale_rag.config.settings import PipelineConfig, RetrievalOptions
from multiscale_rag.embedding.embedding_orchestrator import EmbeddingOrchestrator
from multiscale_rag.processing.chunks.hierarchical_chunker import HierarchicalChunker
from multiscale_rag.retrieval.retrieval_engine import RetrievalEngine
from multiscale_rag.storage.vector_store import VectorStore, create_store
from multiscale_rag.utils.dataclasses import (
    BatchItemFailure,
    BatchResult,
    ChunkFlag,
    ChunkTree,
    Document,
    EmbeddingType,
    EmbeddingView,
    ProcessingResult,
    RetrievalResult,
)
from multiscale_rag.utils.embedder import EmbeddingCapability

# Config
from multiscale_rag.config.ingestion_config import PIPELINE_CONFIG

logger = logging.getLogger(__name__)

DEFAULT_STORE_BACKEND = PIPELINE_CONFIG.get('store_backend', 'memory')

DocumentInput = Union[Document, Dict]


class PipelineOrchestrator:
    """
    Coordinates chunking, embedding, storage and retrieval.

    Args:
        embedder: Embedding capability shared by chunking (sentence
            embeddings) and view generation
        store: Chunk/embedding store (default from PIPELINE_CONFIG)
        config: Pipeline configuration
        retrieval_options: Default retrieval options
    """

    def __init__(
        self,
        embedder: EmbeddingCapability,
        store: Optional[VectorStore] = None,
        config: Optional[PipelineConfig] = None,
        retrieval_options: Optional[RetrievalOptions] = None,
    ):
        self.config = config or PipelineConfig.from_config()
        self.embedder = embedder
        self.store = store or create_store(DEFAULT_STORE_BACKEND)
        self.embedding = EmbeddingOrchestrator(embedder, self.config.embedding)
        self.chunker = HierarchicalChunker(embedder, self.config.chunking,
                                           embed_texts=self.embedding.embed_texts)
        self.engine = RetrievalEngine(self.store, self.embedding, retrieval_options)

        self.stats = {
            'documents_processed': 0,
            'documents_failed': 0,
            'chunks_generated': 0,
            'embeddings_generated': 0,
            'views_unavailable': 0,
            'chunks_merged': 0,
            'chunks_deleted': 0,
            'quality_sum': 0.0,
            'processing_time': 0.0,
        }
        self.stats_lock = threading.Lock()

        logger.info(
            f"PipelineOrchestrator initialized: model={self.embedding.model_id}, "
            f"store={type(self.store).__name__}, workers={self.config.max_workers}, "
            f"views={list(self.config.requested_views)}"
        )

    # ========================================================================
    # INGESTION
    # ========================================================================

    @staticmethod
    def _as_document(document: DocumentInput) -> Document:
        if isinstance(document, Document):
            return document
        return Document.from_dict(document)

    def process(self, document: DocumentInput, config: Optional[PipelineConfig] = None) -> ProcessingResult:
        """
        Chunk, embed and store one document.

        Args:
            document: Document or loader dict ``{id, version, text, structural_hints?}``
            config: Per-call configuration

        Returns:
            ProcessingResult with chunk tree, views, stats and quality report

        Raises:
            EmptyDocumentError: No valid sentences
            EmbeddingCapabilityError: Every embedding call failed
            StoreUnavailableError: The store rejected a write
        """
        document = self._as_document(document)
        config = config or self.config
        start = time.time()

        tree = self.chunker.chunk_document(document, config.chunking)
        merged = 0
        if config.merge_flagged_chunks:
            merged = self.chunker.merge_flagged(tree, config.chunking)

        requested = [EmbeddingType(v) for v in config.requested_views]
        views = self.embedding.embed_tree(tree, requested)
        deleted = self._write(document, tree, views)

        elapsed = time.time() - start
        quality_report = self.build_quality_report(tree, views, requested)
        quality_report['merged_chunks'] = merged
        embeddings_generated = sum(len(v) for v in views.values())
        stats = {
            **tree.stats,
            'embeddings_generated': embeddings_generated,
            'chunks_deleted': deleted,
            'processing_time': round(elapsed, 3),
        }

        with self.stats_lock:
            self.stats['documents_processed'] += 1
            self.stats['chunks_generated'] += len(tree)
            self.stats['embeddings_generated'] += embeddings_generated
            self.stats['views_unavailable'] += quality_report['missing_view_count']
            self.stats['chunks_merged'] += merged
            self.stats['chunks_deleted'] += deleted
            self.stats['quality_sum'] += sum(c.quality_score for c in tree)
            self.stats['processing_time'] += elapsed

        logger.info(
            f"Processed {document.document_id} v{document.version}: {len(tree)} chunks, "
            f"{embeddings_generated} views, {quality_report['flagged_count']} flagged ({elapsed:.2f}s)"
        )
        return ProcessingResult(
            document_id=document.document_id,
            version=document.version,
            chunks=tree,
            embeddings=views,
            stats=stats,
            quality_report=quality_report,
        )

    def _write(self, document: Document, tree: ChunkTree,
               views: Dict[str, Dict[EmbeddingType, EmbeddingView]]) -> int:
        """Write, publish, then remove chunks the new tree supersedes."""
        previous = {c.chunk_id for c in self.store.chunks_for_document(document.document_id, document.version)}
        self.store.upsert_chunks(tree, tree.relationships)
        self.store.upsert_embeddings(views)
        self.store.publish_version(document.document_id, document.version)

        deleted = self.store.delete_document(document.document_id, keep_version=document.version)
        # Same version with different content leaves stale chunk ids behind
        deleted += self.store.delete_chunks(previous - set(tree.chunks))
        return deleted

    def process_batch(
        self,
        documents: Sequence[DocumentInput],
        config: Optional[PipelineConfig] = None,
    ) -> BatchResult:
        """
        Process documents in parallel with per-document failure isolation.

        Returns:
            BatchResult with results in input order, failures and aggregate
            stats {chunks_generated, embeddings_generated, average_quality,
            failures}
        """
        config = config or self.config
        start = time.time()

        # Versions of one document stay sequential
        groups: "OrderedDict[str, List[Tuple[int, DocumentInput]]]" = OrderedDict()
        for position, document in enumerate(documents):
            groups.setdefault(self._document_key(document, position), []).append((position, document))

        results: Dict[int, ProcessingResult] = {}
        failures: List[BatchItemFailure] = []

        with ThreadPoolExecutor(max_workers=max(1, config.max_workers)) as executor:
            futures = {
                executor.submit(self._process_group, items, config): document_id
                for document_id, items in groups.items()
            }
            with tqdm(total=len(documents), desc="Processing documents", unit="doc") as pbar:
                for future in as_completed(futures):
                    document_id = futures[future]
                    try:
                        group_results, group_failures = future.result()
                    except Exception as e:
                        # _process_group isolates per-item errors; this is a bug guard
                        logger.error(f"Unexpected failure processing {document_id}: {e}")
                        group_results = {}
                        group_failures = [BatchItemFailure(document_id, type(e).__name__, str(e))]
                    results.update(group_results)
                    failures.extend(group_failures)
                    pbar.update(len(groups[document_id]))

        ordered = [results[i] for i in sorted(results)]
        with self.stats_lock:
            self.stats['documents_failed'] += len(failures)

        chunks_generated = sum(len(r.chunks) for r in ordered)
        quality = [c.quality_score for r in ordered for c in r.chunks]
        stats = {
            'documents': len(documents),
            'succeeded': len(ordered),
            'failed': len(failures),
            'chunks_generated': chunks_generated,
            'embeddings_generated': sum(r.stats.get('embeddings_generated', 0) for r in ordered),
            'average_quality': round(sum(quality) / len(quality), 4) if quality else 0.0,
            'failures': [
                {'document_id': f.document_id, 'error_type': f.error_type, 'message': f.message}
                for f in failures
            ],
            'elapsed_sec': round(time.time() - start, 3),
        }

        logger.info(
            f"Batch complete: {len(ordered)}/{len(documents)} documents, "
            f"{chunks_generated} chunks, {len(failures)} failures"
        )
        return BatchResult(results=ordered, failures=failures, stats=stats)

    @staticmethod
    def _document_key(document: DocumentInput, position: int) -> str:
        """Id for grouping and failure reports; entries that are not documents use their position."""
        if isinstance(document, Document):
            return document.document_id
        if isinstance(document, dict):
            return str(document.get('id'))
        return f"item-{position}"

    def _process_group(
        self,
        items: List[Tuple[int, DocumentInput]],
        config: PipelineConfig,
    ) -> Tuple[Dict[int, ProcessingResult], List[BatchItemFailure]]:
        results: Dict[int, ProcessingResult] = {}
        failures: List[BatchItemFailure] = []
        for position, document in items:
            try:
                results[position] = self.process(document, config)
            except Exception as e:
                document_id = self._document_key(document, position)
                logger.error(f"Document {document_id} failed: {type(e).__name__}: {e}")
                failures.append(BatchItemFailure(document_id, type(e).__name__, str(e)))
        return results, failures

    def reingest(self, document: DocumentInput, config: Optional[PipelineConfig] = None) -> ProcessingResult:
        """
        Replace a stored document with a new version.

        The version is bumped past the stored one when needed, and every
        prior-version chunk and view is removed before processing.
        """
        document = self._as_document(document)
        current = self.store.current_version(document.document_id)
        if current is not None and document.version <= current:
            document = replace(document, version=current + 1)

        removed = self.store.delete_document(document.document_id)
        with self.stats_lock:
            self.stats['chunks_deleted'] += removed
        logger.info(f"Reingesting {document.document_id} as v{document.version} ({removed} chunks removed)")
        return self.process(document, config)

    # ========================================================================
    # QUALITY REPORT
    # ========================================================================

    @staticmethod
    def build_quality_report(
        tree: ChunkTree,
        views: Dict[str, Dict[EmbeddingType, EmbeddingView]],
        requested: Sequence[EmbeddingType],
    ) -> Dict:
        """
        Degraded conditions of one processed document.

        Returns:
            Dict with flag counts, below-floor and oversized chunk ids,
            missing embedding views, tree consistency problems and whether
            boundaries fell back to size packing after sentence embedding failed
        """
        flag_counts = defaultdict(int)
        for chunk in tree:
            for flag in chunk.flags:
                flag_counts[flag.value] += 1

        missing_views = {}
        for chunk in tree:
            present = views.get(chunk.chunk_id, {})
            absent = [t.value for t in requested if t not in present]
            if absent:
                missing_views[chunk.chunk_id] = absent

        return {
            'flag_counts': dict(flag_counts),
            'flagged_count': sum(1 for c in tree if c.is_flagged),
            'below_floor': [c.chunk_id for c in tree if ChunkFlag.QUALITY_BELOW_FLOOR in c.flags],
            'oversized': [c.chunk_id for c in tree if ChunkFlag.OVERSIZED in c.flags],
            'forced_splits': [c.chunk_id for c in tree if ChunkFlag.FORCED_SPLIT in c.flags],
            'missing_views': missing_views,
            'missing_view_count': sum(len(v) for v in missing_views.values()),
            'tree_problems': tree.validate(),
            'sentence_embedding_fallback': tree.stats.get('sentence_embedding_fallback', False),
        }

    # ========================================================================
    # RETRIEVAL & STATS
    # ========================================================================

    def retrieve(
        self,
        query: str,
        context: Optional[Sequence[str]] = None,
        options: Optional[RetrievalOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrievalResult:
        return self.engine.retrieve(query, context=context, options=options, cancel_event=cancel_event)

    def get_processing_stats(self) -> Dict:
        with self.stats_lock:
            stats = dict(self.stats)
        processed = stats['documents_processed']
        chunks = stats['chunks_generated']
        stats['average_quality'] = round(stats.pop('quality_sum') / chunks, 4) if chunks else 0.0
        stats['average_processing_time'] = round(stats['processing_time'] / processed, 3) if processed else 0.0
        stats['chunker'] = dict(self.chunker.stats)
        stats['embedding'] = self.embedding.get_stats()
        stats['store'] = self.store.get_stats()
        stats['retrieval'] = self.engine.get_stats()
        return stats

    def close(self) -> None:
        self.embedding.close()
