# -*- coding: utf-8 -*-
"""
Embedding orchestrator

Generates up to four embedding views per chunk (content, contextual,
hierarchical, semantic) through an external EmbeddingCapability.

Features:
- Batching (default 100 texts per external call)
- Bounded concurrency: ThreadPoolExecutor over batches, shared RateLimiter
  capping calls per minute and calls outstanding
- Per-call timeout (default 30s) treated as retryable
- Exponential backoff retry (base * 2**attempt, default 3 attempts)
- Quality validation; rejected vectors are retried once, then left absent
- LRU cache keyed by (chunk_id, view_type, view text hash) with
  single-flight misses, so concurrent requests for the same key trigger one
  external computation

A view that cannot be generated is absent from the result, never a zero
vector. When every external call of an operation fails and nothing came from
cache, EmbeddingCapabilityError is raised.

Example:
    orchestrator = EmbeddingOrchestrator(HashingEmbedder(), EmbeddingConfig.from_config())
    views = orchestrator.embed_tree(tree, [EmbeddingType.CONTENT, EmbeddingType.SEMANTIC])
    views[chunk_id][EmbeddingType.CONTENT].vector.shape
"""
# Standard library
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

# Third-party
import numpy as np

# Foundation
from multiscale_rag.config.settings import EmbeddingConfig
from multiscale_rag.embedding.quality_validator import EmbeddingQualityValidator
from multiscale_rag.embedding.view_builder import ViewBuilder
from multiscale_rag.utils.dataclasses import Chunk, ChunkTree, EmbeddingType, EmbeddingView
from multiscale_rag.utils.embedder import EmbeddingCapability
from multiscale_rag.utils.errors import EmbeddingCapabilityError, TransientEmbeddingError
from multiscale_rag.utils.id_generator import content_hash, generate_cache_key
from multiscale_rag.utils.lru_cache import LRUCache
from multiscale_rag.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

TRANSIENT_MARKERS = ('429', 'rate limit', 'timeout', 'timed out', 'temporarily',
                     'unavailable', 'connection reset', '503')


def is_transient(error: BaseException) -> bool:
    """Timeouts, rate limits and dropped connections are worth retrying."""
    if isinstance(error, (TransientEmbeddingError, TimeoutError, FutureTimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


@dataclass
class _ViewRequest:
    chunk_id: str
    view_type: EmbeddingType
    text: str
    key: str


class EmbeddingOrchestrator:
    """
    Batched, rate-limited, cached multi-view embedding.

    Thread-safe; one instance is shared by all documents of a pipeline.
    """

    def __init__(
        self,
        embedder: EmbeddingCapability,
        config: Optional[EmbeddingConfig] = None,
        cache: Optional[LRUCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        Args:
            embedder: External embedding capability
            config: Batching, retry and enrichment settings
            cache: Shared view cache (created from config when None)
            rate_limiter: Shared limiter (created from config when None)
        """
        self.embedder = embedder
        self.config = config or EmbeddingConfig.from_config()
        self.model_id = getattr(embedder, 'model_id', '') or self.config.model_id
        self.cache = cache or LRUCache(max_size=self.config.cache_max_size)
        self.rate_limiter = rate_limiter or RateLimiter(
            max_calls_per_minute=self.config.max_calls_per_minute,
            max_outstanding=self.config.max_outstanding_requests,
        )
        self.view_builder = ViewBuilder(self.config)
        self.validator = EmbeddingQualityValidator(
            min_quality=self.config.min_vector_quality,
            summary_terms=self.config.summary_terms,
        )

        # Calls run here so a hung call can be abandoned after batch_timeout
        self._call_pool = ThreadPoolExecutor(
            max_workers=self.config.max_outstanding_requests,
            thread_name_prefix='embed-call',
        )

        self.stats = {
            'views_requested': 0,
            'views_generated': 0,
            'views_unavailable': 0,
            'cache_hits': 0,
            'shared_waits': 0,
            'batches': 0,
            'failed_batches': 0,
            'external_calls': 0,
            'retries': 0,
            'timeouts': 0,
            'vectors_rejected': 0,
        }
        self.stats_lock = threading.Lock()

        logger.info(
            f"EmbeddingOrchestrator initialized: model={self.model_id}, "
            f"batch_size={self.config.batch_size}, "
            f"max_outstanding={self.config.max_outstanding_requests}"
        )

    def _bump(self, name: str, amount: int = 1) -> None:
        with self.stats_lock:
            self.stats[name] += amount

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def embed(
        self,
        chunk: Chunk,
        requested_types: Iterable[EmbeddingType],
        tree: Optional[ChunkTree] = None,
    ) -> Dict[EmbeddingType, EmbeddingView]:
        """
        Embed one chunk in the requested views.

        Args:
            chunk: Chunk to embed
            requested_types: Views to generate
            tree: Owning tree; contextual and hierarchical views read neighbors
                and ancestors from it

        Returns:
            Map from view type to view; views that failed are absent
        """
        return self.embed_chunks([chunk], requested_types, tree).get(chunk.chunk_id, {})

    def embed_tree(
        self,
        tree: ChunkTree,
        requested_types: Optional[Iterable[EmbeddingType]] = None,
    ) -> Dict[str, Dict[EmbeddingType, EmbeddingView]]:
        """Embed every chunk of a tree; defaults to all four views."""
        types = list(requested_types) if requested_types is not None else list(EmbeddingType)
        return self.embed_chunks(list(tree), types, tree)

    def embed_chunks(
        self,
        chunks: Sequence[Chunk],
        requested_types: Iterable[EmbeddingType],
        tree: Optional[ChunkTree] = None,
    ) -> Dict[str, Dict[EmbeddingType, EmbeddingView]]:
        """
        Embed many chunks in the requested views.

        Raises:
            EmbeddingCapabilityError: Every external call failed and no view
                could be served from cache
        """
        types = list(dict.fromkeys(requested_types))
        requests = self._build_requests(chunks, types, tree)
        if not requests:
            return {}
        self._bump('views_requested', len(requests))

        hits, owned, pending = self.cache.claim(r.key for r in requests)
        self._bump('cache_hits', len(hits))
        self._bump('shared_waits', len(pending))

        by_key: Dict[str, _ViewRequest] = {}
        for request in requests:
            by_key.setdefault(request.key, request)
        owned_requests = [by_key[key] for key in owned]

        computed, all_failed = self._compute(owned_requests)
        waited = self.cache.wait_for(
            pending,
            timeout=self.config.batch_timeout * (self.config.max_retries + 1),
        )

        results: Dict[str, Dict[EmbeddingType, EmbeddingView]] = {}
        unavailable = 0
        for request in requests:
            value = hits.get(request.key)
            if value is None:
                value = computed.get(request.key)
            if value is None:
                value = waited.get(request.key)
            if value is None:
                unavailable += 1
                continue
            vector, quality = value
            results.setdefault(request.chunk_id, {})[request.view_type] = EmbeddingView(
                chunk_id=request.chunk_id,
                view_type=request.view_type,
                vector=vector,
                quality_score=quality,
                model_id=self.model_id,
            )

        generated = len(requests) - unavailable
        self._bump('views_generated', generated)
        self._bump('views_unavailable', unavailable)

        if all_failed and generated == 0:
            raise EmbeddingCapabilityError(
                f"Embedding capability failed for all {len(owned_requests)} requested views"
            )
        if unavailable:
            logger.warning(f"{unavailable}/{len(requests)} embedding views unavailable")
        return results

    def embed_query(self, text: str) -> np.ndarray:
        """
        Embed a query string (cached like a content view).

        Raises:
            EmbeddingCapabilityError: The capability failed after retries
        """
        key = generate_cache_key('__query__', EmbeddingType.CONTENT.value, content_hash(text))

        def compute():
            vectors, _ = self._call_with_retry([text])
            if vectors is None:
                raise EmbeddingCapabilityError("Query embedding failed after retries")
            return vectors[0], 1.0

        vector, _ = self.cache.get_or_compute(key, compute, timeout=self.config.batch_timeout)
        return vector

    def embed_texts(self, texts: Sequence[str]) -> Optional[np.ndarray]:
        """
        Embed raw texts in batches, uncached, with the same timeout, retry and
        rate limiting as view batches.

        Returns:
            One row per text, or None when any batch failed after retries
        """
        texts = list(texts)
        batches = []
        for i in range(0, len(texts), self.config.batch_size):
            vectors, attempts = self._call_with_retry(texts[i:i + self.config.batch_size])
            if vectors is None:
                logger.warning(f"Text embedding failed after {attempts} attempts")
                return None
            batches.append(vectors)
        return np.vstack(batches) if batches else None

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_stats(self) -> Dict:
        with self.stats_lock:
            stats = dict(self.stats)
        stats['cache'] = self.cache.get_stats()
        stats['rate_limiter'] = self.rate_limiter.get_stats()
        return stats

    def close(self) -> None:
        self._call_pool.shutdown(wait=False)

    # ========================================================================
    # REQUESTS
    # ========================================================================

    def _build_requests(
        self,
        chunks: Sequence[Chunk],
        types: List[EmbeddingType],
        tree: Optional[ChunkTree],
    ) -> List[_ViewRequest]:
        requests = []
        for chunk in chunks:
            for view_type in types:
                text = self.view_builder.build(chunk, view_type, tree)
                if not text.strip():
                    continue
                requests.append(_ViewRequest(
                    chunk_id=chunk.chunk_id,
                    view_type=view_type,
                    text=text,
                    key=generate_cache_key(chunk.chunk_id, view_type.value, content_hash(text)),
                ))
        return requests

    # ========================================================================
    # COMPUTATION
    # ========================================================================

    def _compute(
        self,
        requests: List[_ViewRequest],
    ) -> Tuple[Dict[str, Tuple[np.ndarray, float]], bool]:
        """
        Embed owned requests in concurrent batches and publish to the cache.

        Returns:
            (values by key, True when every batch failed)
        """
        if not requests:
            return {}, False

        size = max(1, self.config.batch_size)
        batches = [requests[i:i + size] for i in range(0, len(requests), size)]
        computed: Dict[str, Tuple[np.ndarray, float]] = {}
        failed_batches = 0

        with ThreadPoolExecutor(max_workers=self.config.max_outstanding_requests) as executor:
            futures = {executor.submit(self._embed_batch, batch): batch for batch in batches}

            for future in as_completed(futures):
                batch = futures[future]
                try:
                    values = future.result()
                except Exception as e:
                    logger.error(f"Embedding batch of {len(batch)} failed: {e}")
                    values = None

                if values is None:
                    failed_batches += 1
                    self._bump('failed_batches')
                    for request in batch:
                        self.cache.abandon(request.key)
                    continue

                for request in batch:
                    value = values.get(request.key)
                    if value is None:
                        self.cache.abandon(request.key)
                    else:
                        self.cache.fulfill(request.key, value)
                        computed[request.key] = value

        return computed, failed_batches == len(batches)

    def _embed_batch(self, batch: List[_ViewRequest]) -> Optional[Dict]:
        """
        Embed one batch, validate, and retry rejected vectors once.

        Returns:
            {key: (vector, quality)} for accepted vectors, or None when the
            external call failed after all retries
        """
        self._bump('batches')
        texts = [r.text for r in batch]
        vectors, _ = self._call_with_retry(texts)
        if vectors is None:
            return None

        verdicts = self.validator.validate(texts, vectors, embed_fn=self._summary_embed)
        values = {}
        rejected = []
        for request, vector, (accepted, quality) in zip(batch, vectors, verdicts):
            if accepted:
                values[request.key] = (np.asarray(vector, dtype=np.float32), quality)
            else:
                rejected.append(request)

        if rejected:
            self._bump('vectors_rejected', len(rejected))
            logger.debug(f"Retrying {len(rejected)} rejected vectors")
            retry_texts = [r.text for r in rejected]
            retry_vectors, _ = self._call_with_retry(retry_texts)
            if retry_vectors is not None:
                retry_verdicts = self.validator.validate(retry_texts, retry_vectors,
                                                         embed_fn=self._summary_embed)
                for request, vector, (accepted, quality) in zip(rejected, retry_vectors, retry_verdicts):
                    if accepted:
                        values[request.key] = (np.asarray(vector, dtype=np.float32), quality)
                    else:
                        logger.warning(
                            f"Embedding for {request.chunk_id}/{request.view_type.value} "
                            f"rejected twice (quality {quality:.2f})"
                        )
        return values

    def _summary_embed(self, texts: List[str]) -> Optional[np.ndarray]:
        vectors, _ = self._call_with_retry(texts)
        return vectors

    def _call_with_retry(self, texts: List[str]) -> Tuple[Optional[np.ndarray], int]:
        """
        One external call with timeout and exponential backoff.

        Returns:
            (vectors or None, attempts used)
        """
        max_retries = max(1, self.config.max_retries)
        for attempt in range(max_retries):
            try:
                return self._call(texts), attempt + 1
            except Exception as e:
                transient = is_transient(e)
                if isinstance(e, (TimeoutError, FutureTimeoutError)):
                    self._bump('timeouts')
                logger.warning(f"Embedding attempt {attempt + 1}/{max_retries} failed: {e}")
                if not transient or attempt >= max_retries - 1:
                    return None, attempt + 1
                self._bump('retries')
                time.sleep(self.config.retry_base_delay * (2 ** attempt))
        return None, max_retries

    def _call(self, texts: List[str]) -> np.ndarray:
        future = self._call_pool.submit(self._guarded_call, texts)
        try:
            vectors = future.result(timeout=self.config.batch_timeout)
        except FutureTimeoutError:
            future.cancel()
            raise TimeoutError(f"Embedding call exceeded {self.config.batch_timeout}s")

        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[0] != len(texts):
            raise TransientEmbeddingError(
                f"Embedding capability returned shape {vectors.shape} for {len(texts)} texts"
            )
        return vectors

    def _guarded_call(self, texts: List[str]) -> np.ndarray:
        with self.rate_limiter.slot(timeout=self.config.batch_timeout):
            self._bump('external_calls')
            return self.embedder.embed(texts, self.model_id)
