# -*- coding: utf-8 -*-
"""
Exception types for the multi-scale RAG core.

Only conditions that make the calling operation impossible are raised:
an empty document, a dead embedding capability, or a failing store. Degraded
conditions (oversized units, below-floor quality, missing embedding views,
empty retrieval results, failed batch items) are recorded as chunk flags,
result statuses or quality-report entries instead.
"""


class MultiScaleRAGError(Exception):
    """Base class for all errors raised by this package."""


class EmptyDocumentError(MultiScaleRAGError):
    """Document produced zero valid sentences."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document {document_id} contains no valid sentences")


class EmbeddingCapabilityError(MultiScaleRAGError):
    """Embedding capability failed for every request of an operation."""


class StoreUnavailableError(MultiScaleRAGError):
    """Chunk/embedding store rejected a write or query."""


class TransientEmbeddingError(MultiScaleRAGError):
    """Retryable embedding failure (timeout, rate limit, connection reset)."""


class RetrievalCancelled(MultiScaleRAGError):
    """Raised between hops when a cancellation flag is set."""
