# -*- coding: utf-8 -*-
"""
Core data structures for the multi-scale RAG core

Single source of truth for documents, chunks, chunk trees, embedding views and
retrieval/pipeline results. Chunks live in a ChunkTree arena keyed by chunk id;
parent, child and sibling links are stored as id references only.

Examples:
    from multiscale_rag.utils.dataclasses import Document, ChunkScale

    doc = Document(document_id="doc_001", version=1, raw_text="# Intro\\n\\nText...")
    tree = chunker.chunk_document(doc)
    for chunk in tree.at_scale(ChunkScale.PARAGRAPH):
        print(chunk.chunk_id, chunk.parent_id, chunk.quality_score)
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set
import hashlib

import numpy as np

from multiscale_rag.config.retrieval_config import RetrievalStrategy


# ============================================================================
# ENUMS
# ============================================================================

class ChunkScale(Enum):
    """Chunk granularity, coarsest first."""
    DOCUMENT = "document"
    SECTION = "section"
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"

    @property
    def level(self) -> int:
        return _SCALE_ORDER.index(self)

    @property
    def parent_scale(self) -> Optional['ChunkScale']:
        """Scale directly above, None for DOCUMENT."""
        if self.level == 0:
            return None
        return _SCALE_ORDER[self.level - 1]

    @property
    def child_scale(self) -> Optional['ChunkScale']:
        """Scale directly below, None for SENTENCE."""
        if self.level == len(_SCALE_ORDER) - 1:
            return None
        return _SCALE_ORDER[self.level + 1]


_SCALE_ORDER = [
    ChunkScale.DOCUMENT,
    ChunkScale.SECTION,
    ChunkScale.PARAGRAPH,
    ChunkScale.SENTENCE,
]


class EmbeddingType(Enum):
    """Embedding views generated per chunk."""
    CONTENT = "content"              # Raw chunk text
    CONTEXTUAL = "contextual"        # Text + parent/sibling window
    HIERARCHICAL = "hierarchical"    # Text prefixed with structure path
    SEMANTIC = "semantic"            # Text enriched with key terms


class ChunkFlag(Enum):
    """Non-fatal chunk conditions surfaced in quality reports."""
    OVERSIZED = "oversized"                      # Single sentence > max_tokens
    QUALITY_BELOW_FLOOR = "quality_below_floor"
    FORCED_SPLIT = "forced_split"                # No semantic boundary qualified
    MERGED = "merged"                            # Absorbed a flagged neighbor


class RelationType(Enum):
    """Cross-reference relationship types."""
    SEQUENTIAL = "sequential"            # "step 2 follows step 1"
    QA_PAIR = "qa_pair"
    CROSS_REFERENCE = "cross_reference"  # "see section 3"


class ExpansionSource(Enum):
    """How a retrieval candidate entered the result set."""
    NONE = "none"
    HIERARCHICAL = "hierarchical"
    SEMANTIC = "semantic"


class RetrievalStatus(Enum):
    """Outcome of a retrieval call."""
    OK = "ok"
    NO_QUALIFYING_CONTEXT = "no_qualifying_context"
    SYSTEM_BYPASS = "system_bypass"
    CANCELLED = "cancelled"


class QueryType(Enum):
    """Query intent classes used for strategy selection."""
    FACTUAL = "factual"
    PROCEDURAL = "procedural"
    COMPARATIVE = "comparative"
    TROUBLESHOOTING = "troubleshooting"
    GENERAL = "general"


class QueryComplexity(Enum):
    SIMPLE = "simple"
    STANDARD = "standard"
    COMPLEX = "complex"


# ============================================================================
# DOCUMENTS
# ============================================================================

@dataclass(frozen=True)
class StructuralHint:
    """
    Heading or page marker supplied by the document loader.

    ``offset`` is the character offset of the marker in ``raw_text``.
    """
    kind: str                               # "heading" or "page"
    text: str
    offset: int
    level: int = 1


@dataclass(frozen=True)
class Document:
    """Normalized input document. Never mutated after creation."""
    document_id: str
    version: int
    raw_text: str
    structural_hints: tuple = ()
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.raw_text.encode('utf-8')).hexdigest()

    @classmethod
    def from_dict(cls, data: Dict) -> 'Document':
        """Build from the loader contract ``{id, version, text, structural_hints?}``."""
        hints = tuple(
            StructuralHint(
                kind=h.get('kind', 'heading'),
                text=h.get('text', ''),
                offset=int(h.get('offset', 0)),
                level=int(h.get('level', 1)),
            )
            for h in data.get('structural_hints') or []
        )
        return cls(
            document_id=data['id'],
            version=int(data.get('version', 1)),
            raw_text=data.get('text', ''),
            structural_hints=hints,
            metadata=data.get('metadata', {}),
        )


# ============================================================================
# CHUNKS
# ============================================================================

@dataclass
class Chunk:
    """
    Node of a chunk tree.

    Links are id references into the owning ChunkTree. ``child_ids`` is
    ordered and owned; ``sibling_ids`` is derived (same parent, same scale).
    ``hierarchy_path`` lists ancestor ids from the root down to this chunk.
    """
    chunk_id: str
    document_id: str
    document_version: int
    scale: ChunkScale
    content: str
    token_count: int
    sequence_order: int
    start_offset: int = 0                   # Offset of core content in document
    parent_id: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)
    sibling_ids: List[str] = field(default_factory=list)
    hierarchy_path: List[str] = field(default_factory=list)
    heading: Optional[str] = None
    quality_score: float = 0.0
    coherence_score: float = 0.0
    boundary_confidence: float = 1.0
    overlap_text: str = ""                  # Leading text duplicated from previous sibling
    keywords: List[str] = field(default_factory=list)
    flags: Set[ChunkFlag] = field(default_factory=set)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.content.encode('utf-8')).hexdigest()[:16]

    @property
    def text_with_overlap(self) -> str:
        """Content as presented downstream, overlap first."""
        if self.overlap_text:
            return f"{self.overlap_text} {self.content}"
        return self.content

    @property
    def is_flagged(self) -> bool:
        return bool(self.flags)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'chunk_id': self.chunk_id,
            'document_id': self.document_id,
            'document_version': self.document_version,
            'scale': self.scale.value,
            'content': self.content,
            'token_count': self.token_count,
            'sequence_order': self.sequence_order,
            'parent_id': self.parent_id,
            'child_ids': list(self.child_ids),
            'sibling_ids': list(self.sibling_ids),
            'hierarchy_path': list(self.hierarchy_path),
            'heading': self.heading,
            'quality_score': round(self.quality_score, 4),
            'coherence_score': round(self.coherence_score, 4),
            'keywords': list(self.keywords),
            'flags': sorted(f.value for f in self.flags),
        }


@dataclass(frozen=True)
class Relationship:
    """Non-owning cross-reference between two chunks."""
    source_chunk_id: str
    target_chunk_id: str
    relation_type: RelationType
    strength: float


@dataclass
class BoundaryCandidate:
    """Candidate split point after sentence ``position`` (split before position)."""
    position: int
    similarity_drop: float
    confidence: float


@dataclass
class Segment:
    """Contiguous run of sentences produced by the boundary detector."""
    sentences: List[str]
    token_count: int
    start_index: int                        # Index of first sentence
    boundary_confidence: float = 1.0
    forced: bool = False
    oversized: bool = False

    @property
    def text(self) -> str:
        return ' '.join(self.sentences)


@dataclass
class ChunkTree:
    """
    Arena of chunks for one document version.

    All chunk relationships resolve through ``chunks`` by id.
    """
    document_id: str
    version: int
    chunks: Dict[str, Chunk] = field(default_factory=dict)
    root_ids: List[str] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    # Sentence embeddings the tree was built from, indexed by sentence_range
    sentence_embeddings: Optional[np.ndarray] = field(default=None, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.chunks)

    def __iter__(self):
        return iter(self.chunks.values())

    def add(self, chunk: Chunk) -> None:
        self.chunks[chunk.chunk_id] = chunk

    def get(self, chunk_id: Optional[str]) -> Optional[Chunk]:
        if chunk_id is None:
            return None
        return self.chunks.get(chunk_id)

    def parent_of(self, chunk: Chunk) -> Optional[Chunk]:
        return self.get(chunk.parent_id)

    def children_of(self, chunk: Chunk) -> List[Chunk]:
        return [self.chunks[cid] for cid in chunk.child_ids if cid in self.chunks]

    def siblings_of(self, chunk: Chunk) -> List[Chunk]:
        return [self.chunks[sid] for sid in chunk.sibling_ids if sid in self.chunks]

    def ancestors(self, chunk: Chunk) -> List[Chunk]:
        """Ancestors root first, excluding the chunk itself."""
        return [self.chunks[cid] for cid in chunk.hierarchy_path[:-1] if cid in self.chunks]

    def at_scale(self, scale: ChunkScale) -> List[Chunk]:
        """Chunks of one scale in sequence order."""
        return sorted(
            (c for c in self.chunks.values() if c.scale == scale),
            key=lambda c: c.sequence_order
        )

    def relationships_for(self, chunk_id: str) -> List[Relationship]:
        return [
            r for r in self.relationships
            if r.source_chunk_id == chunk_id or r.target_chunk_id == chunk_id
        ]

    def validate(self) -> List[str]:
        """
        Check parent/child consistency and acyclicity.

        Returns:
            List of problems (empty when the tree is a valid forest)
        """
        problems = []
        for chunk in self.chunks.values():
            for child_id in chunk.child_ids:
                child = self.chunks.get(child_id)
                if child is None:
                    problems.append(f"{chunk.chunk_id}: missing child {child_id}")
                elif child.parent_id != chunk.chunk_id:
                    problems.append(f"{child_id}: parent_id does not match owner {chunk.chunk_id}")
            if chunk.parent_id is not None:
                parent = self.chunks.get(chunk.parent_id)
                if parent is None:
                    problems.append(f"{chunk.chunk_id}: dangling parent {chunk.parent_id}")
                elif chunk.chunk_id not in parent.child_ids:
                    problems.append(f"{chunk.chunk_id}: not listed by parent {chunk.parent_id}")
            elif chunk.scale != ChunkScale.DOCUMENT:
                problems.append(f"{chunk.chunk_id}: non-root chunk without parent")

            # Walk up; a repeated id means a cycle
            seen = {chunk.chunk_id}
            current = self.chunks.get(chunk.parent_id) if chunk.parent_id else None
            while current is not None:
                if current.chunk_id in seen:
                    problems.append(f"{chunk.chunk_id}: cycle through {current.chunk_id}")
                    break
                seen.add(current.chunk_id)
                current = self.chunks.get(current.parent_id) if current.parent_id else None
        return problems


# ============================================================================
# EMBEDDINGS
# ============================================================================

@dataclass
class EmbeddingView:
    """One embedding of one chunk. Written once per document version."""
    chunk_id: str
    view_type: EmbeddingType
    vector: np.ndarray
    quality_score: float
    model_id: str = ""
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])


# ============================================================================
# RETRIEVAL
# ============================================================================

@dataclass
class QueryAnalysis:
    """Classification used to pick a retrieval strategy."""
    query: str
    query_type: QueryType
    complexity: QueryComplexity
    token_count: int
    clause_count: int
    is_ambiguous: bool = False
    requires_exact_terms: bool = False
    spans_structure: bool = False
    has_conversation: bool = False
    implies_multiple_facts: bool = False
    is_system_query: bool = False
    key_terms: List[str] = field(default_factory=list)
    exact_terms: List[str] = field(default_factory=list)


@dataclass
class RetrievalCandidate:
    """Query-scoped scored chunk."""
    chunk: Chunk
    similarity_score: float
    strategy_used: RetrievalStrategy
    expansion_source: ExpansionSource = ExpansionSource.NONE
    final_rank: int = -1
    hop: int = 1
    view_type: Optional[EmbeddingType] = None

    @property
    def chunk_id(self) -> str:
        return self.chunk.chunk_id


@dataclass
class HopRecord:
    """Summary of one multi-hop iteration."""
    hop: int
    query: str
    new_chunk_ids: List[str]
    confidence: float


@dataclass
class RetrievalResult:
    """
    Ranked retrieval output.

    An empty result with status NO_QUALIFYING_CONTEXT is a normal outcome
    that callers are expected to handle.
    """
    query: str
    candidates: List[RetrievalCandidate] = field(default_factory=list)
    strategy: Optional[RetrievalStrategy] = None
    status: RetrievalStatus = RetrievalStatus.OK
    analysis: Optional[QueryAnalysis] = None
    hops: List[HopRecord] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.candidates

    @property
    def chunks(self) -> List[Chunk]:
        return [c.chunk for c in self.candidates]

    @property
    def total_tokens(self) -> int:
        return sum(c.chunk.token_count for c in self.candidates)

    @classmethod
    def no_qualifying_context(cls, query: str, strategy: Optional[RetrievalStrategy] = None,
                              analysis: Optional[QueryAnalysis] = None,
                              stats: Optional[Dict] = None) -> 'RetrievalResult':
        return cls(
            query=query,
            strategy=strategy,
            status=RetrievalStatus.NO_QUALIFYING_CONTEXT,
            analysis=analysis,
            stats=stats or {},
        )


# ============================================================================
# PIPELINE
# ============================================================================

@dataclass
class BatchItemFailure:
    """Isolated failure of one document in a batch."""
    document_id: str
    error_type: str
    message: str


@dataclass
class ProcessingResult:
    """Output of processing one document."""
    document_id: str
    version: int
    chunks: ChunkTree
    embeddings: Dict[str, Dict[EmbeddingType, EmbeddingView]] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=dict)
    quality_report: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchResult:
    """Output of processing a batch of documents."""
    results: List[ProcessingResult] = field(default_factory=list)
    failures: List[BatchItemFailure] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.results)
