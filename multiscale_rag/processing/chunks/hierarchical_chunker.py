# -*- coding: utf-8 -*-
"""
Hierarchical multi-scale chunking with semantic boundaries

Turns a Document into a ChunkTree with four scales: document -> section ->
paragraph -> sentence. The document is split into sentences once (NLTK Punkt,
never across paragraph breaks) and, when semantic boundary detection is on,
all sentences are embedded in one pass. Every chunk is then a contiguous
range of that sentence list, which keeps containment exact and lets
coherence reuse the sentence embeddings.

Algorithm:
    1. Sections from structural hints or heading patterns.
    2. Document chunks: sections packed up to the document max (~8000 tokens);
       a single larger section is split by the BoundaryDetector.
    3. Section chunks: one per headed section, split by the BoundaryDetector
       only when over the section max.
    4. Paragraph and sentence chunks: BoundaryDetector segmentation within the
       parent's range, natural paragraph breaks preferred.
    5. Adaptive sizing scales each level's bounds by a complexity factor in
       [0.5, 1.5] computed on the text being split.
    6. Parent links are chosen by weighted parent score among candidates at
       the scale directly above; siblings are derived afterwards.
    7. Cross-references (see section N, step N, question/answer pairs) become
       Relationship records.
    8. Overlap text from the preceding chunk of the same scale is duplicated
       onto each non-root chunk.
    9. Quality and coherence scoring; chunks below the floor are flagged,
       never dropped.

References:
    config.ingestion_config.SCALE_CONFIG / CHUNKING_CONFIG
    processing/chunks/boundary_detector.py
    processing/chunks/chunk_scorer.py
"""
# Standard library
import logging
import re
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

# Third-party
import numpy as np

# Foundation
from multiscale_rag.config.settings import ChunkingConfig, ScaleConfig
from multiscale_rag.processing.chunks import chunk_scorer
from multiscale_rag.processing.chunks.boundary_detector import BoundaryDetector
from multiscale_rag.processing.chunks.structure_parser import Section, parse_sections
from multiscale_rag.utils.dataclasses import (
    Chunk,
    ChunkFlag,
    ChunkScale,
    ChunkTree,
    Document,
    Relationship,
    RelationType,
    Segment,
)
from multiscale_rag.utils.embedder import EmbeddingCapability
from multiscale_rag.utils.errors import EmptyDocumentError
from multiscale_rag.utils.id_generator import generate_chunk_id
from multiscale_rag.utils.text_analysis import (
    estimate_tokens,
    extract_keywords,
    split_paragraphs,
    split_sentences,
    truncate_to_tokens,
)

# Config
from multiscale_rag.config.ingestion_config import CHUNKING_CONFIG

logger = logging.getLogger(__name__)

CROSS_REFERENCE_PATTERN = re.compile(
    CHUNKING_CONFIG.get('cross_reference_patterns', [
        r'\b(?:see|refer to|as described in)\s+(?:section|chapter|article)\s+(\d+(?:\.\d+)*)'
    ])[0],
    re.IGNORECASE
)
STEP_PATTERN = re.compile(r'\bstep\s+(\d+)\b', re.IGNORECASE)
QUESTION_OPENER = re.compile(r'^(?:q(?:uestion)?\s*[:.)]|faq\b)', re.IGNORECASE)

SENTENCE_EMBED_BATCH = 256
KEYWORDS_PER_CHUNK = 10


@dataclass
class _BuildState:
    """Per-document working state shared by the build steps."""
    document: Document
    config: ChunkingConfig
    detector: BoundaryDetector
    sentences: List[str]
    token_counts: List[int]
    prefix: np.ndarray
    embeddings: Optional[np.ndarray]
    paragraph_starts: Set[int]
    tree: ChunkTree
    sequence: Dict[ChunkScale, int] = field(default_factory=lambda: defaultdict(int))
    ranges: Dict[str, Tuple[int, int]] = field(default_factory=dict)
    bounds: Dict[str, ScaleConfig] = field(default_factory=dict)
    unresolved: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    order: Dict[ChunkScale, List[str]] = field(default_factory=lambda: defaultdict(list))
    section_starts: Dict[int, int] = field(default_factory=dict)

    def span_tokens(self, a: int, b: int) -> int:
        return int(self.prefix[b] - self.prefix[a])

    def text(self, a: int, b: int) -> str:
        return ' '.join(self.sentences[a:b])

    def embedding_slice(self, a: int, b: int) -> Optional[np.ndarray]:
        if self.embeddings is None:
            return None
        return self.embeddings[a:b]


class HierarchicalChunker:
    """
    Multi-scale chunker producing a ChunkTree arena.

    Args:
        embedder: Capability used for sentence embeddings (boundary detection
            and coherence). Without one, boundaries fall back to size packing.
        config: Default ChunkingConfig (per-call config overrides it)
        boundary_detector: Custom detector (defaults to one over ``embedder``)
        embed_texts: Batch embedding function returning None on failure. When
            given, sentence embeddings go through it instead of calling
            ``embedder`` directly (the pipeline passes its orchestrator's, so
            sentences share its timeout, retry and rate limiting).
    """

    def __init__(
        self,
        embedder: Optional[EmbeddingCapability] = None,
        config: Optional[ChunkingConfig] = None,
        boundary_detector: Optional[BoundaryDetector] = None,
        embed_texts: Optional[Callable[[List[str]], Optional[np.ndarray]]] = None,
    ):
        self.embedder = embedder
        self.embed_texts = embed_texts
        self.config = config or ChunkingConfig.from_config()
        self.detector = boundary_detector or BoundaryDetector(
            embedder, threshold=self.config.similarity_drop_threshold
        )
        self.stats = {
            'documents_chunked': 0,
            'chunks_created': 0,
            'empty_documents': 0,
            'sentence_embedding_failures': 0,
        }
        self.stats_lock = threading.Lock()

        logger.info(
            f"HierarchicalChunker initialized: adaptive={self.config.adaptive_sizing}, "
            f"semantic={self.config.semantic_boundary_detection}, "
            f"threshold={self.config.similarity_drop_threshold}, "
            f"quality_floor={self.config.quality_floor}"
        )

    def _count(self, key: str, n: int = 1) -> None:
        with self.stats_lock:
            self.stats[key] += n

    # ========================================================================
    # ENTRY POINT
    # ========================================================================

    def chunk_document(self, document: Document, config: Optional[ChunkingConfig] = None) -> ChunkTree:
        """
        Chunk a document into a multi-scale tree.

        Args:
            document: Input document
            config: Per-call configuration (defaults to the chunker's)

        Returns:
            ChunkTree whose roots are DOCUMENT-scale chunks

        Raises:
            EmptyDocumentError: The document yields no sentences
        """
        config = config or self.config
        detector = self.detector
        if abs(detector.threshold - config.similarity_drop_threshold) > 1e-9:
            detector = BoundaryDetector(self.embedder, threshold=config.similarity_drop_threshold)

        sections = parse_sections(document)
        sentences: List[str] = []
        section_ranges: List[Tuple[Section, int, int]] = []
        paragraph_starts: Set[int] = set()

        for section in sections:
            start = len(sentences)
            for paragraph in split_paragraphs(section.body):
                paragraph_sentences = split_sentences(paragraph)
                if paragraph_sentences:
                    paragraph_starts.add(len(sentences))
                    sentences.extend(paragraph_sentences)
            if len(sentences) > start:
                section_ranges.append((section, start, len(sentences)))

        if not sentences:
            self._count('empty_documents')
            raise EmptyDocumentError(document.document_id)

        token_counts = [estimate_tokens(s) for s in sentences]
        embeddings = None
        fallback = False
        if config.semantic_boundary_detection:
            embeddings = self._embed_sentences(sentences)
            fallback = embeddings is None and self._can_embed

        state = _BuildState(
            document=document,
            config=config,
            detector=detector,
            sentences=sentences,
            token_counts=token_counts,
            prefix=np.concatenate([[0], np.cumsum(token_counts)]).astype(int),
            embeddings=embeddings,
            paragraph_starts=paragraph_starts,
            tree=ChunkTree(document_id=document.document_id, version=document.version),
            section_starts={id(section): a for section, a, _ in section_ranges},
        )

        for pieces, segment in self._plan_roots(state, section_ranges):
            self._build_root(state, pieces, segment)

        self._assign_siblings(state.tree)
        if config.preserve_cross_references:
            self._link_cross_references(state)
        self._score_chunks(state)
        self._apply_overlap(state.tree, config)

        problems = state.tree.validate()
        if problems:
            # Construction bug, not bad input
            logger.error(f"Document {document.document_id}: invalid chunk tree: {problems[:5]}")

        state.tree.sentence_embeddings = embeddings
        state.tree.stats = self.get_statistics(state.tree)
        state.tree.stats['sentence_embedding_fallback'] = fallback
        self._count('documents_chunked')
        self._count('chunks_created', len(state.tree))

        logger.info(
            f"Document {document.document_id} v{document.version}: {len(sentences)} sentences, "
            f"{len(state.tree)} chunks "
            f"({', '.join(f'{k}={v}' for k, v in state.tree.stats.get('by_scale', {}).items())})"
        )
        return state.tree

    # ========================================================================
    # SENTENCE EMBEDDINGS
    # ========================================================================

    @property
    def _can_embed(self) -> bool:
        return self.embed_texts is not None or self.embedder is not None

    def _embed_sentences(self, sentences: List[str]) -> Optional[np.ndarray]:
        """Embed all sentences in batches; None when the capability fails."""
        if self.embed_texts is not None:
            embeddings = self.embed_texts(sentences)
            if embeddings is None:
                logger.warning("Sentence embedding failed, boundaries fall back to size packing")
                self._count('sentence_embedding_failures')
            return embeddings
        if self.embedder is None:
            return None
        batches = []
        try:
            for i in range(0, len(sentences), SENTENCE_EMBED_BATCH):
                batches.append(self.embedder.embed(sentences[i:i + SENTENCE_EMBED_BATCH]))
        except Exception as e:
            logger.warning(f"Sentence embedding failed, boundaries fall back to size packing: {e}")
            self._count('sentence_embedding_failures')
            return None
        return np.vstack(batches) if batches else None

    # ========================================================================
    # TREE CONSTRUCTION
    # ========================================================================

    def _scale_bounds(self, state: _BuildState, scale: ChunkScale, a: int, b: int) -> ScaleConfig:
        """Bounds for splitting range [a, b) into ``scale`` chunks."""
        bounds = state.config.scale(scale.value)
        if not state.config.adaptive_sizing:
            return bounds
        factor = chunk_scorer.complexity_factor(
            state.text(a, b),
            state.sentences[a:b],
            state.config.complexity_min_factor,
            state.config.complexity_max_factor,
        )
        return bounds.scaled(factor)

    def _segment(self, state: _BuildState, a: int, b: int, bounds: ScaleConfig,
                 prefer_paragraphs: bool = False) -> List[Segment]:
        segments = state.detector.segment(
            state.sentences[a:b],
            min_tokens=bounds.min_tokens,
            max_tokens=bounds.max_tokens,
            target_tokens=bounds.target_tokens,
            embeddings=state.embedding_slice(a, b),
            semantic=state.config.semantic_boundary_detection and state.embeddings is not None,
            preferred_breaks={p - a for p in state.paragraph_starts if a < p < b} if prefer_paragraphs else None,
        )
        # Shift to document sentence indices
        for segment in segments:
            segment.start_index += a
        return segments

    def _plan_roots(self, state: _BuildState, section_ranges: List[Tuple[Section, int, int]]):
        """
        Group sections into document-scale chunks.

        Yields:
            (pieces, segment) where pieces is a list of (section, a, b) and
            segment carries boundary metadata when a section had to be split
        """
        whole_start, whole_end = section_ranges[0][1], section_ranges[-1][2]
        bounds = self._scale_bounds(state, ChunkScale.DOCUMENT, whole_start, whole_end)

        current: List[Tuple[Section, int, int]] = []
        current_tokens = 0
        for section, a, b in section_ranges:
            tokens = state.span_tokens(a, b)
            if tokens > bounds.max_tokens:
                if current:
                    yield current, None
                    current, current_tokens = [], 0
                for segment in self._segment(state, a, b, bounds):
                    start = segment.start_index
                    yield [(section, start, start + len(segment.sentences))], segment
                continue
            if current and current_tokens + tokens > bounds.max_tokens:
                yield current, None
                current, current_tokens = [], 0
            current.append((section, a, b))
            current_tokens += tokens
        if current:
            yield current, None

    def _build_root(self, state: _BuildState, pieces: List[Tuple[Section, int, int]],
                    segment: Optional[Segment]) -> None:
        blocks = []
        for section, a, b in pieces:
            body = state.text(a, b)
            if section.heading and state.section_starts.get(id(section)) == a:
                blocks.append(f"{section.heading}\n\n{body}")
            else:
                blocks.append(body)
        content = '\n\n'.join(blocks)
        a, b = pieces[0][1], pieces[-1][2]

        title = state.document.metadata.get('title') or pieces[0][0].heading
        root = self._new_chunk(
            state, ChunkScale.DOCUMENT, content, (a, b), parent=None, heading=title,
            segment=segment,
        )

        for section, sa, sb in pieces:
            bounds = self._scale_bounds(state, ChunkScale.SECTION, sa, sb)
            if state.span_tokens(sa, sb) <= bounds.max_tokens:
                parts = [Segment(sentences=state.sentences[sa:sb],
                                 token_count=state.span_tokens(sa, sb), start_index=sa)]
            else:
                parts = self._segment(state, sa, sb, bounds, prefer_paragraphs=True)

            for part in parts:
                pa, pb = part.start_index, part.start_index + len(part.sentences)
                section_chunk = self._new_chunk(
                    state, ChunkScale.SECTION, state.text(pa, pb), (pa, pb),
                    parent=root, heading=section.heading, segment=part,
                    bounds=bounds,
                )
                if section.page is not None:
                    section_chunk.metadata['page'] = section.page
                if section.number:
                    section_chunk.metadata['section_number'] = section.number
                self._build_children(state, section_chunk, (pa, pb), ChunkScale.PARAGRAPH)

    def _build_children(self, state: _BuildState, parent: Chunk, rng: Tuple[int, int],
                        scale: ChunkScale) -> None:
        a, b = rng
        bounds = self._scale_bounds(state, scale, a, b)
        segments = self._segment(state, a, b, bounds, prefer_paragraphs=(scale == ChunkScale.PARAGRAPH))

        for segment in segments:
            sa, sb = segment.start_index, segment.start_index + len(segment.sentences)
            chunk = self._new_chunk(
                state, scale, state.text(sa, sb), (sa, sb), parent=parent,
                heading=parent.heading, segment=segment, bounds=bounds,
            )
            if scale.child_scale is not None:
                self._build_children(state, chunk, (sa, sb), scale.child_scale)

    def _new_chunk(
        self,
        state: _BuildState,
        scale: ChunkScale,
        content: str,
        rng: Tuple[int, int],
        parent: Optional[Chunk],
        heading: Optional[str] = None,
        segment: Optional[Segment] = None,
        bounds: Optional[ScaleConfig] = None,
    ) -> Chunk:
        sequence = state.sequence[scale]
        state.sequence[scale] += 1

        chunk_id = generate_chunk_id(
            state.document.document_id, state.document.version, scale.value, sequence, content
        )
        chunk = Chunk(
            chunk_id=chunk_id,
            document_id=state.document.document_id,
            document_version=state.document.version,
            scale=scale,
            content=content,
            token_count=estimate_tokens(content),
            sequence_order=sequence,
            start_offset=rng[0],
            heading=heading,
            boundary_confidence=segment.boundary_confidence if segment else 1.0,
            keywords=extract_keywords(content, top_n=KEYWORDS_PER_CHUNK),
        )
        chunk.metadata['sentence_range'] = [rng[0], rng[1]]
        if segment is not None and segment.forced:
            chunk.flags.add(ChunkFlag.FORCED_SPLIT)
        if segment is not None and segment.oversized:
            chunk.flags.add(ChunkFlag.OVERSIZED)

        state.ranges[chunk_id] = rng
        state.bounds[chunk_id] = bounds or state.config.scale(scale.value)

        if parent is None:
            chunk.hierarchy_path = [chunk_id]
            state.tree.root_ids.append(chunk_id)
        else:
            chosen = self._choose_parent(state, chunk, parent)
            chunk.parent_id = chosen.chunk_id
            chunk.hierarchy_path = chosen.hierarchy_path + [chunk_id]
            chosen.child_ids.append(chunk_id)

        state.tree.add(chunk)
        state.order[scale].append(chunk_id)
        return chunk

    def _choose_parent(self, state: _BuildState, chunk: Chunk, generator: Chunk) -> Chunk:
        """
        Highest parent score among the generating chunk and its predecessor
        at the scale directly above.
        """
        candidates = [generator]
        above = state.order[generator.scale]
        position = above.index(generator.chunk_id)
        if position > 0:
            candidates.append(state.tree.chunks[above[position - 1]])

        total = len(state.sentences)
        child_range = state.ranges[chunk.chunk_id]
        best, best_score, best_components = generator, -1.0, {}
        for candidate in candidates:
            provisional_path = candidate.hierarchy_path + [chunk.chunk_id]
            score, components = chunk_scorer.parent_score(
                chunk.content, provisional_path, child_range,
                candidate.content, candidate.hierarchy_path, state.ranges[candidate.chunk_id],
                total,
            )
            if score > best_score:
                best, best_score, best_components = candidate, score, components

        if best_score < state.config.min_parent_score:
            logger.debug(f"{chunk.chunk_id}: weak parent link ({best_score:.2f}), keeping generator")
            best = generator
        chunk.metadata['parent_score'] = round(best_score, 4)
        chunk.metadata['parent_components'] = {k: round(v, 3) for k, v in best_components.items()}
        return best

    @staticmethod
    def _assign_siblings(tree: ChunkTree) -> None:
        for chunk in tree:
            chunk.sibling_ids = []
        for chunk in tree:
            children = chunk.child_ids
            for child_id in children:
                tree.chunks[child_id].sibling_ids = [c for c in children if c != child_id]

    # ========================================================================
    # CROSS-REFERENCES
    # ========================================================================

    def _link_cross_references(self, state: _BuildState) -> None:
        tree = state.tree
        sections_by_number = {}
        for chunk in tree.at_scale(ChunkScale.SECTION):
            number = chunk.metadata.get('section_number')
            if number and number not in sections_by_number:
                sections_by_number[number] = chunk.chunk_id

        relationships = []
        seen = set()

        def link(source: str, target: str, relation: RelationType, strength: float):
            key = (source, target, relation)
            if source != target and key not in seen:
                seen.add(key)
                relationships.append(Relationship(source, target, relation, strength))

        paragraphs = tree.at_scale(ChunkScale.PARAGRAPH)
        first_step: Dict[int, str] = {}

        for chunk in paragraphs:
            for match in CROSS_REFERENCE_PATTERN.finditer(chunk.content):
                target = sections_by_number.get(match.group(1))
                if target and target not in chunk.hierarchy_path:
                    link(chunk.chunk_id, target, RelationType.CROSS_REFERENCE, 0.9)
                elif not target:
                    state.unresolved[chunk.chunk_id] += 1

            step = STEP_PATTERN.search(chunk.content)
            if step:
                first_step.setdefault(int(step.group(1)), chunk.chunk_id)

        for number, chunk_id in first_step.items():
            previous = first_step.get(number - 1)
            if previous:
                link(previous, chunk_id, RelationType.SEQUENTIAL, 0.8)

        for chunk in paragraphs:
            text = chunk.content.strip()
            if not (text.endswith('?') or QUESTION_OPENER.match(text)):
                continue
            parent = tree.parent_of(chunk)
            if parent is None:
                continue
            position = parent.child_ids.index(chunk.chunk_id)
            if position + 1 < len(parent.child_ids):
                link(chunk.chunk_id, parent.child_ids[position + 1], RelationType.QA_PAIR, 0.7)

        tree.relationships = relationships

    # ========================================================================
    # SCORING & OVERLAP
    # ========================================================================

    def _score_chunks(self, state: _BuildState) -> None:
        floor = state.config.quality_floor
        for chunk in state.tree:
            a, b = state.ranges[chunk.chunk_id]
            chunk.coherence_score = chunk_scorer.coherence_score(state.embedding_slice(a, b))
            completeness = chunk_scorer.reference_completeness(
                chunk.content, state.unresolved.get(chunk.chunk_id, 0)
            )
            bounds = state.bounds[chunk.chunk_id]
            chunk.quality_score = chunk_scorer.quality_score(
                chunk.token_count, bounds, chunk.boundary_confidence, completeness
            )
            chunk.metadata['reference_completeness'] = round(completeness, 3)
            chunk.metadata['bounds'] = [bounds.min_tokens, bounds.max_tokens]
            if chunk.quality_score < floor:
                chunk.flags.add(ChunkFlag.QUALITY_BELOW_FLOOR)

    def _apply_overlap(self, tree: ChunkTree, config: ChunkingConfig) -> None:
        for scale in (ChunkScale.SECTION, ChunkScale.PARAGRAPH, ChunkScale.SENTENCE):
            overlap_tokens = config.scale(scale.value).overlap_tokens
            if overlap_tokens <= 0:
                continue
            ordered = tree.at_scale(scale)
            for previous, chunk in zip(ordered, ordered[1:]):
                chunk.overlap_text = truncate_to_tokens(previous.content, overlap_tokens, from_end=True)

    # ========================================================================
    # RE-MERGE OF FLAGGED CHUNKS
    # ========================================================================

    def merge_flagged(self, tree: ChunkTree, config: Optional[ChunkingConfig] = None) -> int:
        """
        Merge below-floor chunks into their preceding sibling.

        Only non-root, non-oversized chunks are merged, and only when the
        combined size stays within the sibling's max bound. The surviving
        chunk keeps its id; the merged chunk's children are re-parented. Survivor
        coherence and the overlap text of following chunks are recomputed.

        Returns:
            Number of chunks merged away
        """
        config = config or self.config
        merged = 0

        for scale in (ChunkScale.SENTENCE, ChunkScale.PARAGRAPH, ChunkScale.SECTION):
            for chunk in tree.at_scale(scale):
                if ChunkFlag.QUALITY_BELOW_FLOOR not in chunk.flags or ChunkFlag.OVERSIZED in chunk.flags:
                    continue
                parent = tree.parent_of(chunk)
                if parent is None or chunk.chunk_id not in parent.child_ids:
                    continue
                position = parent.child_ids.index(chunk.chunk_id)
                if position == 0:
                    continue
                survivor = tree.chunks[parent.child_ids[position - 1]]
                max_tokens = survivor.metadata.get('bounds', [0, config.scale(scale.value).max_tokens])[1]
                if survivor.token_count + chunk.token_count > max_tokens:
                    continue

                self._absorb(tree, survivor, chunk, config)
                merged += 1

        if merged:
            self._assign_siblings(tree)
            self._apply_overlap(tree, config)
            fallback = tree.stats.get('sentence_embedding_fallback', False)
            tree.stats = self.get_statistics(tree)
            tree.stats['sentence_embedding_fallback'] = fallback
            logger.info(f"Document {tree.document_id}: merged {merged} below-floor chunks")
        return merged

    def _absorb(self, tree: ChunkTree, survivor: Chunk, chunk: Chunk, config: ChunkingConfig) -> None:
        parent = tree.parent_of(chunk)
        parent.child_ids.remove(chunk.chunk_id)

        survivor.content = f"{survivor.content} {chunk.content}"
        survivor.token_count = estimate_tokens(survivor.content)
        survivor.keywords = extract_keywords(survivor.content, top_n=KEYWORDS_PER_CHUNK)
        survivor.flags.add(ChunkFlag.MERGED)
        start, _ = survivor.metadata.get('sentence_range', [survivor.start_offset, 0])
        _, end = chunk.metadata.get('sentence_range', [0, 0])
        survivor.metadata['sentence_range'] = [start, end]
        if tree.sentence_embeddings is not None:
            survivor.coherence_score = chunk_scorer.coherence_score(tree.sentence_embeddings[start:end])

        for child_id in chunk.child_ids:
            child = tree.chunks[child_id]
            child.parent_id = survivor.chunk_id
            survivor.child_ids.append(child_id)
            self._rebuild_paths(tree, child, survivor.hierarchy_path)

        bounds_min, bounds_max = survivor.metadata.get(
            'bounds', [config.scale(survivor.scale.value).min_tokens, config.scale(survivor.scale.value).max_tokens]
        )
        bounds = ScaleConfig(max_tokens=bounds_max, min_tokens=bounds_min)
        completeness = chunk_scorer.reference_completeness(survivor.content)
        survivor.quality_score = chunk_scorer.quality_score(
            survivor.token_count, bounds, survivor.boundary_confidence, completeness
        )
        if survivor.quality_score >= config.quality_floor:
            survivor.flags.discard(ChunkFlag.QUALITY_BELOW_FLOOR)

        tree.relationships = [
            Relationship(
                survivor.chunk_id if r.source_chunk_id == chunk.chunk_id else r.source_chunk_id,
                survivor.chunk_id if r.target_chunk_id == chunk.chunk_id else r.target_chunk_id,
                r.relation_type,
                r.strength,
            )
            for r in tree.relationships
        ]
        tree.relationships = [r for r in tree.relationships if r.source_chunk_id != r.target_chunk_id]
        del tree.chunks[chunk.chunk_id]

    def _rebuild_paths(self, tree: ChunkTree, chunk: Chunk, parent_path: List[str]) -> None:
        chunk.hierarchy_path = list(parent_path) + [chunk.chunk_id]
        for child_id in chunk.child_ids:
            self._rebuild_paths(tree, tree.chunks[child_id], chunk.hierarchy_path)

    # ========================================================================
    # STATISTICS
    # ========================================================================

    def get_statistics(self, tree: ChunkTree) -> Dict:
        """
        Chunk tree statistics.

        Returns:
            Dict with per-scale counts, token and quality distributions,
            flag counts and relationship counts
        """
        chunks = list(tree)
        if not chunks:
            return {}

        token_counts = [c.token_count for c in chunks]
        quality = [c.quality_score for c in chunks]
        coherence = [c.coherence_score for c in chunks]
        flags = defaultdict(int)
        for chunk in chunks:
            for flag in chunk.flags:
                flags[flag.value] += 1
        relations = defaultdict(int)
        for relationship in tree.relationships:
            relations[relationship.relation_type.value] += 1

        return {
            'total_chunks': len(chunks),
            'by_scale': {
                scale.value: sum(1 for c in chunks if c.scale == scale) for scale in ChunkScale
            },
            'tokens': {
                'mean': float(np.mean(token_counts)),
                'median': float(np.median(token_counts)),
                'std': float(np.std(token_counts)),
                'min': int(min(token_counts)),
                'max': int(max(token_counts)),
            },
            'quality': {
                'mean': float(np.mean(quality)),
                'min': float(min(quality)),
                'max': float(max(quality)),
            },
            'coherence': {
                'mean': float(np.mean(coherence)),
                'median': float(np.median(coherence)),
            },
            'flags': dict(flags),
            'relationships': dict(relations),
        }
