# -*- coding: utf-8 -*-
"""
Text preparation for the four embedding views

- content: ``chunk.text_with_overlap``, i.e. the overlap carried from the
  preceding chunk of the same scale followed by the chunk text. Only the
  first chunk of a scale (and roots, which carry no overlap) embeds its bare
  content.
- contextual: the chunk surrounded by a bounded window (default +-1000
  tokens) of neighboring text at the same scale. Neighbors closer to the
  chunk receive a larger share of each side's budget (weights 1/distance);
  when the chunk has no neighbors the parent text fills the window.
- hierarchical: the chunk prefixed with its structural position:
  "Document Structure: A > B", "Content Level: paragraph", "Section: B".
- semantic: the chunk prefixed with its key terms (TF top-N, domain terms
  boosted) and suffixed with a short semantic context line.

Example:
    builder = ViewBuilder(EmbeddingConfig.from_config())
    text = builder.build(chunk, EmbeddingType.HIERARCHICAL, tree)
"""
# Standard library
import logging
from typing import List, Optional

# Foundation
from multiscale_rag.config.settings import EmbeddingConfig
from multiscale_rag.utils.dataclasses import Chunk, ChunkTree, EmbeddingType
from multiscale_rag.utils.text_analysis import (
    estimate_tokens,
    extract_keywords,
    find_domain_terms,
    truncate_to_tokens,
)

logger = logging.getLogger(__name__)

MAX_NEIGHBORS_PER_SIDE = 3
LABEL_WORDS = 8


class ViewBuilder:
    """Builds the text embedded for each view type."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config

    def build(self, chunk: Chunk, view_type: EmbeddingType, tree: Optional[ChunkTree] = None) -> str:
        if view_type == EmbeddingType.CONTENT:
            return self.content_text(chunk)
        if view_type == EmbeddingType.CONTEXTUAL:
            return self.contextual_text(chunk, tree)
        if view_type == EmbeddingType.HIERARCHICAL:
            return self.hierarchical_text(chunk, tree)
        if view_type == EmbeddingType.SEMANTIC:
            return self.semantic_text(chunk)
        raise ValueError(f"Unknown embedding view type: {view_type}")

    # ------------------------------------------------------------------
    # content
    # ------------------------------------------------------------------

    @staticmethod
    def content_text(chunk: Chunk) -> str:
        """Overlap from the preceding chunk plus the chunk text."""
        return chunk.text_with_overlap

    # ------------------------------------------------------------------
    # contextual
    # ------------------------------------------------------------------

    def contextual_text(self, chunk: Chunk, tree: Optional[ChunkTree]) -> str:
        if tree is None:
            return chunk.content

        window = self.config.context_window_tokens
        parent = tree.parent_of(chunk)
        ordered = parent.child_ids if parent is not None else tree.root_ids
        if chunk.chunk_id not in ordered:
            return chunk.content
        position = ordered.index(chunk.chunk_id)

        before_ids = list(reversed(ordered[max(0, position - MAX_NEIGHBORS_PER_SIDE):position]))
        after_ids = ordered[position + 1:position + 1 + MAX_NEIGHBORS_PER_SIDE]

        before = self._weighted_window(tree, before_ids, window, from_end=True)
        after = self._weighted_window(tree, after_ids, window, from_end=False)

        if not before and not after and parent is not None:
            # Only child: parent text stands in for neighbors
            before = [truncate_to_tokens(parent.content, window, from_end=False)]

        parts = [p for p in (' '.join(reversed(before)), chunk.content, ' '.join(after)) if p]
        return '\n\n'.join(parts)

    @staticmethod
    def _weighted_window(tree: ChunkTree, neighbor_ids: List[str], budget: int, from_end: bool) -> List[str]:
        """
        Take text from neighbors nearest first; neighbor at distance d gets
        a 1/d share of the budget, unused share rolls over to the next one.
        """
        if not neighbor_ids or budget <= 0:
            return []
        weights = [1.0 / (d + 1) for d in range(len(neighbor_ids))]
        total = sum(weights)
        pieces = []
        carry = 0
        for neighbor_id, weight in zip(neighbor_ids, weights):
            neighbor = tree.get(neighbor_id)
            if neighbor is None:
                continue
            allowance = int(budget * weight / total) + carry
            piece = truncate_to_tokens(neighbor.content, allowance, from_end=from_end)
            carry = max(0, allowance - estimate_tokens(piece))
            if piece:
                pieces.append(piece)
        return pieces

    # ------------------------------------------------------------------
    # hierarchical
    # ------------------------------------------------------------------

    @staticmethod
    def _label(chunk: Chunk) -> str:
        if chunk.heading:
            return chunk.heading
        return ' '.join(chunk.content.split()[:LABEL_WORDS])

    def hierarchical_text(self, chunk: Chunk, tree: Optional[ChunkTree]) -> str:
        labels = []
        if tree is not None:
            for ancestor in tree.ancestors(chunk):
                label = self._label(ancestor)
                if label and (not labels or labels[-1] != label):
                    labels.append(label)

        lines = []
        if labels:
            lines.append(f"Document Structure: {' > '.join(labels)}")
        lines.append(f"Content Level: {chunk.scale.value}")
        if chunk.heading:
            lines.append(f"Section: {chunk.heading}")
        return '\n\n'.join(lines) + '\n\n' + chunk.content

    # ------------------------------------------------------------------
    # semantic
    # ------------------------------------------------------------------

    def semantic_text(self, chunk: Chunk) -> str:
        keywords = extract_keywords(
            chunk.content,
            top_n=self.config.max_keywords,
            domain_terms=self.config.domain_terms,
            domain_boost=self.config.domain_boost,
        )
        domain = find_domain_terms(chunk.content, self.config.domain_terms)
        structure = 'headed' if chunk.heading else 'body'

        context = [
            f"scale:{chunk.scale.value}",
            f"length:{chunk.token_count}",
            f"structure:{structure}",
        ]
        if domain:
            context.append(f"domain:{' '.join(domain)}")

        header = f"Key Concepts: {', '.join(keywords)}\n\n" if keywords else ''
        return f"{header}{chunk.content}\n\nSemantic Context: {', '.join(context)}"
