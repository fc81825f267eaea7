# -*- coding: utf-8 -*-
"""
Deterministic ID generation for chunks and cache keys.

Uses truncated SHA-256 over a normalized "a|b|c" string so re-chunking an
unchanged document version yields the same chunk ids across runs.

Example:
    from multiscale_rag.utils.id_generator import generate_chunk_id

    chunk_id = generate_chunk_id("doc_001", 1, "paragraph", 4, "Net asset value ...")
    # Returns: "doc_001_v1_par_0004_3fa9c2e1b7d0"
"""

import hashlib


def _hash_string(content: str, length: int = 12) -> str:
    """
    Truncated SHA-256 hex digest.

    Args:
        content: String to hash
        length: Number of hex characters (12 = 48 bits)
    """
    return hashlib.sha256(content.encode('utf-8')).hexdigest()[:length]


def content_hash(text: str, length: int = 16) -> str:
    """Hash of whitespace-normalized text."""
    normalized = ' '.join((text or '').split())
    return _hash_string(normalized, length)


def generate_chunk_id(
    document_id: str,
    version: int,
    scale: str,
    sequence_order: int,
    content: str
) -> str:
    """
    Generate deterministic chunk ID.

    Args:
        document_id: Source document ID
        version: Document version
        scale: Scale name (document/section/paragraph/sentence)
        sequence_order: Position within the scale
        content: Chunk content (hashed, whitespace-normalized)

    Returns:
        "<document_id>_v<version>_<scale[:3]>_<order:04d>_<12-char-hex>"
    """
    digest = _hash_string(
        f"{document_id}|{version}|{scale}|{sequence_order}|{content_hash(content)}"
    )
    return f"{document_id}_v{version}_{scale[:3]}_{sequence_order:04d}_{digest}"


def generate_cache_key(chunk_id: str, view_type: str, chunk_content_hash: str) -> str:
    """Embedding cache key for (chunk, view type, content hash)."""
    return f"{chunk_id}|{view_type}|{chunk_content_hash}"
