#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Script: run_query.py
Package: scripts
Purpose: CLI interface for multi-scale contextual retrieval

The store is in-memory (or an in-process FAISS index), so documents are
ingested first and the query runs against them in the same process.

Usage:
    python scripts/run_query.py "How is the management fee calculated?" --docs data/prospectuses
    python scripts/run_query.py "What about redemptions?" --docs fund.md --context "Tell me about fund A"
    python scripts/run_query.py "Compare fees and expenses" --docs data/ --strategy hybrid --output results.json
    python scripts/run_query.py "Test query" --docs notes.md --embedder hashing --json-full

References:
    - multiscale_rag/retrieval/retrieval_engine.py
    - multiscale_rag/pipeline/pipeline_orchestrator.py
"""

import sys
import argparse
import json
from pathlib import Path
from datetime import datetime

# Project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Local imports
from multiscale_rag.config.retrieval_config import RetrievalStrategy
from multiscale_rag.config.settings import PipelineConfig, RetrievalOptions
from multiscale_rag.pipeline.document_loader import load_documents
from multiscale_rag.pipeline.pipeline_orchestrator import PipelineOrchestrator
from multiscale_rag.utils.embedder import HashingEmbedder, SentenceTransformerEmbedder
from multiscale_rag.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

TEXT_PREVIEW_CHARS = 300


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Multi-scale contextual retrieval",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_query.py "How is NAV calculated?" --docs data/prospectuses
  python scripts/run_query.py "What about its fees?" --docs fund.md --context "Tell me about fund A"
  python scripts/run_query.py "Compare fees and expenses" --docs data/ --strategy multi_scale
  python scripts/run_query.py "Test query" --docs notes.md --embedder hashing --output results.json
        """
    )

    parser.add_argument(
        'query',
        type=str,
        help='Query string to process'
    )

    parser.add_argument(
        '--docs',
        nargs='+',
        required=True,
        help='Text/markdown/JSON files or directories to ingest before querying'
    )

    parser.add_argument(
        '--context',
        nargs='*',
        default=[],
        help='Prior conversation turns, oldest first'
    )

    parser.add_argument(
        '--strategy',
        choices=[s.value for s in RetrievalStrategy],
        help='Force a retrieval strategy (default: chosen from the query)'
    )

    parser.add_argument(
        '--embedder',
        choices=['sentence-transformers', 'hashing'],
        default='sentence-transformers',
        help='Embedding backend (default: sentence-transformers; hashing runs offline)'
    )

    parser.add_argument(
        '--top-k',
        type=int,
        help='Number of chunks in the final result (default from config)'
    )

    parser.add_argument(
        '--no-multi-hop',
        action='store_true',
        help='Disable follow-up hops'
    )

    parser.add_argument(
        '--output',
        type=str,
        help='Save results to JSON file (optional)'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Show query analysis and hop details'
    )

    parser.add_argument(
        '--json-full',
        action='store_true',
        help='Include full chunk text in JSON output (not truncated)'
    )

    return parser.parse_args()


# ============================================================================
# QUERY EXECUTION
# ============================================================================

def build_options(args) -> RetrievalOptions:
    overrides = {}
    if args.strategy:
        overrides['strategy'] = RetrievalStrategy(args.strategy)
    if args.top_k:
        overrides['final_k'] = args.top_k
    if args.no_multi_hop:
        overrides['multi_hop'] = False
    return RetrievalOptions.from_config(**overrides)


def run_query(args) -> dict:
    """
    Ingest documents, then retrieve context for the query.

    Returns:
        Dict with query analysis, ranked chunks and stats
    """
    start_time = datetime.now()
    embedder = HashingEmbedder() if args.embedder == 'hashing' else SentenceTransformerEmbedder()
    pipeline = PipelineOrchestrator(
        embedder=embedder,
        config=PipelineConfig.from_config(),
        retrieval_options=build_options(args),
    )

    try:
        batch = pipeline.process_batch(load_documents(args.docs))
        for failure in batch.failures:
            print(f"WARNING: {failure.document_id} not ingested ({failure.error_type}: {failure.message})")

        print(f"\n{'='*80}")
        print(f"QUERY: {args.query}")
        if args.context:
            print(f"CONTEXT: {' | '.join(args.context)}")
        print(f"{'='*80}\n")

        result = pipeline.retrieve(args.query, context=args.context or None)
    finally:
        pipeline.close()

    strategy = result.strategy.value if result.strategy else None
    print(f"{'-'*80}")
    print("RETRIEVAL COMPLETE")
    print(f"{'-'*80}")
    print(f"Status: {result.status.value}")
    print(f"Strategy: {strategy}")
    print(f"Hops: {len(result.hops)}")
    print(f"Chunks: {len(result.candidates)} ({result.total_tokens} tokens)")
    print(f"{'-'*80}\n")

    if args.verbose and result.analysis is not None:
        analysis = result.analysis
        print("QUERY ANALYSIS:")
        print(f"  Type: {analysis.query_type.value}, complexity: {analysis.complexity.value}")
        print(f"  Key terms: {analysis.key_terms}")
        if analysis.exact_terms:
            print(f"  Exact terms: {analysis.exact_terms}")
        for hop in result.hops:
            print(f"  Hop {hop.hop}: '{hop.query}' -> {len(hop.new_chunk_ids)} new chunks "
                  f"(confidence {hop.confidence:.2f})")
        print()

    chunks_out = []
    for candidate in result.candidates:
        chunk = candidate.chunk
        print(f"  [{candidate.final_rank + 1}] {chunk.chunk_id} ({chunk.scale.value})")
        print(f"      Doc: {chunk.document_id} v{chunk.document_version}")
        print(f"      Score: {candidate.similarity_score:.3f}, Source: {candidate.expansion_source.value}, "
              f"Hop: {candidate.hop}")
        print(f"      Text: {chunk.content[:TEXT_PREVIEW_CHARS]}...")
        print()
        chunks_out.append({
            'rank': candidate.final_rank,
            'chunk_id': chunk.chunk_id,
            'document_id': chunk.document_id,
            'scale': chunk.scale.value,
            'score': round(candidate.similarity_score, 4),
            'expansion_source': candidate.expansion_source.value,
            'hop': candidate.hop,
            'token_count': chunk.token_count,
            'text': chunk.content if args.json_full else chunk.content[:TEXT_PREVIEW_CHARS],
        })

    elapsed = (datetime.now() - start_time).total_seconds()
    print(f"Total time: {elapsed:.2f}s")

    return {
        'query': args.query,
        'context': args.context,
        'timestamp': start_time.isoformat(),
        'elapsed_seconds': elapsed,
        'status': result.status.value,
        'strategy': strategy,
        'hops': [
            {'hop': h.hop, 'query': h.query, 'new_chunks': h.new_chunk_ids, 'confidence': h.confidence}
            for h in result.hops
        ],
        'chunks': chunks_out,
        'stats': result.stats,
        'ingestion': batch.stats,
    }


def main():
    args = parse_args()
    setup_logging()

    results = run_query(args)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(results, f, indent=2, ensure_ascii=False, default=str)
        print(f"\nResults saved to: {output_path}")


if __name__ == '__main__':
    main()
