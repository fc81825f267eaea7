#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Script: run_ingestion.py
Package: scripts
Purpose: CLI for hierarchical chunking and multi-view embedding of documents

Usage:
    python scripts/run_ingestion.py data/prospectuses
    python scripts/run_ingestion.py notes.md corpus.json --embedder hashing --output report.json
    python scripts/run_ingestion.py data/docs --views content contextual --workers 2 --merge-flagged

References:
    - multiscale_rag/pipeline/pipeline_orchestrator.py
    - multiscale_rag/pipeline/document_loader.py
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
from multiscale_rag.config.settings import PipelineConfig
from multiscale_rag.pipeline.document_loader import load_documents
from multiscale_rag.pipeline.pipeline_orchestrator import PipelineOrchestrator
from multiscale_rag.utils.embedder import HashingEmbedder, SentenceTransformerEmbedder
from multiscale_rag.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

VIEW_CHOICES = ['content', 'contextual', 'hierarchical', 'semantic']


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Multi-scale document ingestion (chunk -> embed -> store)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_ingestion.py data/prospectuses
  python scripts/run_ingestion.py notes.md --embedder hashing --output report.json
  python scripts/run_ingestion.py data/docs --views content semantic --workers 2
        """
    )

    parser.add_argument(
        'paths',
        nargs='+',
        help='Text/markdown/JSON files or directories to ingest'
    )

    parser.add_argument(
        '--embedder',
        choices=['sentence-transformers', 'hashing'],
        default='sentence-transformers',
        help='Embedding backend (default: sentence-transformers; hashing runs offline)'
    )

    parser.add_argument(
        '--views',
        nargs='+',
        choices=VIEW_CHOICES,
        default=VIEW_CHOICES,
        help='Embedding views to generate (default: all four)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        help='Documents processed in parallel (default from config)'
    )

    parser.add_argument(
        '--merge-flagged',
        action='store_true',
        help='Merge chunks below the quality floor into a neighbor'
    )

    parser.add_argument(
        '--output',
        type=str,
        help='Save ingestion report to JSON file (optional)'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Show per-document quality reports'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Also write logs to this file'
    )

    return parser.parse_args()


def build_embedder(name: str):
    if name == 'hashing':
        return HashingEmbedder()
    return SentenceTransformerEmbedder()


# ============================================================================
# INGESTION
# ============================================================================

def run_ingestion(args) -> dict:
    """
    Load, process and summarize documents.

    Returns:
        Report dict (batch stats, per-document summaries, pipeline stats)
    """
    start_time = datetime.now()
    documents = load_documents(args.paths)
    if not documents:
        print("No documents found.")
        return {}

    overrides = {
        'requested_views': tuple(args.views),
        'merge_flagged_chunks': args.merge_flagged,
    }
    if args.workers:
        overrides['max_workers'] = args.workers
    config = PipelineConfig.from_config(**overrides)

    pipeline = PipelineOrchestrator(embedder=build_embedder(args.embedder), config=config)
    try:
        batch = pipeline.process_batch(documents)
        stats = pipeline.get_processing_stats()
    finally:
        pipeline.close()

    print(f"\n{'='*80}")
    print("INGESTION COMPLETE")
    print(f"{'='*80}")
    print(f"Documents: {batch.stats['succeeded']}/{batch.stats['documents']} succeeded")
    print(f"Chunks generated: {batch.stats['chunks_generated']}")
    print(f"Embeddings generated: {batch.stats['embeddings_generated']}")
    print(f"Average quality: {batch.stats['average_quality']:.3f}")
    print(f"Cache hit rate: {stats['embedding']['cache']['hit_rate']:.1%}")

    if batch.failures:
        print(f"\nFAILURES ({len(batch.failures)}):")
        for failure in batch.failures:
            print(f"  {failure.document_id}: {failure.error_type} - {failure.message}")

    documents_report = []
    for result in batch.results:
        report = result.quality_report
        documents_report.append({
            'document_id': result.document_id,
            'version': result.version,
            'chunks': len(result.chunks),
            'stats': result.stats,
            'quality_report': report,
        })
        if args.verbose:
            print(f"\n  {result.document_id} v{result.version}")
            print(f"      Chunks: {len(result.chunks)} ({result.stats.get('by_scale', {})})")
            print(f"      Flagged: {report['flagged_count']} {report['flag_counts']}")
            print(f"      Missing views: {report['missing_view_count']}")
            if report['tree_problems']:
                print(f"      Tree problems: {report['tree_problems']}")

    elapsed = (datetime.now() - start_time).total_seconds()
    print(f"\nTotal time: {elapsed:.2f}s")

    return {
        'timestamp': start_time.isoformat(),
        'elapsed_seconds': elapsed,
        'batch': batch.stats,
        'documents': documents_report,
        'pipeline': stats,
    }


def main():
    args = parse_args()
    setup_logging(log_file=args.log_file)

    results = run_ingestion(args)

    if args.output and results:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(results, f, indent=2, ensure_ascii=False, default=str)
        print(f"\nReport saved to: {output_path}")


if __name__ == '__main__':
    main()
