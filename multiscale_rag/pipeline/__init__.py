# -*- coding: utf-8 -*-
"""
Pipeline package: end-to-end ingestion and retrieval entry point.
"""
from multiscale_rag.pipeline.pipeline_orchestrator import PipelineOrchestrator

__all__ = ['PipelineOrchestrator']
