# -*- coding: utf-8 -*-
"""
Multi-scale RAG source package.

Hierarchical document chunking, multi-view embedding generation, chunk and
vector storage, and contextual retrieval with expansion, multi-hop and
ranking.
"""
