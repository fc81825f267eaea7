# -*- coding: utf-8 -*-
"""
Chunking subpackage for hierarchical multi-scale document segmentation.

Contains structure_parser (headings and section spans), boundary_detector
(similarity-drop topic boundaries), chunk_scorer (quality and coherence
scores) and hierarchical_chunker (document -> section -> paragraph ->
sentence tree builder).
"""
