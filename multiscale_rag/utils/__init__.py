# -*- coding: utf-8 -*-
"""
Utilities package shared across chunking, embedding and retrieval.

Contains dataclasses, ID generation, logging setup, text analysis helpers,
the LRU single-flight cache, rate limiting and embedding capability adapters.
"""
