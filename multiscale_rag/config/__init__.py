# -*- coding: utf-8 -*-
"""
Configuration package.

Dict-based defaults for ingestion (chunking, embedding, pipeline) and
retrieval, with environment overrides loaded through python-dotenv.
"""
