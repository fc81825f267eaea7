# -*- coding: utf-8 -*-
"""
Processing package for document segmentation.
"""
