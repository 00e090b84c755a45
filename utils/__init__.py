# utils/__init__.py
"""Shared helpers: logging setup, similarity measures and YAML loading."""

from __future__ import annotations

from .logging import setup_logging
from .similarity import get_similarity_fn, numpy_cosine_similarity, tag_cosine, tag_overlap
from .yaml_loader import load_yaml_file, normalize_keys_recursive

__all__ = [
    "setup_logging",
    "tag_overlap",
    "numpy_cosine_similarity",
    "tag_cosine",
    "get_similarity_fn",
    "load_yaml_file",
    "normalize_keys_recursive",
]
