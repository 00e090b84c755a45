"""Similarity measures used to rank durable cache candidates."""

from __future__ import annotations

from collections.abc import Callable, Iterable

import numpy as np
import structlog

logger = structlog.get_logger(__name__)


def _normalize(tags: Iterable[str]) -> set[str]:
    return {str(t).strip().lower() for t in tags if str(t).strip()}


def tag_overlap(tags1: Iterable[str], tags2: Iterable[str]) -> float:
    """Jaccard overlap of two tag sets, case-insensitive.

    Two empty sets carry no evidence of similarity and score 0.0.
    """
    set1 = _normalize(tags1)
    set2 = _normalize(tags2)
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)


def numpy_cosine_similarity(
    vec1: np.ndarray | None, vec2: np.ndarray | None
) -> float:
    """Calculate cosine similarity between two numpy vectors."""
    if vec1 is None or vec2 is None:
        logger.debug("Cosine similarity: one or both vectors are None. Returning 0.0.")
        return 0.0
    try:
        v1 = np.asarray(vec1, dtype=np.float32).flatten()
        v2 = np.asarray(vec2, dtype=np.float32).flatten()
    except ValueError as e:
        logger.warning(
            "Cosine similarity: could not convert input to numpy array",
            error=str(e),
        )
        return 0.0
    if v1.shape != v2.shape:
        logger.warning(
            "Cosine similarity: shape mismatch",
            left=v1.shape,
            right=v2.shape,
        )
        return 0.0
    if v1.size == 0:
        return 0.0
    norm_v1 = np.linalg.norm(v1)
    norm_v2 = np.linalg.norm(v2)
    if norm_v1 == 0.0 or norm_v2 == 0.0:
        logger.debug("Cosine similarity: at least one zero-norm vector. Returning 0.0.")
        return 0.0
    similarity = np.dot(v1, v2) / (norm_v1 * norm_v2)
    return float(np.clip(similarity, -1.0, 1.0))


def tag_cosine(tags1: Iterable[str], tags2: Iterable[str]) -> float:
    """Cosine similarity of the binary tag vectors of two tag sets.

    Scores at least as high as :func:`tag_overlap` for the same sets.
    """
    set1 = _normalize(tags1)
    set2 = _normalize(tags2)
    vocabulary = sorted(set1 | set2)
    if not vocabulary:
        return 0.0
    v1 = np.array([tag in set1 for tag in vocabulary], dtype=np.float32)
    v2 = np.array([tag in set2 for tag in vocabulary], dtype=np.float32)
    return max(0.0, numpy_cosine_similarity(v1, v2))


SIMILARITY_FUNCTIONS: dict[str, Callable[[Iterable[str], Iterable[str]], float]] = {
    "jaccard": tag_overlap,
    "cosine": tag_cosine,
}


def get_similarity_fn(name: str) -> Callable[[Iterable[str], Iterable[str]], float]:
    try:
        return SIMILARITY_FUNCTIONS[name]
    except KeyError:
        raise ValueError(
            f"Unknown similarity metric {name!r}; expected one of {sorted(SIMILARITY_FUNCTIONS)}"
        ) from None
