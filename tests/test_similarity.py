# tests/test_similarity.py
import numpy as np
import pytest
from utils.similarity import (
    get_similarity_fn,
    numpy_cosine_similarity,
    tag_cosine,
    tag_overlap,
)


def test_tag_overlap_is_case_insensitive_jaccard():
    assert tag_overlap(["Love", "war"], ["love", "peace"]) == pytest.approx(1 / 3)
    assert tag_overlap(["a"], ["A"]) == 1.0


def test_tag_overlap_of_empty_sets_is_zero():
    assert tag_overlap([], []) == 0.0
    assert tag_overlap(["", " "], []) == 0.0


def test_cosine_similarity_edge_cases():
    assert numpy_cosine_similarity(None, np.array([1.0])) == 0.0
    assert numpy_cosine_similarity(np.array([1.0, 0.0]), np.array([1.0])) == 0.0
    assert numpy_cosine_similarity(np.zeros(3), np.ones(3)) == 0.0
    assert numpy_cosine_similarity(np.array([1.0, 2.0]), np.array([2.0, 4.0])) == pytest.approx(1.0)


def test_tag_cosine_scores_binary_tag_vectors():
    assert tag_cosine(["Love", "war"], ["love", "peace"]) == pytest.approx(0.5)
    assert tag_cosine(["a", "b"], ["b", "a"]) == pytest.approx(1.0)
    assert tag_cosine(["a"], []) == 0.0
    assert tag_cosine([], []) == 0.0
    assert tag_cosine(["a", "b", "c"], ["a"]) >= tag_overlap(["a", "b", "c"], ["a"])


def test_similarity_metric_lookup():
    assert get_similarity_fn("jaccard") is tag_overlap
    assert get_similarity_fn("cosine") is tag_cosine
    with pytest.raises(ValueError):
        get_similarity_fn("euclid")
