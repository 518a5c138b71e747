"""Tests for cosine similarity and the embedder's device guard."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest
import torch

from src.embedding import embedder as embedder_module
from src.embedding.embedder import TextEmbedder, compute_similarity


@pytest.fixture
def vectors():
    rng = np.random.RandomState(7)
    return [rng.randn(384).astype(np.float32) for _ in range(5)]


def test_similarity_is_symmetric(vectors):
    for a in vectors:
        for b in vectors:
            assert compute_similarity(a, b).similarity == pytest.approx(
                compute_similarity(b, a).similarity, abs=1e-9
            )


def test_self_similarity_is_one(vectors):
    for v in vectors:
        result = compute_similarity(v, v)
        assert result.similarity == pytest.approx(1.0, abs=1e-6)
        assert not result.degenerate


def test_scale_invariant():
    v = np.array([1.0, 2.0, 3.0])
    assert compute_similarity(v, 10 * v).similarity == pytest.approx(1.0)


def test_opposite_and_orthogonal():
    assert compute_similarity([1.0, 0.0], [-1.0, 0.0]).similarity == pytest.approx(-1.0)
    assert compute_similarity([1.0, 0.0], [0.0, 1.0]).similarity == pytest.approx(0.0)


def test_result_in_range(vectors):
    for a in vectors:
        for b in vectors:
            assert -1.0 <= compute_similarity(a, b).similarity <= 1.0


def test_zero_vector_is_degenerate():
    result = compute_similarity(np.zeros(4), np.array([1.0, 2.0, 3.0, 4.0]))

    assert result.similarity == 0.0
    assert result.degenerate


def test_both_zero_vectors_are_degenerate():
    result = compute_similarity(np.zeros(4), np.zeros(4))
    assert result.similarity == 0.0
    assert result.degenerate
    assert not np.isnan(result.similarity)


def test_shape_mismatch_rejected():
    with pytest.raises(ValueError):
        compute_similarity(np.ones(3), np.ones(4))


def test_cuda_device_without_cuda_fails_fast(monkeypatch):
    monkeypatch.setattr(embedder_module.torch.cuda, "is_available", lambda: False)

    with pytest.raises(RuntimeError, match="CUDA"):
        TextEmbedder(device="cuda:0")


@pytest.mark.parametrize("a, b", [
    ([np.nan, 1.0, 0.0], [1.0, 0.0, 0.0]),
    ([np.inf, 1.0], [-1.0, 0.0]),
    ([1.0, 0.0], [-np.inf, 0.0]),
])
def test_non_finite_vector_is_degenerate(a, b):
    result = compute_similarity(a, b)

    assert result.similarity == 0.0
    assert result.degenerate


def test_overflowing_norm_is_degenerate():
    huge = np.array([1e200, 1e200])

    result = compute_similarity(huge, huge)

    assert result.similarity == 0.0
    assert result.degenerate


def bare_embedder(token_rows):
    embedder = TextEmbedder.__new__(TextEmbedder)
    embedder.device = torch.device("cpu")
    embedder.embedding_dim = None
    embedder.tokenizer = lambda texts: torch.tensor(token_rows)
    embedder.model = MagicMock()
    embedder.model.encode_text.side_effect = lambda tokens: torch.ones(tokens.shape[0], 8)
    return embedder


def test_text_filling_context_window_is_logged(caplog):
    embedder = bare_embedder([[49406, 320, 49407, 0], [49406, 5, 6, 49407]])

    embeddings = embedder.embed_texts(["cat", "a very long description " * 50])

    assert embeddings.shape == (2, 8)
    assert embedder.embedding_dim == 8
    assert "Text 2 reaches the 4-token context window" in caplog.text
    assert "Text 1 reaches" not in caplog.text


def test_short_texts_log_no_truncation(caplog):
    embedder = bare_embedder([[49406, 320, 49407, 0], [49406, 5, 49407, 0]])

    embedder.embed_texts(["cat", "dog"])

    assert "context window" not in caplog.text
