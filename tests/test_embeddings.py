"""Tests for embedders and vector helpers."""

import math

import pytest

from codecontext.config_manager import save_section
from codecontext.embeddings import (
    HashEmbeddingModel,
    cosine_similarity,
    embed,
    get_embedder,
    l2_normalize,
    validate_embedding,
)
from codecontext.errors import ComputationError


class TestHashEmbeddingModel:
    """Tests for the built-in embedder."""

    def test_unit_norm_and_dimension(self):
        model = HashEmbeddingModel(dim=64)
        vec = model.embed_text("def process_order(order): return order")

        assert len(vec) == 64
        assert math.isclose(math.sqrt(sum(v * v for v in vec)), 1.0, rel_tol=1e-9)

    def test_deterministic(self):
        model = HashEmbeddingModel()
        assert model.embed_text("alpha beta") == model.embed_text("alpha beta")

    def test_case_insensitive(self):
        model = HashEmbeddingModel()
        assert model.embed_text("Alpha Beta") == model.embed_text("alpha beta")

    def test_empty_text_gives_zero_vector(self):
        vec = HashEmbeddingModel(dim=8).embed_text("   ")
        assert vec == [0.0] * 8

    def test_similar_texts_score_higher(self):
        model = HashEmbeddingModel()
        query = model.embed_text("order validation failure")
        close = model.embed_text("raise ValidationFailure when the order is invalid: order validation")
        far = model.embed_text("render greeting banner html")

        assert cosine_similarity(query, close) > cosine_similarity(query, far)

    def test_rejects_bad_dim(self):
        with pytest.raises(ValueError):
            HashEmbeddingModel(dim=0)


class TestEmbed:
    """Tests for the embed() adapter."""

    @pytest.mark.asyncio
    async def test_sync_model(self):
        model = HashEmbeddingModel(dim=16)
        assert await embed(model, "x") == model.embed_text("x")

    @pytest.mark.asyncio
    async def test_async_model(self):
        class RemoteModel:
            dim = 3

            async def embed_text(self, text):
                return [1.0, 0.0, 0.0]

        assert await embed(RemoteModel(), "x") == [1.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_backend_failure_is_wrapped(self):
        class BrokenModel:
            dim = 3

            def embed_text(self, text):
                raise RuntimeError("backend down")

        with pytest.raises(ComputationError, match="backend down"):
            await embed(BrokenModel(), "x")

    @pytest.mark.asyncio
    async def test_wrong_dimension(self):
        class ShortModel:
            dim = 4

            def embed_text(self, text):
                return [1.0]

        with pytest.raises(ComputationError, match="dimension"):
            await embed(ShortModel(), "x")


def test_cosine_similarity_edge_cases():
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_l2_normalize():
    assert l2_normalize([3.0, 4.0]) == pytest.approx([0.6, 0.8])
    assert l2_normalize([0.0, 0.0]) == [0.0, 0.0]


def test_validate_embedding():
    assert validate_embedding([0.6, 0.8])["ok"]
    assert not validate_embedding([])["ok"]
    assert not validate_embedding([0.0, 0.0])["ok"]
    assert not validate_embedding([float("nan"), 1.0])["ok"]
    assert validate_embedding([3.0, 4.0])["warnings"]


def test_get_embedder_reads_config():
    save_section("embeddings", {"model": "hash"})
    assert isinstance(get_embedder(), HashEmbeddingModel)


def test_get_embedder_unknown_key_falls_back():
    model = get_embedder("no-such-model")
    assert model.dim == 256
    assert model.model_key == "hash"


@pytest.mark.parametrize("key,dim", [("hash", 256), ("hash-small", 64), ("hash-large", 1024)])
def test_get_embedder_resolves_dimension(key, dim):
    model = get_embedder(key)
    assert model.dim == dim
    assert model.model_key == key
    assert len(model.embed_text("order service")) == dim


def test_get_embedder_config_selects_variant():
    save_section("embeddings", {"model": "hash-small"})
    assert get_embedder().dim == 64
