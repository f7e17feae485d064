"""Pluggable text embedders.

The engine only relies on the contract *text -> L2-normalised vector of a
fixed dimension*. The built-in :class:`HashEmbeddingModel` is deterministic
and dependency-free; any object with ``dim`` and ``embed_text`` can be
injected instead (``embed_text`` may be a coroutine for remote backends).
"""

from __future__ import annotations

import inspect
import logging
import math
import re
from hashlib import blake2b
from typing import Any, Dict, List, Optional, Protocol, Union

from .config import DEFAULT_EMBEDDING_DIM
from .errors import ComputationError

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

DEFAULT_MODEL = "hash"


class EmbeddingModel(Protocol):
    dim: int

    def embed_text(self, text: str) -> Any:
        """Return a unit-norm vector of length ``dim`` (or an awaitable of one)."""
        ...


class HashEmbeddingModel:
    """Deterministic token-hashing embedder.

    Each identifier-like token is hashed into one of ``dim`` buckets with a
    hash-derived sign; the bucket counts are L2-normalised. Similar token
    bags give similar vectors, which is enough for keyword-level semantics.
    """

    model_key = "hash"

    def __init__(self, dim: int = DEFAULT_EMBEDDING_DIM) -> None:
        if dim < 1:
            raise ValueError("dim must be positive")
        self.dim = dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return vec
        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dim
            sign = 1.0 if (digest[4] & 1) == 0 else -1.0
            vec[idx] += sign
        return l2_normalize(vec)


EMBEDDING_MODELS: Dict[str, Dict[str, Any]] = {
    "hash": {
        "name": "Hash Embedding",
        "dim": DEFAULT_EMBEDDING_DIM,
        "description": "Deterministic token hashing, no model download",
    },
    "hash-small": {
        "name": "Hash Embedding (small)",
        "dim": 64,
        "description": "Fewer buckets; smaller index, more collisions",
    },
    "hash-large": {
        "name": "Hash Embedding (large)",
        "dim": 1024,
        "description": "More buckets; fewer collisions on large repositories",
    },
}


def get_embedder(model_key: Optional[str] = None) -> HashEmbeddingModel:
    """Return the configured embedder.

    Resolution order: explicit ``model_key``, ``[embeddings].model`` from
    ``config.toml``, then ``"hash"``. Unknown keys fall back to hash.
    """
    if model_key is None:
        from .config_manager import load_embedding_config

        model_key = load_embedding_config().get("model") or DEFAULT_MODEL

    if model_key not in EMBEDDING_MODELS:
        logger.warning("Unknown embedding model '%s', falling back to hash.", model_key)
        model_key = DEFAULT_MODEL
    model = HashEmbeddingModel(EMBEDDING_MODELS[model_key]["dim"])
    model.model_key = model_key
    return model


async def embed(model: Union[EmbeddingModel, Any], text: str) -> List[float]:
    """Run *model* on *text*, awaiting it if needed.

    Raises:
        ComputationError: the backend failed or returned a malformed vector.
    """
    try:
        result = model.embed_text(text)
        if inspect.isawaitable(result):
            result = await result
    except ComputationError:
        raise
    except Exception as exc:
        raise ComputationError(f"Embedding failed: {exc}") from exc
    vec = list(result)
    dim = getattr(model, "dim", len(vec))
    if len(vec) != dim:
        raise ComputationError(f"Embedding has dimension {len(vec)}, expected {dim}")
    return vec


def cosine_similarity(vec_a: List[float], vec_b: List[float]) -> float:
    """Cosine similarity between two vectors.

    Returns a value in ``[-1, 1]``. Zero-length or mismatched vectors
    return ``0.0``.
    """
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0
    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))
    if norm_a < 1e-12 or norm_b < 1e-12:
        return 0.0
    return dot / (norm_a * norm_b)


def l2_normalize(vec: List[float]) -> List[float]:
    """Return *vec* scaled to unit length; a zero vector is returned unchanged."""
    norm = math.sqrt(sum(v * v for v in vec))
    if norm < 1e-12:
        return vec
    return [v / norm for v in vec]


def validate_embedding(vec: List[float], label: str = "embedding") -> Dict[str, Any]:
    """Check that *vec* is non-empty, finite and unit-normalised.

    Returns a dict with ``ok``, ``norm``, ``dim`` and any ``warnings``.
    """
    info: Dict[str, Any] = {"label": label, "dim": len(vec), "ok": True, "warnings": []}
    if not vec:
        info.update(ok=False, norm=0.0)
        info["warnings"].append("empty vector")
        return info

    norm = math.sqrt(sum(v * v for v in vec))
    info["norm"] = norm
    if any(math.isnan(v) or math.isinf(v) for v in vec):
        info["ok"] = False
        info["warnings"].append("contains NaN or Inf")
    if norm < 1e-9:
        info["ok"] = False
        info["warnings"].append("zero vector")
    elif abs(norm - 1.0) > 0.01:
        info["warnings"].append(f"not unit-normalised (norm={norm:.4f})")
    return info
