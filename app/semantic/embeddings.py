from __future__ import annotations

import hashlib
import math
import os
import re
from functools import lru_cache
from typing import Any, Protocol

from openai import OpenAI

from app.core.config import settings

_TOKEN_PATTERN = re.compile(r"[a-z0-9\+#]+")


class EmbeddingProvider(Protocol):
    def embed(self, texts: list[str]) -> list[list[float]]:
        """Return vector embeddings for input texts."""


class SimpleEmbeddingProvider(EmbeddingProvider):
    """Hashed bag-of-tokens vectors. Deterministic and offline."""

    def __init__(self, dimension: int = 64) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be greater than 0")
        self.dimension = dimension

    def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._embed_single(text) for text in texts]

    def _embed_single(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        tokens = _TOKEN_PATTERN.findall(text.lower())
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
            index = int(digest[:8], 16) % self.dimension
            vector[index] += 1.0

        norm = math.sqrt(sum(value * value for value in vector))
        if norm <= 0:
            return vector
        return [value / norm for value in vector]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    def __init__(self, model: str = "text-embedding-3-small", dimensions: int | None = 1536) -> None:
        key = (os.getenv("OPENAI_API_KEY") or "").strip()
        if not key:
            raise RuntimeError("OPENAI_API_KEY is missing")
        self.model = model
        self.dimensions = dimensions
        self._client = OpenAI(
            api_key=key,
            base_url=(os.getenv("OPENAI_BASE_URL") or None),
            timeout=float(os.getenv("OPENAI_TIMEOUT_S", "30")),
            max_retries=int(os.getenv("OPENAI_MAX_RETRIES", "2")),
        )

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        kwargs: dict[str, Any] = {"model": self.model, "input": texts}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        response = self._client.embeddings.create(**kwargs)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    _model_cache: dict[str, Any] = {}

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2") -> None:
        self.model_name = model_name

    @classmethod
    def _get_model(cls, model_name: str) -> Any:
        if model_name not in cls._model_cache:
            # Heavy import; only paid when this provider is configured.
            from sentence_transformers import SentenceTransformer

            cls._model_cache[model_name] = SentenceTransformer(model_name)
        return cls._model_cache[model_name]

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        model = self._get_model(self.model_name)
        vectors = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return [list(map(float, vector)) for vector in vectors]


@lru_cache(maxsize=1)
def get_embedding_provider() -> EmbeddingProvider:
    provider = settings.embedding_provider
    if provider == "openai":
        return OpenAIEmbeddingProvider(
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
        )
    if provider == "sentence-transformers":
        if settings.embedding_model.startswith("text-embedding-"):
            return SentenceTransformerEmbeddingProvider()
        return SentenceTransformerEmbeddingProvider(model_name=settings.embedding_model)
    return SimpleEmbeddingProvider(dimension=settings.embedding_dimensions)
