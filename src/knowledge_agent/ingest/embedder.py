"""Embedding abstractions and deterministic baseline implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt

from langchain_core.embeddings import Embeddings

from knowledge_agent.errors import EmbeddingFailure


class Embedder(ABC):
    """Embedder interface used by ingest and retrieval components.

    Implementations must return the same vector for the same text so search
    results stay reproducible across runs.
    """

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""

    def embed(self, text: str) -> list[float]:
        """Embed one text, surfacing any collaborator error as `EmbeddingFailure`."""
        try:
            vector = self.embed_query(text)
        except EmbeddingFailure:
            raise
        except Exception as exc:
            raise EmbeddingFailure(f"Embedding request failed: {exc}") from exc
        if not vector:
            raise EmbeddingFailure("Embedding model returned an empty vector.")
        return list(vector)


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for local runs and tests. Swap in `LangChainEmbedder` around a hosted
    or local embedding model for real semantic similarity.
    """

    def __init__(self, dimension: int = 384) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._embed(text)

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapts any `langchain_core.embeddings.Embeddings` implementation."""

    def __init__(self, embeddings: Embeddings) -> None:
        if not isinstance(embeddings, Embeddings):
            raise TypeError("embeddings must implement langchain_core Embeddings")
        self._embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [list(vector) for vector in self._embeddings.embed_documents(texts)]

    def embed_query(self, text: str) -> list[float]:
        return list(self._embeddings.embed_query(text))
