from __future__ import annotations

import logging
import time
from typing import Sequence

import numpy as np
from openai import OpenAI, OpenAIError

from .errors import EmbeddingFailure

logger = logging.getLogger(__name__)


def embed_texts(texts: list[str], model: str = "text-embedding-3-small", client: OpenAI | None = None) -> np.ndarray:
    """Generate embedding vectors for input texts using OpenAI embeddings API.

    Args:
        texts: Input strings to embed.
        model: Embedding model name.
        client: Optional pre-configured OpenAI client.

    Returns:
        A `float32` NumPy matrix shaped `(len(texts), embedding_dim)`.
    """
    client = client or OpenAI()
    response = client.embeddings.create(model=model, input=texts)
    vectors = [row.embedding for row in response.data]
    return np.array(vectors, dtype=np.float32)


def cosine_similarity(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Compute cosine similarity between one query vector and many vectors.

    Args:
        query_vector: Query embedding vector.
        matrix: Candidate embedding matrix where each row is one vector.

    Returns:
        A 1D array of cosine similarity scores aligned to matrix rows.
    """
    query_norm = np.linalg.norm(query_vector)
    matrix_norm = np.linalg.norm(matrix, axis=1)
    denominator = np.maximum(query_norm * matrix_norm, 1e-12)
    return (matrix @ query_vector) / denominator


def average_embeddings(embeddings: Sequence[Sequence[float]]) -> list[float]:
    """Element-wise mean of chunk embeddings; empty input gives an empty vector."""
    if len(embeddings) == 0:
        return []
    return np.asarray(embeddings, dtype=np.float32).mean(axis=0).tolist()


class OpenAIEmbedder:
    """Embedding provider backed by the OpenAI embeddings endpoint."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        batch_size: int = 100,
        batch_delay: float = 1.0,
        client: OpenAI | None = None,
    ):
        """Configure the provider.

        Args:
            model: Embedding model name.
            batch_size: Texts per API request in `embed_batch`.
            batch_delay: Seconds to sleep between batches to respect rate limits.
            client: Optional OpenAI client; one is created lazily otherwise.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.model = model
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def embed(self, text: str) -> list[float]:
        return self._request([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            if start and self.batch_delay > 0:
                time.sleep(self.batch_delay)
            vectors.extend(self._request(list(texts[start : start + self.batch_size])))
        return vectors

    def _request(self, texts: list[str]) -> list[list[float]]:
        try:
            matrix = embed_texts(texts, model=self.model, client=self.client)
        except OpenAIError as exc:
            logger.error(f"Embedding request failed for {len(texts)} text(s): {exc}")
            raise EmbeddingFailure(f"Failed to generate embedding: {exc}") from exc

        if matrix.shape[0] != len(texts):
            raise EmbeddingFailure(
                f"Embedding provider returned {matrix.shape[0]} vectors for {len(texts)} texts"
            )
        return matrix.tolist()
