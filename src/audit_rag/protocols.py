"""Protocol interfaces for the collaborators injected into the retrieval engine."""
from __future__ import annotations

from typing import Iterator, Protocol, Sequence, runtime_checkable

from .schema import Chunk, SearchFilters, SourceDocument, StoreHit


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns text into fixed-length vectors."""

    def embed(self, text: str) -> list[float]:
        """Embed one text.

        Raises:
            EmbeddingFailure: On quota, auth or network errors.
        """
        ...

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed many texts, preserving input order."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Holds indexed findings and answers similarity and lexical queries."""

    def vector_query(
        self,
        vector: Sequence[float],
        candidate_count: int,
        filters: SearchFilters,
    ) -> list[StoreHit]:
        """Approximate nearest-neighbour search over chunk embeddings.

        Args:
            vector: Query embedding.
            candidate_count: Maximum number of chunk hits to return.
            filters: Metadata allow-lists.

        Returns:
            One hit per chunk; higher scores mean more similar.
        """
        ...

    def text_query(self, query_text: str, filters: SearchFilters) -> list[StoreHit]:
        """Lexical relevance search; one hit per matching finding."""
        ...

    def index_document(
        self,
        document: SourceDocument,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Sequence[float]],
    ) -> None:
        """Store a finding, replacing any chunks previously indexed for it."""
        ...

    def get_document(self, doc_id: str) -> SourceDocument | None:
        ...

    def is_indexed(self, doc_id: str) -> bool:
        ...

    def list_documents(self) -> list[SourceDocument]:
        ...

    def stats(self) -> dict[str, int]:
        """Counts keyed by `total`, `indexed` and `with_chunks`."""
        ...

    def filter_options(self) -> dict[str, list[str]]:
        """Sorted distinct `protocols`, `firms` and `impacts` values."""
        ...


@runtime_checkable
class ChatProvider(Protocol):
    """Generates natural-language answers from chat messages."""

    def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> str:
        ...

    def stream(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> Iterator[str]:
        ...
