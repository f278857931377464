"""Single-signal retrieval channels: vector similarity and keyword relevance."""
from __future__ import annotations

import logging

from .errors import RetrievalFailure
from .protocols import DocumentStore, EmbeddingProvider
from .schema import CandidateMetadata, SearchCandidate, SearchOptions, StoreHit

logger = logging.getLogger(__name__)

VECTOR_CHANNEL = "vector"
KEYWORD_CHANNEL = "keyword"
SUMMARY_SECTION = "summary"

DEFAULT_CANDIDATE_MULTIPLIER = 10
DEFAULT_KEYWORD_SCORE_DIVISOR = 10.0


def _metadata(hit: StoreHit, section: str) -> CandidateMetadata:
    document = hit.document
    return CandidateMetadata(
        protocol=document.protocol_name,
        impact=document.impact,
        title=document.title,
        section=section,
        source_link=document.source_link,
        firm=document.firm_name,
    )


def _rank(candidates: list[SearchCandidate], top_k: int) -> list[SearchCandidate]:
    return sorted(candidates, key=lambda candidate: candidate.score, reverse=True)[:top_k]


class VectorRetriever:
    """Semantic search over chunk embeddings."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: DocumentStore,
        candidate_multiplier: int = DEFAULT_CANDIDATE_MULTIPLIER,
    ):
        """Bind the retriever to its collaborators.

        Args:
            embedder: Provider used to embed the query.
            store: Store answering `vector_query`.
            candidate_multiplier: Raw candidates requested per wanted result,
                compensating for post-filtering.
        """
        if candidate_multiplier < 1:
            raise ValueError(f"candidate_multiplier must be >= 1, got {candidate_multiplier}")
        self.embedder = embedder
        self.store = store
        self.candidate_multiplier = candidate_multiplier

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchCandidate]:
        """Return up to `top_k` chunk candidates scoring at least `min_score`.

        Args:
            query: User query string.
            options: Result size, score floor and metadata allow-lists.

        Returns:
            Candidates sorted by similarity, highest first.

        Raises:
            EmbeddingFailure: When the query cannot be embedded.
            RetrievalFailure: When the store query fails.
        """
        options = options or SearchOptions()
        query_vector = self.embedder.embed(query)
        candidate_count = options.top_k * self.candidate_multiplier

        try:
            hits = self.store.vector_query(query_vector, candidate_count, options.filters)
        except Exception as exc:
            raise RetrievalFailure(VECTOR_CHANNEL, query, exc) from exc

        candidates = [
            SearchCandidate(
                doc_id=hit.document.doc_id,
                chunk_index=hit.chunk.chunk_index,
                text=hit.chunk.text,
                score=hit.score,
                source=VECTOR_CHANNEL,
                metadata=_metadata(hit, hit.chunk.section),
            )
            for hit in hits
            if hit.chunk is not None
            and options.filters.matches(hit.document)
            and hit.score >= options.min_score
        ]
        results = _rank(candidates, options.top_k)
        logger.info(
            f"Vector search: {len(results)}/{len(hits)} candidates kept for '{query[:50]}'"
        )
        return results


class KeywordRetriever:
    """Lexical search over finding title, summary and content."""

    def __init__(self, store: DocumentStore, score_divisor: float = DEFAULT_KEYWORD_SCORE_DIVISOR):
        """Bind the retriever to its store.

        Args:
            store: Store answering `text_query`.
            score_divisor: Constant the native lexical score is divided by to
                land roughly in the range of similarity scores.
        """
        if score_divisor <= 0:
            raise ValueError(f"score_divisor must be positive, got {score_divisor}")
        self.store = store
        self.score_divisor = score_divisor

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchCandidate]:
        """Return up to `top_k` finding candidates ranked by lexical relevance.

        Findings without chunk data fall back to their summary text.

        Raises:
            RetrievalFailure: When the store query fails.
        """
        options = options or SearchOptions()
        try:
            hits = self.store.text_query(query, options.filters)
        except Exception as exc:
            raise RetrievalFailure(KEYWORD_CHANNEL, query, exc) from exc

        candidates: list[SearchCandidate] = []
        for hit in hits:
            if not options.filters.matches(hit.document):
                continue
            if hit.chunk is not None:
                text, section, chunk_index = hit.chunk.text, hit.chunk.section, hit.chunk.chunk_index
            else:
                text, section, chunk_index = hit.document.summary, SUMMARY_SECTION, None
            candidates.append(
                SearchCandidate(
                    doc_id=hit.document.doc_id,
                    chunk_index=chunk_index,
                    text=text,
                    score=hit.score / self.score_divisor,
                    source=KEYWORD_CHANNEL,
                    metadata=_metadata(hit, section),
                )
            )

        results = _rank(candidates, options.top_k)
        logger.info(f"Keyword search: {len(results)}/{len(hits)} findings kept for '{query[:50]}'")
        return results
