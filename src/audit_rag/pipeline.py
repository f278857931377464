from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor

from .chunking import DocumentChunker
from .embeddings import OpenAIEmbedder
from .errors import EmbeddingFailure
from .fusion import RRF_K, fuse
from .protocols import DocumentStore, EmbeddingProvider
from .retrieval import KeywordRetriever, VectorRetriever
from .schema import Chunk, FusedResult, SearchCandidate, SearchOptions, SourceDocument
from .settings import Settings
from .vector_store import ChromaAuditStore

logger = logging.getLogger(__name__)

DEFAULT_FANOUT_FACTOR = 1.5


class HybridRetriever:
    """Runs both retrieval channels and fuses them with RRF.

    The vector channel is asked for `ceil(top_k * fanout_factor)` results so
    fusion sees a wider pool than the final list. Both channels run on a
    two-worker thread pool; neither depends on the other.

    When the query embedding fails and `fallback_to_keyword` is set, the
    request degrades to keyword-only results instead of failing.
    """

    def __init__(
        self,
        vector_retriever: VectorRetriever,
        keyword_retriever: KeywordRetriever,
        fanout_factor: float = DEFAULT_FANOUT_FACTOR,
        rrf_k: int = RRF_K,
        fallback_to_keyword: bool = True,
        chunker: DocumentChunker | None = None,
    ):
        if fanout_factor < 1:
            raise ValueError(f"fanout_factor must be >= 1, got {fanout_factor}")
        self.vector_retriever = vector_retriever
        self.keyword_retriever = keyword_retriever
        self.fanout_factor = fanout_factor
        self.rrf_k = rrf_k
        self.fallback_to_keyword = fallback_to_keyword
        self.chunker = chunker or DocumentChunker()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="hybrid-search")

    def chunk(self, document: SourceDocument) -> list[Chunk]:
        """Split a finding into the chunks the vector channel searches."""
        return self.chunker.chunk(document)

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchCandidate]:
        """Vector-only search for callers that want a single signal."""
        return self.vector_retriever.search(query, options or SearchOptions())

    def hybrid_search(self, query: str, options: SearchOptions | None = None) -> list[FusedResult]:
        """Search both channels and return the fused top `top_k` findings.

        Args:
            query: User query string.
            options: Result size, score floor and metadata allow-lists.

        Returns:
            Fused results, one per finding, ordered by RRF score.

        Raises:
            EmbeddingFailure: When embedding fails and fallback is disabled.
            RetrievalFailure: When either channel cannot query the store.
        """
        options = options or SearchOptions()
        expanded = options.with_top_k(math.ceil(options.top_k * self.fanout_factor))

        vector_future = self._executor.submit(self.vector_retriever.search, query, expanded)
        keyword_future = self._executor.submit(self.keyword_retriever.search, query, options)

        try:
            vector_results = vector_future.result()
        except EmbeddingFailure as exc:
            if not self.fallback_to_keyword:
                keyword_future.cancel()
                raise
            logger.warning(f"Vector channel unavailable, using keyword results only: {exc}")
            vector_results = []
        except Exception:
            keyword_future.cancel()
            raise

        keyword_results = keyword_future.result()

        results = fuse(vector_results, keyword_results, options.top_k, k=self.rrf_k)
        logger.info(
            f"Hybrid search: {len(vector_results)} vector + {len(keyword_results)} keyword "
            f"-> {len(results)} fused for '{query[:50]}'"
        )
        return results

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> HybridRetriever:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def build_store(settings: Settings) -> ChromaAuditStore:
    """Open the persistent Chroma store named by the settings."""
    return ChromaAuditStore(
        collection_name=settings.paths.collection_name,
        persist_dir=settings.paths.chroma_dir,
    )


def build_embedder(settings: Settings) -> OpenAIEmbedder:
    return OpenAIEmbedder(
        model=settings.openai.embedding_model,
        batch_size=settings.openai.embedding_batch_size,
        batch_delay=settings.openai.embedding_batch_delay,
    )


def build_hybrid_retriever(
    settings: Settings,
    store: DocumentStore | None = None,
    embedder: EmbeddingProvider | None = None,
) -> HybridRetriever:
    """Compose the retrieval engine from settings.

    Args:
        settings: Loaded configuration.
        store: Store to search; the persistent Chroma store by default.
        embedder: Query embedder; the OpenAI provider by default.

    Returns:
        Ready-to-use hybrid retriever.
    """
    store = store if store is not None else build_store(settings)
    embedder = embedder if embedder is not None else build_embedder(settings)
    retrieval = settings.retrieval
    return HybridRetriever(
        vector_retriever=VectorRetriever(embedder, store, candidate_multiplier=retrieval.candidate_multiplier),
        keyword_retriever=KeywordRetriever(store, score_divisor=retrieval.keyword_score_divisor),
        fanout_factor=retrieval.fanout_factor,
        rrf_k=retrieval.rrf_k,
        fallback_to_keyword=retrieval.fallback_to_keyword,
        chunker=DocumentChunker(settings.chunking.max_chunk_size, settings.chunking.chunk_overlap),
    )


def default_search_options(settings: Settings) -> SearchOptions:
    return SearchOptions(top_k=settings.retrieval.top_k, min_score=settings.retrieval.min_score)
