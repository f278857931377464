"""Tests for retrieval.py — vector and keyword channels."""
from __future__ import annotations

import pytest

from audit_rag.errors import EmbeddingFailure, RetrievalFailure
from audit_rag.retrieval import KeywordRetriever, VectorRetriever
from audit_rag.schema import (
    Chunk,
    Impact,
    SearchCandidate,
    SearchFilters,
    SearchOptions,
    SourceDocument,
    StoreHit,
)

from conftest import FakeEmbedder


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _doc(doc_id: str, impact: Impact = Impact.HIGH, protocol: str = "Vault", summary: str = "") -> SourceDocument:
    return SourceDocument(
        doc_id=doc_id,
        title=f"Finding {doc_id}",
        content="Body.",
        impact=impact,
        protocol_name=protocol,
        firm_name="Example Audits",
        source_link=f"https://example.org/{doc_id}",
        summary=summary,
    )


def _hit(doc_id: str, score: float, impact: Impact = Impact.HIGH, chunk_index: int | None = 0, summary: str = "") -> StoreHit:
    chunk = None
    if chunk_index is not None:
        chunk = Chunk(
            doc_id=doc_id,
            chunk_index=chunk_index,
            section="Description",
            text=f"chunk {doc_id}-{chunk_index}",
            body="b",
        )
    return StoreHit(document=_doc(doc_id, impact, summary=summary), score=score, chunk=chunk)


class StubStore:
    """Store returning canned hits and recording how it was queried."""

    def __init__(self, vector_hits=None, text_hits=None, error: Exception | None = None):
        self.vector_hits = vector_hits or []
        self.text_hits = text_hits or []
        self.error = error
        self.vector_calls: list[tuple] = []
        self.text_calls: list[tuple] = []

    def vector_query(self, vector, candidate_count, filters):
        self.vector_calls.append((vector, candidate_count, filters))
        if self.error:
            raise self.error
        return list(self.vector_hits)

    def text_query(self, query_text, filters):
        self.text_calls.append((query_text, filters))
        if self.error:
            raise self.error
        return list(self.text_hits)


# ---------------------------------------------------------------------------
# VectorRetriever
# ---------------------------------------------------------------------------

class TestVectorRetriever:
    def test_returns_candidates_sorted_by_score(self):
        store = StubStore(vector_hits=[_hit("A", 0.75), _hit("B", 0.95), _hit("C", 0.85)])
        results = VectorRetriever(FakeEmbedder(), store).search("q", SearchOptions(top_k=5))
        assert all(isinstance(r, SearchCandidate) for r in results)
        assert [r.doc_id for r in results] == ["B", "C", "A"]
        assert all(r.source == "vector" for r in results)

    def test_overfetches_ten_times_top_k(self):
        store = StubStore()
        VectorRetriever(FakeEmbedder(), store).search("q", SearchOptions(top_k=3))
        assert store.vector_calls[0][1] == 30

    def test_passes_query_embedding_and_filters_to_store(self):
        store = StubStore()
        embedder = FakeEmbedder()
        filters = SearchFilters(protocol=("Vault",))
        VectorRetriever(embedder, store).search("oracle", SearchOptions(filters=filters))
        vector, _, passed_filters = store.vector_calls[0]
        assert vector == embedder.embed("oracle")
        assert passed_filters == filters

    def test_drops_candidates_below_min_score(self):
        store = StubStore(vector_hits=[_hit("A", 0.69), _hit("B", 0.7), _hit("C", 0.9)])
        results = VectorRetriever(FakeEmbedder(), store).search("q", SearchOptions(min_score=0.7))
        assert [r.doc_id for r in results] == ["C", "B"]
        assert all(r.score >= 0.7 for r in results)

    def test_truncates_to_top_k(self):
        store = StubStore(vector_hits=[_hit(f"D{i}", 0.9 - i * 0.01) for i in range(10)])
        results = VectorRetriever(FakeEmbedder(), store).search("q", SearchOptions(top_k=3, min_score=0.0))
        assert [r.doc_id for r in results] == ["D0", "D1", "D2"]

    def test_reapplies_impact_filter_when_store_ignores_it(self):
        store = StubStore(
            vector_hits=[_hit("A", 0.9, Impact.LOW), _hit("B", 0.8, Impact.CRITICAL), _hit("C", 0.8, Impact.HIGH)]
        )
        options = SearchOptions(min_score=0.0, filters=SearchFilters(impact=("HIGH", "CRITICAL")))
        results = VectorRetriever(FakeEmbedder(), store).search("q", options)
        assert {r.metadata.impact for r in results} <= {Impact.HIGH, Impact.CRITICAL}
        assert [r.doc_id for r in results] == ["B", "C"]

    def test_candidate_carries_chunk_text_and_document_metadata(self):
        store = StubStore(vector_hits=[_hit("A", 0.9, chunk_index=2)])
        result = VectorRetriever(FakeEmbedder(), store).search("q")[0]
        assert result.text == "chunk A-2"
        assert result.chunk_index == 2
        assert result.metadata.title == "Finding A"
        assert result.metadata.section == "Description"
        assert result.metadata.source_link == "https://example.org/A"

    def test_embedding_failure_propagates_without_store_call(self):
        store = StubStore(vector_hits=[_hit("A", 0.9)])
        with pytest.raises(EmbeddingFailure):
            VectorRetriever(FakeEmbedder(fail=True), store).search("q")
        assert store.vector_calls == []

    def test_store_error_becomes_retrieval_failure(self):
        store = StubStore(error=ConnectionError("store down"))
        with pytest.raises(RetrievalFailure) as excinfo:
            VectorRetriever(FakeEmbedder(), store).search("reentrancy")
        assert excinfo.value.channel == "vector"
        assert excinfo.value.query == "reentrancy"
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    def test_against_in_memory_store(self, populated_store, embedder):
        results = VectorRetriever(embedder, populated_store).search("reentrancy", SearchOptions(top_k=5))
        assert results
        assert {r.doc_id for r in results} == {"F-1"}
        assert results[0].score == pytest.approx(1.0)

    def test_impact_allow_list_against_in_memory_store(self, populated_store, embedder):
        options = SearchOptions(top_k=10, min_score=0.0, filters=SearchFilters(impact=("HIGH", "CRITICAL")))
        results = VectorRetriever(embedder, populated_store).search("oracle access", options)
        assert results
        assert all(r.metadata.impact in {Impact.HIGH, Impact.CRITICAL} for r in results)


# ---------------------------------------------------------------------------
# KeywordRetriever
# ---------------------------------------------------------------------------

class TestKeywordRetriever:
    def test_normalises_score_by_divisor(self):
        store = StubStore(text_hits=[_hit("A", 7.5)])
        result = KeywordRetriever(store).search("q")[0]
        assert result.score == pytest.approx(0.75)
        assert result.source == "keyword"

    def test_custom_divisor(self):
        store = StubStore(text_hits=[_hit("A", 7.5)])
        assert KeywordRetriever(store, score_divisor=5).search("q")[0].score == pytest.approx(1.5)

    def test_falls_back_to_summary_without_chunks(self):
        store = StubStore(text_hits=[_hit("A", 3.0, chunk_index=None, summary="Short summary.")])
        result = KeywordRetriever(store).search("q")[0]
        assert result.text == "Short summary."
        assert result.metadata.section == "summary"
        assert result.chunk_index is None

    def test_sorted_and_truncated(self):
        store = StubStore(text_hits=[_hit("A", 1.0), _hit("B", 9.0), _hit("C", 5.0)])
        results = KeywordRetriever(store).search("q", SearchOptions(top_k=2))
        assert [r.doc_id for r in results] == ["B", "C"]

    def test_min_score_does_not_apply(self):
        store = StubStore(text_hits=[_hit("A", 0.5)])
        assert len(KeywordRetriever(store).search("q", SearchOptions(min_score=0.9))) == 1

    def test_applies_filters(self):
        store = StubStore(text_hits=[_hit("A", 5.0, Impact.LOW), _hit("B", 4.0, Impact.HIGH)])
        options = SearchOptions(filters=SearchFilters(impact=("HIGH",)))
        results = KeywordRetriever(store).search("q", options)
        assert [r.doc_id for r in results] == ["B"]
        assert store.text_calls[0][1] == options.filters

    def test_store_error_becomes_retrieval_failure(self):
        store = StubStore(error=TimeoutError("slow"))
        with pytest.raises(RetrievalFailure) as excinfo:
            KeywordRetriever(store).search("oracle")
        assert excinfo.value.channel == "keyword"
        assert "oracle" in str(excinfo.value)

    def test_against_in_memory_store(self, populated_store):
        results = KeywordRetriever(populated_store).search("oracle price", SearchOptions(top_k=5))
        assert results[0].doc_id == "F-2"
        assert results[0].chunk_index == 0

    def test_no_lexical_match_returns_empty(self, populated_store):
        assert KeywordRetriever(populated_store).search("governance timelock") == []

    def test_divisor_must_be_positive(self):
        with pytest.raises(ValueError):
            KeywordRetriever(StubStore(), score_divisor=0)
