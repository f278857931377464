"""Tests for fusion.py — Reciprocal Rank Fusion with document-level dedup."""
from __future__ import annotations

import pytest

from audit_rag.errors import FusionInputError
from audit_rag.fusion import RRF_K, fuse, reciprocal_rank_fusion
from audit_rag.schema import FusedResult

from conftest import make_candidate


def _vector(*doc_ids: str):
    return [make_candidate(doc_id, source="vector", text=f"vector {doc_id}") for doc_id in doc_ids]


def _keyword(*doc_ids: str):
    return [make_candidate(doc_id, source="keyword", text=f"keyword {doc_id}") for doc_id in doc_ids]


class TestReciprocalRankFusion:
    def test_returns_fused_results(self):
        results = reciprocal_rank_fusion([_vector("D1"), _keyword("D2")])
        assert all(isinstance(r, FusedResult) for r in results)
        assert all(r.source == "hybrid" for r in results)

    def test_rrf_formula_uses_zero_based_rank_plus_one(self):
        results = reciprocal_rank_fusion([_vector("D1", "D2")], k=60)
        assert results[0].score == pytest.approx(1 / 61)
        assert results[1].score == pytest.approx(1 / 62)

    def test_default_k_is_sixty(self):
        assert RRF_K == 60

    def test_contributions_sum_across_lists(self):
        results = reciprocal_rank_fusion([_vector("D1"), _keyword("D1")])
        assert results[0].score == pytest.approx(2 / 61)
        assert results[0].channels == ("vector", "keyword")

    def test_first_seen_payload_is_kept(self):
        results = reciprocal_rank_fusion([_vector("D1"), _keyword("D1")])
        assert results[0].text == "vector D1"

    def test_only_first_position_in_a_list_counts(self):
        results = reciprocal_rank_fusion([_vector("D1", "D1", "D2")])
        by_id = {r.doc_id: r.score for r in results}
        assert by_id["D1"] == pytest.approx(1 / 61)
        assert by_id["D2"] == pytest.approx(1 / 63)

    def test_missing_doc_id_raises(self):
        with pytest.raises(FusionInputError):
            reciprocal_rank_fusion([[make_candidate("")]])

    def test_empty_input(self):
        assert reciprocal_rank_fusion([[], []]) == []


class TestFuse:
    def test_scenario_keyword_and_vector_hit_outranks_vector_only(self):
        results = fuse(_vector("D1", "D2"), _keyword("D2"), top_k=2)
        assert [r.doc_id for r in results] == ["D2", "D1"]
        assert results[0].score == pytest.approx(1 / 62 + 1 / 61)
        assert results[1].score == pytest.approx(1 / 61)

    def test_presence_in_both_lists_beats_single_list_at_same_rank(self):
        both = fuse(_vector("D1"), _keyword("D1"), top_k=1)[0]
        single = fuse(_vector("D1"), [], top_k=1)[0]
        assert both.score > single.score

    def test_equal_scores_keep_vector_order_first(self):
        # D1 and D2 are both rank 0 in one list only: equal fused scores.
        results = fuse(_vector("D1"), _keyword("D2"), top_k=2)
        assert results[0].score == pytest.approx(results[1].score)
        assert [r.doc_id for r in results] == ["D1", "D2"]

    def test_deterministic_output(self):
        vector = _vector("A", "B", "C", "D")
        keyword = _keyword("C", "E", "A", "F")
        first = [(r.doc_id, r.score) for r in fuse(vector, keyword, top_k=5)]
        for _ in range(5):
            assert [(r.doc_id, r.score) for r in fuse(vector, keyword, top_k=5)] == first

    def test_truncates_to_top_k_without_duplicates(self):
        vector = _vector("A", "B", "C", "D", "E")
        keyword = _keyword("E", "D", "C", "X", "Y")
        results = fuse(vector, keyword, top_k=3)
        ids = [r.doc_id for r in results]
        assert len(ids) == 3
        assert len(ids) == len(set(ids))

    def test_scores_sorted_descending(self):
        results = fuse(_vector("A", "B", "C"), _keyword("C", "B", "A"), top_k=3)
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_ignores_raw_score_magnitudes(self):
        vector = [make_candidate("A", score=0.99), make_candidate("B", score=0.98)]
        keyword = [make_candidate("B", score=0.01, source="keyword")]
        results = fuse(vector, keyword, top_k=2)
        assert results[0].doc_id == "B"

    def test_empty_lists_give_empty_result(self):
        assert fuse([], [], top_k=5) == []

    def test_top_k_must_be_positive(self):
        with pytest.raises(ValueError):
            fuse([], [], top_k=0)
