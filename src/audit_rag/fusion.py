from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .errors import FusionInputError
from .schema import FusedResult, SearchCandidate

RRF_K = 60
HYBRID_SOURCE = "hybrid"


@dataclass(slots=True)
class _Accumulator:
    candidate: SearchCandidate
    score: float = 0.0
    channels: list[str] = field(default_factory=list)


def reciprocal_rank_fusion(
    ranked_lists: Sequence[Sequence[SearchCandidate]], k: int = RRF_K
) -> list[FusedResult]:
    """Fuse ranked candidate lists via Reciprocal Rank Fusion (RRF).

    A document at zero-based position `r` of a list contributes
    `1 / (k + r + 1)`; contributions are summed across lists. Documents are
    identified by `doc_id`, and only their first position within a list
    counts. The first-seen candidate supplies the display payload.

    Args:
        ranked_lists: Ranked candidate lists, earliest list winning ties.
        k: RRF smoothing constant controlling rank contribution decay.

    Returns:
        One fused result per document, sorted by fused score; equal scores
        keep first-insertion order.

    Raises:
        FusionInputError: If a candidate has no document identity.
    """
    fused: dict[str, _Accumulator] = {}

    for results in ranked_lists:
        seen: set[str] = set()
        for rank, candidate in enumerate(results):
            doc_id = candidate.doc_id
            if doc_id is None or str(doc_id) == "":
                raise FusionInputError(f"Candidate at rank {rank} has no doc_id")
            doc_id = str(doc_id)
            if doc_id in seen:
                continue
            seen.add(doc_id)

            entry = fused.get(doc_id)
            if entry is None:
                entry = fused[doc_id] = _Accumulator(candidate=candidate)
            entry.score += 1.0 / (k + rank + 1)
            if candidate.source not in entry.channels:
                entry.channels.append(candidate.source)

    ordered = sorted(fused.items(), key=lambda item: item[1].score, reverse=True)
    return [
        FusedResult(
            doc_id=doc_id,
            chunk_index=entry.candidate.chunk_index,
            text=entry.candidate.text,
            score=entry.score,
            source=HYBRID_SOURCE,
            metadata=entry.candidate.metadata,
            channels=tuple(entry.channels),
        )
        for doc_id, entry in ordered
    ]


def fuse(
    vector_results: Sequence[SearchCandidate],
    keyword_results: Sequence[SearchCandidate],
    top_k: int,
    k: int = RRF_K,
) -> list[FusedResult]:
    """Fuse the vector and keyword channels and keep the best `top_k`.

    Vector candidates are inserted first, so documents with equal fused
    scores keep their semantic-search order ahead of keyword-only documents.
    """
    if top_k < 1:
        raise ValueError(f"top_k must be >= 1, got {top_k}")
    return reciprocal_rank_fusion([vector_results, keyword_results], k=k)[:top_k]
