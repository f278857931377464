"""Hybrid retrieval and answer generation over smart-contract audit findings."""

from .schema import (
    CandidateMetadata,
    Chunk,
    FusedResult,
    Impact,
    SearchCandidate,
    SearchFilters,
    SearchOptions,
    SourceDocument,
    StoreHit,
)

__all__ = [
    "Impact",
    "SourceDocument",
    "Chunk",
    "SearchFilters",
    "SearchOptions",
    "StoreHit",
    "CandidateMetadata",
    "SearchCandidate",
    "FusedResult",
]
