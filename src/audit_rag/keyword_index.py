from __future__ import annotations

import re

from rank_bm25 import BM25Okapi

_TOKEN_PATTERN = re.compile(r"[a-z0-9_]+")


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric tokens used for lexical matching."""
    return _TOKEN_PATTERN.findall(text.lower())


def bm25_rank(query: str, corpus: list[str]) -> list[tuple[int, float]]:
    """Score corpus texts against a query with BM25.

    Only texts sharing at least one token with the query are returned, in the
    manner of a text index that never matches a document without a term hit.

    Args:
        query: User query string.
        corpus: Candidate texts.

    Returns:
        `(corpus_index, score)` pairs sorted by score, highest first.
    """
    query_tokens = tokenize(query)
    if not corpus or not query_tokens:
        return []

    tokenized = [tokenize(text) for text in corpus]
    # BM25Okapi divides by the average document length.
    if not any(tokenized):
        return []
    index = BM25Okapi(tokenized)
    scores = index.get_scores(query_tokens)

    wanted = set(query_tokens)
    matched = [
        (idx, float(scores[idx]))
        for idx, tokens in enumerate(tokenized)
        if wanted.intersection(tokens)
    ]
    return sorted(matched, key=lambda item: item[1], reverse=True)
