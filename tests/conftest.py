"""Shared pytest fixtures for audit_rag unit tests."""
from __future__ import annotations

import pytest

from audit_rag.chunking import DocumentChunker
from audit_rag.errors import EmbeddingFailure
from audit_rag.schema import (
    CandidateMetadata,
    Impact,
    SearchCandidate,
    SourceDocument,
)
from audit_rag.vector_store import InMemoryAuditStore

VOCAB = ["reentrancy", "oracle", "access", "overflow"]


class FakeEmbedder:
    """Bag-of-keywords embedder: one dimension per VOCAB word plus a bias."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.embedded: list[str] = []

    def embed(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingFailure("quota exceeded")
        self.embedded.append(text)
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCAB] + [1.0]

    def embed_batch(self, texts):
        return [self.embed(text) for text in texts]


def make_candidate(
    doc_id: str,
    score: float = 0.5,
    source: str = "vector",
    text: str = "t",
    chunk_index: int | None = 0,
    impact: Impact = Impact.HIGH,
) -> SearchCandidate:
    return SearchCandidate(
        doc_id=doc_id,
        chunk_index=chunk_index,
        text=text,
        score=score,
        source=source,
        metadata=CandidateMetadata(
            protocol="Vault",
            impact=impact,
            title=f"Finding {doc_id}",
            section="Description",
            source_link=f"https://example.org/{doc_id}",
            firm="Example Audits",
        ),
    )


@pytest.fixture()
def reentrancy_finding() -> SourceDocument:
    return SourceDocument(
        doc_id="F-1",
        title="Reentrancy in withdraw",
        content=(
            "**Description** The withdraw function sends ether before updating balances. "
            "An attacker can re-enter withdraw and drain the vault. "
            "**Recommendation** Apply checks-effects-interactions. Add a reentrancy guard."
        ),
        impact=Impact.HIGH,
        protocol_name="Vault",
        firm_name="Example Audits",
        source_link="https://example.org/F-1",
        summary="Withdraw can be re-entered before balances change.",
    )


@pytest.fixture()
def sample_findings(reentrancy_finding) -> list[SourceDocument]:
    return [
        reentrancy_finding,
        SourceDocument(
            doc_id="F-2",
            title="Oracle price manipulation",
            content=(
                "**Description** The lender reads a spot price from a single pool. "
                "A flash loan can skew the oracle price. "
                "**Recommendation** Use a time-weighted oracle."
            ),
            impact=Impact.CRITICAL,
            protocol_name="Lender",
            firm_name="Chain Review",
            source_link="https://example.org/F-2",
            summary="Spot price oracle can be manipulated.",
        ),
        SourceDocument(
            doc_id="F-3",
            title="Missing access control on setFee",
            content="Anyone can call setFee. The fee can be raised to one hundred percent.",
            impact=Impact.MEDIUM,
            protocol_name="Vault",
            firm_name="Example Audits",
            source_link="https://example.org/F-3",
            summary="setFee lacks an access modifier.",
        ),
        SourceDocument(
            doc_id="F-4",
            title="Reward math overflow",
            content="**Description** Reward accumulation can overflow for large stakes.",
            impact=Impact.LOW,
            protocol_name="Staking",
            firm_name="Block Guard",
            source_link="https://example.org/F-4",
            summary="Unchecked multiplication in reward math.",
        ),
    ]


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def populated_store(sample_findings, embedder) -> InMemoryAuditStore:
    store = InMemoryAuditStore()
    chunker = DocumentChunker()
    for finding in sample_findings:
        chunks = chunker.chunk(finding)
        store.index_document(finding, chunks, embedder.embed_batch([c.text for c in chunks]))
    return store
