from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import chromadb
import numpy as np

from .embeddings import average_embeddings, cosine_similarity
from .keyword_index import bm25_rank
from .schema import Chunk, Impact, SearchFilters, SourceDocument, StoreHit

logger = logging.getLogger(__name__)


def _lexical_text(document: SourceDocument) -> str:
    return "\n".join([document.title, document.summary, document.content])


def _validate_embeddings(chunks: Sequence[Chunk], embeddings: Sequence[Sequence[float]]) -> None:
    if len(chunks) != len(embeddings):
        raise ValueError(
            f"Got {len(embeddings)} embeddings for {len(chunks)} chunks"
        )


def _filter_options(documents: Sequence[SourceDocument]) -> dict[str, list[str]]:
    return {
        "protocols": sorted({d.protocol_name for d in documents if d.protocol_name}),
        "firms": sorted({d.firm_name for d in documents if d.firm_name}),
        "impacts": sorted({d.impact.value for d in documents}),
    }


@dataclass(slots=True)
class _IndexedFinding:
    document: SourceDocument
    chunks: list[Chunk]
    chunk_matrix: np.ndarray
    embedding: list[float]
    indexed_at: datetime


class InMemoryAuditStore:
    """Process-local store: cosine similarity over chunks, BM25 over findings.

    Reads may run concurrently; indexing replaces a finding's entry in one
    assignment.
    """

    def __init__(self) -> None:
        self._findings: dict[str, _IndexedFinding] = {}

    def index_document(
        self,
        document: SourceDocument,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Sequence[float]],
    ) -> None:
        _validate_embeddings(chunks, embeddings)
        matrix = np.asarray(embeddings, dtype=np.float32)
        if not len(chunks):
            matrix = np.zeros((0, 0), dtype=np.float32)
        self._findings[document.doc_id] = _IndexedFinding(
            document=document,
            chunks=list(chunks),
            chunk_matrix=matrix,
            embedding=average_embeddings(embeddings),
            indexed_at=datetime.now(timezone.utc),
        )

    def vector_query(
        self,
        vector: Sequence[float],
        candidate_count: int,
        filters: SearchFilters,
    ) -> list[StoreHit]:
        query_vector = np.asarray(vector, dtype=np.float32)
        hits: list[StoreHit] = []
        for finding in list(self._findings.values()):
            if not finding.chunks or not filters.matches(finding.document):
                continue
            scores = cosine_similarity(query_vector, finding.chunk_matrix)
            for chunk, score in zip(finding.chunks, scores, strict=True):
                hits.append(StoreHit(document=finding.document, score=float(score), chunk=chunk))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:candidate_count]

    def text_query(self, query_text: str, filters: SearchFilters) -> list[StoreHit]:
        findings = [f for f in list(self._findings.values()) if filters.matches(f.document)]
        ranked = bm25_rank(query_text, [_lexical_text(f.document) for f in findings])
        return [
            StoreHit(
                document=findings[idx].document,
                score=score,
                chunk=findings[idx].chunks[0] if findings[idx].chunks else None,
            )
            for idx, score in ranked
        ]

    def get_document(self, doc_id: str) -> SourceDocument | None:
        finding = self._findings.get(doc_id)
        return finding.document if finding else None

    def is_indexed(self, doc_id: str) -> bool:
        return doc_id in self._findings

    def list_documents(self) -> list[SourceDocument]:
        return [finding.document for finding in self._findings.values()]

    def get_chunks(self, doc_id: str) -> list[Chunk]:
        finding = self._findings.get(doc_id)
        return list(finding.chunks) if finding else []

    def stats(self) -> dict[str, int]:
        findings = list(self._findings.values())
        return {
            "total": len(findings),
            "indexed": len(findings),
            "with_chunks": sum(1 for f in findings if f.chunks),
        }

    def filter_options(self) -> dict[str, list[str]]:
        return _filter_options(self.list_documents())


def build_where(filters: SearchFilters, extra: dict[str, Any] | None = None) -> dict[str, Any] | None:
    """Translate allow-lists into a Chroma `where` clause (None when empty)."""
    conditions: list[dict[str, Any]] = []
    if filters.impact:
        conditions.append({"impact": {"$in": [impact.value for impact in filters.impact]}})
    if filters.protocol:
        conditions.append({"protocol": {"$in": list(filters.protocol)}})
    if filters.firm:
        conditions.append({"firm": {"$in": list(filters.firm)}})
    if extra:
        conditions.extend({key: value} for key, value in extra.items())

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


def _document_metadata(document: SourceDocument) -> dict[str, Any]:
    return {
        "doc_id": document.doc_id,
        "title": document.title,
        "impact": document.impact.value,
        "protocol": document.protocol_name,
        "firm": document.firm_name,
        "source_link": document.source_link,
        "summary": document.summary,
    }


def _document_from_metadata(metadata: dict[str, Any], content: str = "") -> SourceDocument:
    return SourceDocument(
        doc_id=str(metadata["doc_id"]),
        title=metadata.get("title", ""),
        content=content,
        impact=Impact.parse(metadata["impact"]),
        protocol_name=metadata.get("protocol", ""),
        firm_name=metadata.get("firm", ""),
        source_link=metadata.get("source_link", ""),
        summary=metadata.get("summary", ""),
    )


class ChromaAuditStore:
    """Persistent store on two Chroma collections.

    `<name>_chunks` holds one record per chunk for similarity search;
    `<name>_findings` holds one record per finding (content plus the mean of
    its chunk embeddings) for lexical search and bookkeeping.
    """

    def __init__(
        self,
        collection_name: str = "audit_findings",
        persist_dir: str = "artifacts/chroma",
        client: Any | None = None,
    ):
        """Open (or create) the backing collections.

        Args:
            collection_name: Prefix for the two Chroma collections.
            persist_dir: Local path for Chroma persistence.
            client: Optional Chroma client, e.g. an in-process one for tests.
        """
        if client is None:
            Path(persist_dir).mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(path=persist_dir)
        self._client = client
        self._chunks = client.get_or_create_collection(
            name=f"{collection_name}_chunks", metadata={"hnsw:space": "cosine"}
        )
        self._findings = client.get_or_create_collection(
            name=f"{collection_name}_findings", metadata={"hnsw:space": "cosine"}
        )

    def index_document(
        self,
        document: SourceDocument,
        chunks: Sequence[Chunk],
        embeddings: Sequence[Sequence[float]],
    ) -> None:
        _validate_embeddings(chunks, embeddings)
        embedding = average_embeddings(embeddings)
        if not embedding:
            raise ValueError(f"Cannot index finding {document.doc_id} without embeddings")

        # Previous chunks stay until the replacement write has succeeded.
        existing = self._chunks.get(where={"doc_id": document.doc_id}, include=["metadatas"])
        stale_ids = set(existing["ids"]) - {chunk.chunk_id for chunk in chunks}

        base = _document_metadata(document)
        if chunks:
            self._chunks.upsert(
                ids=[chunk.chunk_id for chunk in chunks],
                embeddings=[list(map(float, vector)) for vector in embeddings],
                documents=[chunk.text for chunk in chunks],
                metadatas=[
                    {**base, "chunk_index": chunk.chunk_index, "section": chunk.section, "body": chunk.body}
                    for chunk in chunks
                ],
            )
        if stale_ids:
            self._chunks.delete(ids=sorted(stale_ids))

        self._findings.upsert(
            ids=[document.doc_id],
            embeddings=[embedding],
            documents=[document.content],
            metadatas=[
                {
                    **base,
                    "chunk_count": len(chunks),
                    "indexed_at": datetime.now(timezone.utc).isoformat(),
                }
            ],
        )
        logger.debug(f"Indexed finding {document.doc_id} with {len(chunks)} chunks")

    def vector_query(
        self,
        vector: Sequence[float],
        candidate_count: int,
        filters: SearchFilters,
    ) -> list[StoreHit]:
        available = self._chunks.count()
        if available == 0:
            return []

        response = self._chunks.query(
            query_embeddings=[list(map(float, vector))],
            n_results=min(candidate_count, available),
            where=build_where(filters),
            include=["documents", "metadatas", "distances"],
        )
        hits: list[StoreHit] = []
        for text, metadata, distance in zip(
            response["documents"][0], response["metadatas"][0], response["distances"][0], strict=True
        ):
            document = _document_from_metadata(metadata)
            chunk = Chunk(
                doc_id=document.doc_id,
                chunk_index=int(metadata["chunk_index"]),
                section=metadata.get("section", ""),
                text=text,
                body=metadata.get("body", ""),
            )
            hits.append(StoreHit(document=document, score=float(1.0 - distance), chunk=chunk))
        return hits

    def text_query(self, query_text: str, filters: SearchFilters) -> list[StoreHit]:
        response = self._findings.get(where=build_where(filters), include=["documents", "metadatas"])
        documents = [
            _document_from_metadata(metadata, content or "")
            for content, metadata in zip(response["documents"], response["metadatas"], strict=True)
        ]
        ranked = bm25_rank(query_text, [_lexical_text(document) for document in documents])
        return [
            StoreHit(document=documents[idx], score=score, chunk=self._first_chunk(documents[idx].doc_id))
            for idx, score in ranked
        ]

    def _first_chunk(self, doc_id: str) -> Chunk | None:
        response = self._chunks.get(
            where=build_where(SearchFilters(), {"doc_id": doc_id, "chunk_index": 0}),
            include=["documents", "metadatas"],
        )
        if not response["ids"]:
            return None
        metadata = response["metadatas"][0]
        return Chunk(
            doc_id=doc_id,
            chunk_index=0,
            section=metadata.get("section", ""),
            text=response["documents"][0],
            body=metadata.get("body", ""),
        )

    def get_document(self, doc_id: str) -> SourceDocument | None:
        response = self._findings.get(ids=[doc_id], include=["documents", "metadatas"])
        if not response["ids"]:
            return None
        return _document_from_metadata(response["metadatas"][0], response["documents"][0] or "")

    def is_indexed(self, doc_id: str) -> bool:
        return bool(self._findings.get(ids=[doc_id], include=["metadatas"])["ids"])

    def list_documents(self) -> list[SourceDocument]:
        response = self._findings.get(include=["documents", "metadatas"])
        return [
            _document_from_metadata(metadata, content or "")
            for content, metadata in zip(response["documents"], response["metadatas"], strict=True)
        ]

    def stats(self) -> dict[str, int]:
        metadatas = self._findings.get(include=["metadatas"])["metadatas"]
        return {
            "total": len(metadatas),
            "indexed": sum(1 for m in metadatas if m.get("indexed_at")),
            "with_chunks": sum(1 for m in metadatas if m.get("chunk_count", 0) > 0),
        }

    def filter_options(self) -> dict[str, list[str]]:
        return _filter_options(self.list_documents())
