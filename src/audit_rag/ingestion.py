"""Batch ingestion of audit findings: chunk, embed, index.

Each record is processed independently; a record that fails to parse, chunk,
embed or store is logged and reported while the rest of the batch continues.
Re-indexing a finding replaces its chunks wholesale.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from .chunking import DocumentChunker
from .errors import ChunkingError, EmbeddingFailure, RetrievalFailure
from .io_utils import load_finding_records
from .protocols import DocumentStore, EmbeddingProvider
from .schema import Chunk, SourceDocument

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestionConfig:
    batch_size: int = 10
    delay_seconds: float = 1.0
    skip_existing: bool = True

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")


@dataclass(slots=True)
class IngestionReport:
    """Outcome of one ingestion run, keyed by finding id."""

    indexed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.indexed) + len(self.skipped) + len(self.failed)


@dataclass(slots=True)
class IngestionStats:
    total: int
    indexed: int
    with_chunks: int

    @property
    def indexed_percentage(self) -> str:
        if self.total == 0:
            return "0.00%"
        return f"{self.indexed / self.total * 100:.2f}%"


def _record_id(record: Mapping[str, Any] | SourceDocument, position: int) -> str:
    if isinstance(record, SourceDocument):
        return record.doc_id
    if not isinstance(record, Mapping):
        return f"<record {position}>"
    raw_id = record.get("id")
    return str(raw_id) if raw_id is not None else f"<record {position}>"


class AuditFindingIngestion:
    """Turns raw findings into indexed, embedded chunks."""

    def __init__(
        self,
        chunker: DocumentChunker,
        embedder: EmbeddingProvider,
        store: DocumentStore,
        config: IngestionConfig | None = None,
    ):
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.config = config or IngestionConfig()

    def ingest_file(self, path: str | Path) -> IngestionReport:
        logger.info(f"Reading findings from {path}")
        records = load_finding_records(path)
        logger.info(f"Found {len(records)} findings to process")
        return self.ingest_records(records)

    def ingest_records(
        self,
        records: Iterable[Mapping[str, Any] | SourceDocument],
        skip_existing: bool | None = None,
    ) -> IngestionReport:
        """Ingest findings in batches, pausing between batches.

        Args:
            records: Raw finding mappings or already-parsed documents.
            skip_existing: Override of `config.skip_existing`.

        Returns:
            Report of indexed, skipped and failed finding ids.
        """
        skip = self.config.skip_existing if skip_existing is None else skip_existing
        items = list(records)
        batches = [
            items[start : start + self.config.batch_size]
            for start in range(0, len(items), self.config.batch_size)
        ]
        report = IngestionReport()

        for batch_number, batch in enumerate(batches, start=1):
            logger.info(f"Processing batch {batch_number}/{len(batches)}")
            offset = (batch_number - 1) * self.config.batch_size
            for position, record in enumerate(batch, start=offset):
                self._process(record, position, skip, report)

            if batch_number < len(batches) and self.config.delay_seconds > 0:
                time.sleep(self.config.delay_seconds)

        logger.info(
            f"Ingestion finished: {len(report.indexed)} indexed, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        return report

    def index_document(self, document: SourceDocument) -> int:
        """Chunk, embed and store one finding; returns the chunk count."""
        chunks = self.chunker.chunk(document)
        embeddings = self.embedder.embed_batch([chunk.text for chunk in chunks])
        if len(embeddings) != len(chunks):
            raise EmbeddingFailure(
                f"Expected {len(chunks)} embeddings for finding {document.doc_id}, got {len(embeddings)}"
            )
        try:
            self.store.index_document(document, chunks, embeddings)
        except Exception as exc:
            raise RetrievalFailure("index", document.doc_id, exc) from exc
        return len(chunks)

    def reindex_all(self) -> IngestionReport:
        """Regenerate chunks and embeddings for every stored finding."""
        documents = self.store.list_documents()
        logger.info(f"Re-indexing {len(documents)} findings")
        return self.ingest_records(documents, skip_existing=False)

    def stats(self) -> IngestionStats:
        counts = self.store.stats()
        return IngestionStats(
            total=counts["total"],
            indexed=counts["indexed"],
            with_chunks=counts["with_chunks"],
        )

    def _already_indexed(self, doc_id: str) -> bool:
        try:
            return self.store.is_indexed(doc_id)
        except Exception as exc:
            raise RetrievalFailure("index", doc_id, exc) from exc

    def _process(
        self,
        record: Mapping[str, Any] | SourceDocument,
        position: int,
        skip_existing: bool,
        report: IngestionReport,
    ) -> None:
        record_id = _record_id(record, position)
        try:
            document = record if isinstance(record, SourceDocument) else SourceDocument.from_record(record)
            if skip_existing and self._already_indexed(document.doc_id):
                logger.info(f"Skipping {document.doc_id} (already indexed)")
                report.skipped.append(document.doc_id)
                return
            chunk_count = self.index_document(document)
        except (ValueError, ChunkingError, EmbeddingFailure, RetrievalFailure) as exc:
            logger.error(f"Error processing finding {record_id}: {exc}")
            report.failed[record_id] = str(exc)
            return

        logger.info(f"Indexed finding {document.doc_id} ({chunk_count} chunks): {document.title}")
        report.indexed.append(document.doc_id)


def chunk_findings(
    records: Iterable[Mapping[str, Any] | SourceDocument],
    chunker: DocumentChunker,
) -> tuple[list[Chunk], dict[str, str]]:
    """Chunk findings without embedding them, for offline inspection.

    Returns:
        The chunks of every finding that parsed and chunked, and a mapping of
        failed record ids to their error messages.
    """
    chunks: list[Chunk] = []
    failed: dict[str, str] = {}
    for position, record in enumerate(records):
        try:
            document = record if isinstance(record, SourceDocument) else SourceDocument.from_record(record)
            chunks.extend(chunker.chunk(document))
        except (ValueError, ChunkingError) as exc:
            record_id = _record_id(record, position)
            logger.error(f"Error chunking finding {record_id}: {exc}")
            failed[record_id] = str(exc)
    return chunks, failed
