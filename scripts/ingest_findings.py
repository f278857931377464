import argparse
import json
import logging

from audit_rag.chunking import DocumentChunker
from audit_rag.ingestion import AuditFindingIngestion, IngestionConfig, chunk_findings
from audit_rag.io_utils import export_chunks, load_finding_records
from audit_rag.pipeline import build_embedder, build_store
from audit_rag.settings import load_settings


def main() -> None:
    """Ingest, re-index, chunk or report on audit findings in the Chroma store."""
    parser = argparse.ArgumentParser(description="Audit findings ingestion")
    subcommands = parser.add_subparsers(dest="command", required=True)
    ingest = subcommands.add_parser("ingest", help="Ingest findings from a JSON or JSONL file")
    ingest.add_argument("path", nargs="?", default="data/audit-findings.json")
    chunk = subcommands.add_parser("chunk", help="Chunk findings to JSONL without embedding or storing them")
    chunk.add_argument("path", nargs="?", default="data/audit-findings.json")
    chunk.add_argument("--output", default="artifacts/chunks.jsonl")
    subcommands.add_parser("reindex", help="Re-index every stored finding")
    subcommands.add_parser("stats", help="Show ingestion statistics")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = load_settings()
    chunker = DocumentChunker(settings.chunking.max_chunk_size, settings.chunking.chunk_overlap)

    if args.command == "chunk":
        chunks, failed = chunk_findings(load_finding_records(args.path), chunker)
        written = export_chunks(chunks, args.output)
        print({"chunks": written, "failed": len(failed), "output": args.output})
        if failed:
            raise SystemExit(1)
        return

    ingestion = AuditFindingIngestion(
        chunker=chunker,
        embedder=build_embedder(settings),
        store=build_store(settings),
        config=IngestionConfig(
            batch_size=settings.ingestion.batch_size,
            delay_seconds=settings.ingestion.delay_seconds,
            skip_existing=settings.ingestion.skip_existing,
        ),
    )

    if args.command == "stats":
        stats = ingestion.stats()
        print(
            json.dumps(
                {
                    "total": stats.total,
                    "indexed": stats.indexed,
                    "with_chunks": stats.with_chunks,
                    "indexed_percentage": stats.indexed_percentage,
                },
                indent=2,
            )
        )
        return

    report = ingestion.reindex_all() if args.command == "reindex" else ingestion.ingest_file(args.path)
    print({"indexed": len(report.indexed), "skipped": len(report.skipped), "failed": len(report.failed)})
    if report.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
