import argparse
import logging

from audit_rag.pipeline import build_hybrid_retriever, default_search_options
from audit_rag.qa import AuditQAPipeline, OpenAIChatProvider, RAGRequest
from audit_rag.schema import SearchFilters, SearchOptions
from audit_rag.settings import load_settings
from audit_rag.tracing import configure_tracing, get_tracer


def main() -> None:
    """Search audit findings, or answer a question grounded in them."""
    parser = argparse.ArgumentParser(description="Query audit findings")
    parser.add_argument("query")
    parser.add_argument("--search-only", action="store_true", help="Print fused results without generating")
    parser.add_argument("--top-k", type=int)
    parser.add_argument("--impact", action="append", default=[])
    parser.add_argument("--protocol", action="append", default=[])
    parser.add_argument("--firm", action="append", default=[])
    parser.add_argument("--trace-endpoint", help="OTLP endpoint, e.g. http://localhost:6006/v1/traces")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = load_settings()
    defaults = default_search_options(settings)
    options = SearchOptions(
        top_k=args.top_k or defaults.top_k,
        min_score=defaults.min_score,
        filters=SearchFilters(impact=tuple(args.impact), protocol=tuple(args.protocol), firm=tuple(args.firm)),
    )

    with build_hybrid_retriever(settings) as retriever:
        if args.search_only:
            for rank, result in enumerate(retriever.hybrid_search(args.query, options), start=1):
                print(f"{rank}. [{result.score:.4f}] {result.metadata.title} ({result.metadata.protocol}, {result.metadata.impact.value})")
            return

        tracer = None
        if args.trace_endpoint:
            configure_tracing(endpoint=args.trace_endpoint)
            tracer = get_tracer("audit-rag")
        pipeline = AuditQAPipeline(
            retriever,
            OpenAIChatProvider(model=settings.openai.chat_model),
            tracer=tracer,
            model_name=settings.openai.chat_model,
        )
        for event in pipeline.stream(RAGRequest(query=args.query, search_options=options)):
            if event.kind == "sources":
                for idx, source in enumerate(event.sources, start=1):
                    print(f"[Source {idx}] {source.metadata.title} - {source.metadata.source_link}")
                print()
            elif event.kind == "chunk":
                print(event.text, end="", flush=True)
        print()


if __name__ == "__main__":
    main()
