"""OpenTelemetry tracing for the audit-findings retrieval and answer pipeline.

Spans follow the OpenInference attribute names so traces render in Arize
Phoenix or any OTLP backend.

Usage with a local Phoenix instance:

    from audit_rag.tracing import configure_tracing, get_tracer

    configure_tracing(endpoint="http://localhost:6006/v1/traces", service_name="audit-rag")
    pipeline = AuditQAPipeline(retriever, chat, tracer=get_tracer("audit-rag"))

Without a backend, `configure_tracing()` prints spans to stdout.
"""
from __future__ import annotations

from typing import Callable, Sequence

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

from .schema import SearchCandidate

ATTR_INPUT_VALUE = "input.value"
ATTR_OUTPUT_VALUE = "output.value"
ATTR_LLM_MODEL_NAME = "llm.model_name"
ATTR_RETRIEVAL_DOCUMENTS = "retrieval.documents"
ATTR_RETRIEVAL_DOCUMENT_IDS = "retrieval.document_ids"

_provider: TracerProvider | None = None


def configure_tracing(
    endpoint: str | None = None,
    service_name: str = "audit-rag",
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """Create and register a global TracerProvider.

    Args:
        endpoint: OTLP HTTP endpoint URL to send traces to. When *None* and no
            *exporter* is given, spans go to
            :class:`~opentelemetry.sdk.trace.export.ConsoleSpanExporter`.
        service_name: Label identifying this application in the backend.
        exporter: Already-constructed exporter, e.g. ``InMemorySpanExporter``
            in tests. When provided, *endpoint* is ignored.

    Returns:
        The configured provider, also installed as the global OTel provider.
    """
    global _provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if exporter is not None:
        chosen_exporter: SpanExporter = exporter
    elif endpoint is not None:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError as exc:  # pragma: no cover
            raise ImportError(
                "opentelemetry-exporter-otlp-proto-http is required to export "
                "traces to an OTLP endpoint. Install it with:\n"
                "  pip install 'audit-rag[otlp]'"
            ) from exc
        chosen_exporter = OTLPSpanExporter(endpoint=endpoint)
    else:
        chosen_exporter = ConsoleSpanExporter()

    # SimpleSpanProcessor exports synchronously, so collected spans are
    # readable as soon as the traced call returns.
    provider.add_span_processor(SimpleSpanProcessor(chosen_exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    """Return a tracer from the configured provider, or the no-op global one."""
    if _provider is not None:
        return _provider.get_tracer(name)
    return trace.get_tracer(name)


def traced_retrieval(
    retriever: Callable[..., Sequence[SearchCandidate]],
    tracer: trace.Tracer,
    span_name: str = "retrieval",
) -> Callable[..., Sequence[SearchCandidate]]:
    """Wrap a retriever callable so every call is recorded as a span.

    The span records the query (``input.value``), the number of results
    (``retrieval.documents``) and the returned finding ids. Exceptions mark
    the span as ERROR and are re-raised.

    Args:
        retriever: Callable with signature ``(query, options=None) -> results``.
        tracer: Tracer used for span creation.
        span_name: Name given to each span.

    Returns:
        A wrapped callable with identical behaviour plus tracing.
    """

    def _wrapped(query: str, *args, **kwargs) -> Sequence[SearchCandidate]:
        with tracer.start_as_current_span(span_name) as span:
            span.set_attribute(ATTR_INPUT_VALUE, query)
            try:
                results = retriever(query, *args, **kwargs)
                span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(results))
                span.set_attribute(ATTR_RETRIEVAL_DOCUMENT_IDS, [r.doc_id for r in results])
                span.set_status(trace.StatusCode.OK)
                return results
            except Exception as exc:
                span.set_status(trace.StatusCode.ERROR, str(exc))
                span.record_exception(exc)
                raise

    return _wrapped


def traced_generation(
    answer_fn: Callable[..., str],
    tracer: trace.Tracer,
    model_name: str = "",
) -> Callable[..., str]:
    """Wrap an answer-generation callable so every call is recorded as a span.

    The span, named ``"generation"``, records the question, the model name
    (when provided) and the first 500 characters of the answer.

    Args:
        answer_fn: Callable with signature ``(question, context, ...) -> str``.
        tracer: Tracer used for span creation.
        model_name: Optional model identifier attached as span metadata.

    Returns:
        A wrapped callable with identical behaviour plus tracing.
    """

    def _wrapped(question: str, *args, **kwargs) -> str:
        with tracer.start_as_current_span("generation") as span:
            span.set_attribute(ATTR_INPUT_VALUE, question)
            if model_name:
                span.set_attribute(ATTR_LLM_MODEL_NAME, model_name)
            try:
                answer = answer_fn(question, *args, **kwargs)
                span.set_attribute(ATTR_OUTPUT_VALUE, answer[:500])
                span.set_status(trace.StatusCode.OK)
                return answer
            except Exception as exc:
                span.set_status(trace.StatusCode.ERROR, str(exc))
                span.record_exception(exc)
                raise

    return _wrapped
