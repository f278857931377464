from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterator, Sequence

from openai import OpenAI, OpenAIError
from opentelemetry import trace

from .errors import GenerationFailure
from .pipeline import HybridRetriever
from .protocols import ChatProvider
from .schema import FusedResult, Impact, SearchFilters, SearchOptions
from .tracing import traced_generation, traced_retrieval

NO_FINDINGS_CONTEXT = "No relevant security audit findings found."

SYSTEM_PROMPT = """You are a specialized assistant for smart contract security audits and blockchain security.

Your role is to help developers understand security vulnerabilities, audit findings, and best practices based on real audit reports.

Guidelines:
1. Answer questions using the provided audit findings as context
2. Always cite sources by mentioning the protocol name and audit firm
3. If the context doesn't contain relevant information, clearly state that
4. Provide actionable recommendations when discussing vulnerabilities
5. Use technical terminology appropriately but explain complex concepts
6. Highlight the severity (impact level) of issues when relevant
7. If multiple findings are related, synthesize them into a coherent answer

When a question is outside the scope of the provided audit findings, acknowledge this limitation and suggest what information would be needed."""

COMPARATIVE_SYSTEM_PROMPT = """You are analyzing and comparing security findings across multiple protocols.

Provide a structured comparison that:
1. Identifies common vulnerabilities or patterns
2. Highlights unique issues for each protocol
3. Compares severity and impact levels
4. Summarizes key differences in security posture
5. Provides comparative recommendations

Present your analysis in a clear, organized format."""


def build_context(results: Sequence[FusedResult]) -> str:
    """Render fused results as numbered source blocks for the prompt."""
    if not results:
        return NO_FINDINGS_CONTEXT

    blocks = []
    for idx, result in enumerate(results, start=1):
        blocks.append(
            "\n".join(
                [
                    f"[Source {idx}]",
                    f"Protocol: {result.metadata.protocol}",
                    f"Issue: {result.metadata.title}",
                    f"Impact: {result.metadata.impact.value}",
                    f"Relevance Score: {result.score:.3f}",
                    f"\n{result.text}",
                    f"\nReference: {result.metadata.source_link}",
                    "---",
                ]
            )
        )
    return "\n\n".join(blocks)


def build_user_message(query: str, context: str) -> str:
    return (
        "Based on the following smart contract security audit findings, please answer the question.\n\n"
        f"AUDIT FINDINGS CONTEXT:\n{context}\n\n"
        f"QUESTION:\n{query}\n\n"
        "Please provide a comprehensive answer based on the audit findings above. "
        "If the findings don't fully address the question, mention what additional information might be needed."
    )


class OpenAIChatProvider:
    """Chat provider backed by OpenAI chat completions."""

    def __init__(self, model: str = "gpt-4.1-mini", client: OpenAI | None = None):
        self.model = model
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def complete(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            raise GenerationFailure(f"Failed to generate chat completion: {exc}") from exc

        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise GenerationFailure("Chat provider returned an empty completion")
        return text

    def stream(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> Iterator[str]:
        try:
            events = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
            for event in events:
                if not event.choices:
                    continue
                text = event.choices[0].delta.content
                if text:
                    yield text
        except OpenAIError as exc:
            raise GenerationFailure(f"Failed to stream chat completion: {exc}") from exc


@dataclass(slots=True)
class RAGRequest:
    """One question, with optional history, search options and prompt override."""

    query: str
    conversation_history: list[dict[str, str]] = field(default_factory=list)
    search_options: SearchOptions | None = None
    system_prompt: str | None = None


@dataclass(slots=True)
class ResponseMetadata:
    retrieval_ms: float
    generation_ms: float
    chunks_used: int


@dataclass(slots=True)
class RAGResponse:
    answer: str
    sources: list[FusedResult]
    metadata: ResponseMetadata


@dataclass(slots=True)
class StreamEvent:
    """One item of a streamed answer: `sources` first, `chunk`s, then `done`."""

    kind: str
    text: str = ""
    sources: list[FusedResult] = field(default_factory=list)


_HISTORY_ROLES = frozenset({"user", "assistant"})


class AuditQAPipeline:
    """Retrieve fused findings, then answer from them with a chat model."""

    def __init__(
        self,
        retriever: HybridRetriever,
        chat: ChatProvider,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        tracer: trace.Tracer | None = None,
        model_name: str = "",
    ):
        """Wire retrieval and generation.

        Args:
            retriever: Hybrid retriever supplying grounding context.
            chat: Provider generating the answer.
            temperature: Sampling temperature; low for factual answers.
            max_tokens: Answer length cap.
            tracer: When given, retrieval and generation are recorded as spans.
            model_name: Model identifier attached to generation spans.
        """
        self.retriever = retriever
        self.chat = chat
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._retrieve = retriever.hybrid_search
        self._generate = self._complete
        if tracer is not None:
            self._retrieve = traced_retrieval(retriever.hybrid_search, tracer, span_name="hybrid-retrieval")
            self._generate = traced_generation(self._complete, tracer, model_name=model_name)

    def query(self, request: RAGRequest) -> RAGResponse:
        """Answer one question grounded in retrieved findings."""
        retrieval_start = time.perf_counter()
        sources = list(self._retrieve(request.query, request.search_options))
        retrieval_ms = (time.perf_counter() - retrieval_start) * 1000

        messages = self.build_messages(request, sources)
        generation_start = time.perf_counter()
        answer = self._generate(request.query, messages)
        generation_ms = (time.perf_counter() - generation_start) * 1000

        return RAGResponse(
            answer=answer,
            sources=sources,
            metadata=ResponseMetadata(
                retrieval_ms=retrieval_ms,
                generation_ms=generation_ms,
                chunks_used=len(sources),
            ),
        )

    def stream(self, request: RAGRequest) -> Iterator[StreamEvent]:
        """Yield the sources, then answer fragments as they arrive, then `done`.

        Retrieval completes before anything is yielded.
        """
        sources = list(self._retrieve(request.query, request.search_options))
        messages = self.build_messages(request, sources)
        yield StreamEvent(kind="sources", sources=sources)
        for fragment in self.chat.stream(messages, temperature=self.temperature, max_tokens=self.max_tokens):
            yield StreamEvent(kind="chunk", text=fragment)
        yield StreamEvent(kind="done")

    def query_by_impact(self, query: str, impacts: Sequence[Impact | str]) -> RAGResponse:
        options = SearchOptions(top_k=5, filters=SearchFilters(impact=tuple(impacts)))
        return self.query(RAGRequest(query=query, search_options=options))

    def query_by_protocol(self, query: str, protocols: Sequence[str]) -> RAGResponse:
        options = SearchOptions(top_k=5, filters=SearchFilters(protocol=tuple(protocols)))
        return self.query(RAGRequest(query=query, search_options=options))

    def compare_protocols(self, protocols: Sequence[str], aspect: str) -> RAGResponse:
        """Comparative analysis of one aspect across at least two protocols."""
        if len(protocols) < 2:
            raise ValueError("compare_protocols needs at least two protocols")
        query = f"Compare {aspect} across {', '.join(protocols)} protocols"
        options = SearchOptions(top_k=10, filters=SearchFilters(protocol=tuple(protocols)))
        return self.query(
            RAGRequest(query=query, search_options=options, system_prompt=COMPARATIVE_SYSTEM_PROMPT)
        )

    def build_messages(self, request: RAGRequest, sources: Sequence[FusedResult]) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": request.system_prompt or SYSTEM_PROMPT}]
        for turn in request.conversation_history:
            if turn.get("role") not in _HISTORY_ROLES:
                raise ValueError(f"Unsupported conversation role: {turn.get('role')!r}")
            messages.append({"role": turn["role"], "content": turn["content"]})
        messages.append({"role": "user", "content": build_user_message(request.query, build_context(sources))})
        return messages

    def _complete(self, question: str, messages: list[dict[str, str]]) -> str:
        return self.chat.complete(messages, temperature=self.temperature, max_tokens=self.max_tokens)
