from __future__ import annotations

import math
import re
from dataclasses import dataclass

from .errors import ChunkingError
from .schema import Chunk, SourceDocument

DEFAULT_MAX_CHUNK_SIZE = 512
DEFAULT_CHUNK_OVERLAP = 50
TOKENS_PER_WORD = 1.3
CONTENT_SECTION = "content"

_HEADER_PATTERN = re.compile(r"\*\*([^*]+)\*\*")
_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]*|[.!?]+")
_WORD_PATTERN = re.compile(r"\w")


@dataclass(frozen=True, slots=True)
class Section:
    """Named region of a finding's body, delimited by bold headers."""

    name: str
    body: str


def estimate_tokens(text: str) -> int:
    """Approximate a token count as `ceil(words * 1.3)`."""
    return math.ceil(len(text.split()) * TOKENS_PER_WORD)


def extract_sections(content: str) -> list[Section]:
    """Split content on `**Header**` markers.

    Text preceding the first marker is kept as a leading `content` section.
    Sections whose body is empty are dropped. Content without any marker is
    returned as a single `content` section.
    """
    parts = _HEADER_PATTERN.split(content)
    sections: list[Section] = []

    preamble = parts[0].strip()
    if preamble and len(parts) > 1:
        sections.append(Section(name=CONTENT_SECTION, body=preamble))

    for idx in range(1, len(parts), 2):
        name = parts[idx].strip()
        body = parts[idx + 1].strip() if idx + 1 < len(parts) else ""
        if body:
            sections.append(Section(name=name, body=body))

    if not sections:
        sections.append(Section(name=CONTENT_SECTION, body=content.strip()))
    return sections


def split_sentences(text: str) -> list[str]:
    """Split on terminal punctuation, keeping it attached to each sentence.

    The punctuation is not stripped, so chunk bodies read like the source text
    ("Funds can be drained." rather than "Funds can be drained"). Fragments
    with no word character, such as a stray "...", are discarded.
    """
    sentences = []
    for match in _SENTENCE_PATTERN.finditer(text):
        sentence = match.group(0).strip()
        if sentence and _WORD_PATTERN.search(sentence):
            sentences.append(sentence)
    return sentences


def render_header(document: SourceDocument, section: str) -> str:
    return "\n".join(
        [
            f"Protocol: {document.protocol_name}",
            f"Issue: {document.title}",
            f"Impact: {document.impact.value}",
            f"Section: {section}",
            f"Audit Firm: {document.firm_name}",
        ]
    )


class DocumentChunker:
    """Sentence-window chunker with overlap and a metadata header per chunk."""

    def __init__(
        self,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        """Configure window sizes.

        Args:
            max_chunk_size: Upper bound on estimated tokens per chunk body.
            chunk_overlap: Estimated-token budget carried into the next chunk.
        """
        if max_chunk_size < 1:
            raise ValueError(f"max_chunk_size must be positive, got {max_chunk_size}")
        if not 0 <= chunk_overlap < max_chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, {max_chunk_size}), got {chunk_overlap}"
            )
        self.max_chunk_size = max_chunk_size
        self.chunk_overlap = chunk_overlap

    def chunk(self, document: SourceDocument) -> list[Chunk]:
        """Split a finding into ordered, header-enriched chunks.

        Args:
            document: Finding with non-empty content.

        Returns:
            Chunks whose `chunk_index` runs 0..N-1 across all sections.

        Raises:
            ChunkingError: If the content is empty or yields no sentences.
        """
        if not document.content or not document.content.strip():
            raise ChunkingError(document.doc_id, "content is empty")

        chunks: list[Chunk] = []
        for section in extract_sections(document.content):
            header = render_header(document, section.name)
            for body in self.window_sentences(split_sentences(section.body)):
                chunks.append(
                    Chunk(
                        doc_id=document.doc_id,
                        chunk_index=len(chunks),
                        section=section.name,
                        text=f"{header}\n\n{body}",
                        body=body,
                    )
                )

        if not chunks:
            raise ChunkingError(document.doc_id, "content contains no sentences")
        return chunks

    def window_sentences(self, sentences: list[str]) -> list[str]:
        """Greedily pack sentences into bodies no larger than the maximum.

        A sentence that alone exceeds the maximum becomes its own body.
        """
        bodies: list[str] = []
        current: list[str] = []
        current_size = 0

        for sentence in sentences:
            size = estimate_tokens(sentence)
            if current and current_size + size > self.max_chunk_size:
                bodies.append(" ".join(current))
                current = self.overlap_sentences(current)
                current_size = sum(estimate_tokens(s) for s in current)
                if current_size + size > self.max_chunk_size:
                    current, current_size = [], 0
            current.append(sentence)
            current_size += size

        if current:
            bodies.append(" ".join(current))
        return bodies

    def overlap_sentences(self, sentences: list[str]) -> list[str]:
        """Trailing sentences whose combined size fits the overlap budget."""
        overlap: list[str] = []
        overlap_size = 0
        for sentence in reversed(sentences):
            size = estimate_tokens(sentence)
            if overlap_size + size > self.chunk_overlap:
                break
            overlap.insert(0, sentence)
            overlap_size += size
        return overlap


def chunk_document(
    document: SourceDocument,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[Chunk]:
    """Chunk one finding with a throwaway `DocumentChunker`."""
    return DocumentChunker(max_chunk_size, chunk_overlap).chunk(document)
