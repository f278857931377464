"""Error kinds raised by the retrieval engine and its collaborators."""
from __future__ import annotations


class AuditRagError(Exception):
    """Base class for every error raised by audit_rag."""


class ChunkingError(AuditRagError):
    """A document could not be split into chunks."""

    def __init__(self, doc_id: str, reason: str):
        self.doc_id = doc_id
        self.reason = reason
        super().__init__(f"Cannot chunk document {doc_id}: {reason}")


class EmbeddingFailure(AuditRagError):
    """The embedding provider could not produce a vector."""


class RetrievalFailure(AuditRagError):
    """A retrieval channel could not query the store."""

    def __init__(self, channel: str, query: str, cause: BaseException | None = None):
        self.channel = channel
        self.query = query
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{channel} retrieval failed for query {query[:80]!r}{detail}")


class FusionInputError(AuditRagError):
    """A candidate handed to fusion lacks its document identity."""


class GenerationFailure(AuditRagError):
    """The chat provider could not produce an answer."""
