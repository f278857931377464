from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass(slots=True)
class OpenAISettings:
    """Runtime model configuration for embedding and generation calls."""

    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4.1-mini"
    embedding_batch_size: int = 100
    embedding_batch_delay: float = 1.0


@dataclass(slots=True)
class RetrievalSettings:
    """Search defaults and fusion constants."""

    top_k: int = 5
    min_score: float = 0.7
    rrf_k: int = 60
    candidate_multiplier: int = 10
    fanout_factor: float = 1.5
    keyword_score_divisor: float = 10.0
    fallback_to_keyword: bool = True


@dataclass(slots=True)
class ChunkingSettings:
    """Window sizes in estimated tokens."""

    max_chunk_size: int = 512
    chunk_overlap: int = 50


@dataclass(slots=True)
class IngestionSettings:
    """Batching for findings ingestion."""

    batch_size: int = 10
    delay_seconds: float = 1.0
    skip_existing: bool = True


@dataclass(slots=True)
class Paths:
    """Common project paths and the Chroma collection name."""

    data_dir: str = "data"
    artifacts_dir: str = "artifacts"
    chroma_dir: str = "artifacts/chroma"
    collection_name: str = "audit_findings"


@dataclass(slots=True)
class Settings:
    openai: OpenAISettings = field(default_factory=OpenAISettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    chunking: ChunkingSettings = field(default_factory=ChunkingSettings)
    ingestion: IngestionSettings = field(default_factory=IngestionSettings)
    paths: Paths = field(default_factory=Paths)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """Load environment-backed settings and return typed config objects.

    Reads a `.env` file if present. OpenAI model names use the
    `OPENAI_EMBEDDING_MODEL` / `OPENAI_CHAT_MODEL` variables; everything else
    is prefixed with `AUDIT_RAG_`.

    Returns:
        Settings aggregate with every section populated.
    """
    load_dotenv()
    return Settings(
        openai=OpenAISettings(
            embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            chat_model=os.getenv("OPENAI_CHAT_MODEL", "gpt-4.1-mini"),
            embedding_batch_size=int(os.getenv("AUDIT_RAG_EMBEDDING_BATCH_SIZE", "100")),
            embedding_batch_delay=float(os.getenv("AUDIT_RAG_EMBEDDING_BATCH_DELAY", "1.0")),
        ),
        retrieval=RetrievalSettings(
            top_k=int(os.getenv("AUDIT_RAG_TOP_K", "5")),
            min_score=float(os.getenv("AUDIT_RAG_MIN_SCORE", "0.7")),
            rrf_k=int(os.getenv("AUDIT_RAG_RRF_K", "60")),
            candidate_multiplier=int(os.getenv("AUDIT_RAG_CANDIDATE_MULTIPLIER", "10")),
            fanout_factor=float(os.getenv("AUDIT_RAG_FANOUT_FACTOR", "1.5")),
            keyword_score_divisor=float(os.getenv("AUDIT_RAG_KEYWORD_SCORE_DIVISOR", "10")),
            fallback_to_keyword=_env_bool("AUDIT_RAG_FALLBACK_TO_KEYWORD", True),
        ),
        chunking=ChunkingSettings(
            max_chunk_size=int(os.getenv("AUDIT_RAG_MAX_CHUNK_SIZE", "512")),
            chunk_overlap=int(os.getenv("AUDIT_RAG_CHUNK_OVERLAP", "50")),
        ),
        ingestion=IngestionSettings(
            batch_size=int(os.getenv("AUDIT_RAG_INGEST_BATCH_SIZE", "10")),
            delay_seconds=float(os.getenv("AUDIT_RAG_INGEST_DELAY", "1.0")),
            skip_existing=_env_bool("AUDIT_RAG_SKIP_EXISTING", True),
        ),
        paths=Paths(
            data_dir=os.getenv("AUDIT_RAG_DATA_DIR", "data"),
            artifacts_dir=os.getenv("AUDIT_RAG_ARTIFACTS_DIR", "artifacts"),
            chroma_dir=os.getenv("AUDIT_RAG_CHROMA_DIR", "artifacts/chroma"),
            collection_name=os.getenv("AUDIT_RAG_COLLECTION", "audit_findings"),
        ),
    )
