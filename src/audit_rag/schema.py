from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping


class Impact(str, Enum):
    """Severity assigned to an audit finding."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def parse(cls, value: str | Impact) -> Impact:
        if isinstance(value, Impact):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown impact level: {value!r}") from None


_TEXT_FIELDS = ("title", "content", "protocol_name", "firm_name", "source_link", "summary")


@dataclass(frozen=True, slots=True)
class SourceDocument:
    """One audited finding as ingested from the findings export."""

    doc_id: str
    title: str
    content: str
    impact: Impact
    protocol_name: str = ""
    firm_name: str = ""
    source_link: str = ""
    summary: str = ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> SourceDocument:
        """Build a document from a raw audit-finding record.

        Args:
            record: Mapping with at least `id`, `title` and `impact` keys.

        Returns:
            Parsed document with a string identifier.

        Raises:
            ValueError: When the record is not a mapping, the id or title is
                missing, a text field is not a string or the impact is invalid.
        """
        if not isinstance(record, Mapping):
            raise ValueError(f"Audit finding record must be a mapping, got {type(record).__name__}")
        raw_id = record.get("id")
        if raw_id is None or str(raw_id).strip() == "":
            raise ValueError("Audit finding record has no id")

        fields = {name: record.get(name) or "" for name in _TEXT_FIELDS}
        for name, value in fields.items():
            if not isinstance(value, str):
                raise ValueError(
                    f"Audit finding {raw_id} field {name!r} must be a string, got {type(value).__name__}"
                )
        if not fields["title"].strip():
            raise ValueError(f"Audit finding {raw_id} has no title")

        return cls(
            doc_id=str(raw_id),
            impact=Impact.parse(record.get("impact") or ""),
            **fields,
        )


@dataclass(frozen=True, slots=True)
class Chunk:
    """Context-enriched slice of a finding prepared for embedding."""

    doc_id: str
    chunk_index: int
    section: str
    text: str
    body: str

    @property
    def chunk_id(self) -> str:
        return f"{self.doc_id}-{self.chunk_index:03d}"


@dataclass(frozen=True, slots=True)
class SearchFilters:
    """Metadata allow-lists; an empty list places no constraint."""

    impact: tuple[Impact, ...] = ()
    protocol: tuple[str, ...] = ()
    firm: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "impact", tuple(Impact.parse(value) for value in self.impact))
        object.__setattr__(self, "protocol", tuple(self.protocol))
        object.__setattr__(self, "firm", tuple(self.firm))

    @property
    def is_empty(self) -> bool:
        return not (self.impact or self.protocol or self.firm)

    def matches(self, document: SourceDocument) -> bool:
        if self.impact and document.impact not in self.impact:
            return False
        if self.protocol and document.protocol_name not in self.protocol:
            return False
        if self.firm and document.firm_name not in self.firm:
            return False
        return True


_FILTER_KEYS = frozenset({"impact", "protocol", "firm"})
_OPTION_ALIASES = {
    "top_k": "top_k",
    "topK": "top_k",
    "min_score": "min_score",
    "minScore": "min_score",
    "filters": "filters",
}


@dataclass(frozen=True, slots=True)
class SearchOptions:
    """Every option recognised by the retrievers, with its default."""

    top_k: int = 5
    min_score: float = 0.7
    filters: SearchFilters = field(default_factory=SearchFilters)

    def __post_init__(self) -> None:
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")

    def with_top_k(self, top_k: int) -> SearchOptions:
        return replace(self, top_k=top_k)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> SearchOptions:
        """Parse request options, rejecting keys that are not recognised.

        Accepts `top_k`/`topK`, `min_score`/`minScore` and a `filters` mapping
        with `impact`, `protocol` and `firm` lists. Missing keys take defaults.
        """
        if not payload:
            return cls()

        unknown = sorted(set(payload) - set(_OPTION_ALIASES))
        if unknown:
            raise ValueError(f"Unknown search option(s): {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, value in payload.items():
            if value is not None:
                values[_OPTION_ALIASES[key]] = value

        raw_filters = values.pop("filters", None) or {}
        unknown_filters = sorted(set(raw_filters) - _FILTER_KEYS)
        if unknown_filters:
            raise ValueError(f"Unknown search filter(s): {', '.join(unknown_filters)}")

        for key, value in raw_filters.items():
            if value is not None and not isinstance(value, (list, tuple)):
                raise ValueError(f"Search filter '{key}' must be a list, got {type(value).__name__}")

        filters = SearchFilters(
            impact=tuple(raw_filters.get("impact") or ()),
            protocol=tuple(raw_filters.get("protocol") or ()),
            firm=tuple(raw_filters.get("firm") or ()),
        )
        if "top_k" in values:
            values["top_k"] = int(values["top_k"])
        if "min_score" in values:
            values["min_score"] = float(values["min_score"])
        return cls(filters=filters, **values)


@dataclass(slots=True)
class StoreHit:
    """Raw candidate returned by a document store query."""

    document: SourceDocument
    score: float
    chunk: Chunk | None = None


@dataclass(frozen=True, slots=True)
class CandidateMetadata:
    """Display snapshot of the finding a candidate was drawn from."""

    protocol: str
    impact: Impact
    title: str
    section: str
    source_link: str
    firm: str


@dataclass(slots=True)
class SearchCandidate:
    """Scored output of one retrieval channel."""

    doc_id: str
    chunk_index: int | None
    text: str
    score: float
    source: str
    metadata: CandidateMetadata


@dataclass(slots=True)
class FusedResult(SearchCandidate):
    """Candidate whose score has been replaced by its fused rank score."""

    channels: tuple[str, ...] = ()
