from __future__ import annotations

from dataclasses import asdict
import json
from pathlib import Path
from typing import Iterable

from .schema import Chunk


def _load_jsonl(path: str | Path) -> list[dict]:
    records: list[dict] = []
    with Path(path).open("r", encoding="utf-8") as file_handle:
        for line in file_handle:
            if line.strip():
                records.append(json.loads(line))
    return records


def load_finding_records(path: str | Path) -> list[dict]:
    """Read raw audit-finding records from a JSON array or a JSONL file."""
    source = Path(path)
    if source.suffix == ".jsonl":
        return _load_jsonl(source)

    payload = json.loads(source.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"{source} must contain a JSON array of findings")
    return payload


def export_chunks(chunks: Iterable[Chunk], path: str | Path) -> int:
    """Write chunks as JSONL, one object per chunk keyed by its `chunk_id`.

    Returns:
        Number of chunks written.
    """
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)

    written = 0
    with destination.open("w", encoding="utf-8") as file_handle:
        for chunk in chunks:
            file_handle.write(json.dumps({"chunk_id": chunk.chunk_id, **asdict(chunk)}) + "\n")
            written += 1
    return written
