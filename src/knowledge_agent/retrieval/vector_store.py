"""Vector store interfaces and concrete adapters."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterable, Iterator
from contextlib import closing, contextmanager
from math import sqrt
from pathlib import Path
from typing import Any, Protocol

from knowledge_agent.config import VectorStoreConfig
from knowledge_agent.types import EmbeddingRecord, ScoredRecord

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


class VectorStore(Protocol):
    """Append-only embedding store with thresholded similarity search."""

    def add(self, text: str, vector: list[float], metadata: dict[str, Any] | None = None) -> str:
        """Store one record and return its id."""

    def search(
        self, query_vector: list[float], max_results: int, min_score: float
    ) -> list[ScoredRecord]:
        """Return up to `max_results` records scoring at least `min_score`."""

    def serialize(self) -> bytes:
        """Dump every record as UTF-8 JSON."""

    def clear(self) -> None:
        """Remove every record."""

    def __len__(self) -> int:
        ...


class InMemoryVectorStore:
    """Linear-scan cosine store; records live in an insertion-ordered list."""

    def __init__(self) -> None:
        self._records: list[EmbeddingRecord] = []
        self._dimension: int | None = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def add(self, text: str, vector: list[float], metadata: dict[str, Any] | None = None) -> str:
        record = EmbeddingRecord(
            record_id=uuid.uuid4().hex,
            text=text,
            metadata=dict(metadata or {}),
            vector=tuple(float(value) for value in vector),
        )
        self._append(record)
        return record.record_id

    def records(self) -> list[EmbeddingRecord]:
        with self._lock:
            return list(self._records)

    def search(
        self, query_vector: list[float], max_results: int, min_score: float
    ) -> list[ScoredRecord]:
        return _rank(self.records(), query_vector, max_results, min_score)

    def clear(self) -> None:
        with self._lock:
            self._records = []
            self._dimension = None

    def serialize(self) -> bytes:
        return _dump_records(self.records(), self._dimension)

    @classmethod
    def deserialize(cls, data: bytes | str) -> "InMemoryVectorStore":
        store = cls()
        for record in _load_records(data):
            store._append(record)
        return store

    def save(self, path: str | Path) -> None:
        Path(path).write_bytes(self.serialize())
        logger.info("Saved %d embedding records to %s", len(self), path)

    @classmethod
    def load(cls, path: str | Path) -> "InMemoryVectorStore":
        return cls.deserialize(Path(path).read_bytes())

    def _append(self, record: EmbeddingRecord) -> None:
        with self._lock:
            self._check_dimension(len(record.vector))
            self._records.append(record)

    def _check_dimension(self, dimension: int) -> None:
        if self._dimension is None:
            self._dimension = dimension
        elif dimension != self._dimension:
            raise ValueError(
                f"vector dimension {dimension} does not match store dimension {self._dimension}"
            )


class SQLiteVectorStore:
    """Durable store with the same contract as `InMemoryVectorStore`.

    Each `add` is a single INSERT in its own transaction, so concurrent readers
    see either the complete record or nothing. The autoincrement `seq` column
    preserves insertion order for tie-breaking.
    """

    def __init__(self, path: str | Path, *, timeout_seconds: float = 5.0) -> None:
        self.path = Path(path)
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS records ("
                "seq INTEGER PRIMARY KEY AUTOINCREMENT, "
                "record_id TEXT UNIQUE NOT NULL, "
                "text TEXT NOT NULL, "
                "metadata TEXT NOT NULL, "
                "vector TEXT NOT NULL)"
            )
            conn.commit()

    def __len__(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM records").fetchone()
        return int(row[0])

    @property
    def dimension(self) -> int | None:
        with self._connect() as conn:
            row = conn.execute("SELECT vector FROM records ORDER BY seq LIMIT 1").fetchone()
        return len(json.loads(row[0])) if row else None

    def add(self, text: str, vector: list[float], metadata: dict[str, Any] | None = None) -> str:
        record_id = uuid.uuid4().hex
        values = [float(value) for value in vector]
        with self._lock:
            dimension = self.dimension
            if dimension is not None and dimension != len(values):
                raise ValueError(
                    f"vector dimension {len(values)} does not match store dimension {dimension}"
                )
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO records(record_id, text, metadata, vector) VALUES(?, ?, ?, ?)",
                    (
                        record_id,
                        text,
                        json.dumps(dict(metadata or {}), ensure_ascii=False, sort_keys=True),
                        json.dumps(values),
                    ),
                )
                conn.commit()
        return record_id

    def records(self) -> list[EmbeddingRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT record_id, text, metadata, vector FROM records ORDER BY seq"
            ).fetchall()
        return [
            EmbeddingRecord(
                record_id=row[0],
                text=row[1],
                metadata=json.loads(row[2]),
                vector=tuple(json.loads(row[3])),
            )
            for row in rows
        ]

    def search(
        self, query_vector: list[float], max_results: int, min_score: float
    ) -> list[ScoredRecord]:
        return _rank(self.records(), query_vector, max_results, min_score)

    def clear(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM records")
            conn.commit()

    def serialize(self) -> bytes:
        return _dump_records(self.records(), self.dimension)

    @classmethod
    def deserialize(
        cls, data: bytes | str, path: str | Path, *, timeout_seconds: float = 5.0
    ) -> "SQLiteVectorStore":
        """Load serialized records into a fresh database at `path`."""
        store = cls(path, timeout_seconds=timeout_seconds)
        records = _load_records(data)
        with store._lock, store._connect() as conn:
            conn.executemany(
                "INSERT INTO records(record_id, text, metadata, vector) VALUES(?, ?, ?, ?)",
                [
                    (
                        record.record_id,
                        record.text,
                        json.dumps(record.metadata, ensure_ascii=False, sort_keys=True),
                        json.dumps(list(record.vector)),
                    )
                    for record in records
                ],
            )
            conn.commit()
        return store

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(self.path, timeout=self.timeout_seconds)) as conn:
            yield conn


def create_vector_store(config: VectorStoreConfig | None = None) -> InMemoryVectorStore | SQLiteVectorStore:
    """Select a vector store implementation from configuration."""

    config = config or VectorStoreConfig()
    if config.backend == "sqlite":
        return SQLiteVectorStore(config.sqlite_path, timeout_seconds=config.timeout_seconds)
    return InMemoryVectorStore()


def _rank(
    records: Iterable[EmbeddingRecord],
    query_vector: list[float],
    max_results: int,
    min_score: float,
) -> list[ScoredRecord]:
    if max_results < 1:
        return []
    scored = [
        ScoredRecord(record=record, score=score)
        for record in records
        if (score := _cosine_similarity(query_vector, record.vector)) >= min_score
    ]
    # sorted() is stable, so equal scores keep insertion order.
    ranked = sorted(scored, key=lambda item: item.score, reverse=True)
    return [
        ScoredRecord(record=item.record, score=item.score, rank=i + 1)
        for i, item in enumerate(ranked[:max_results])
    ]


def _dump_records(records: list[EmbeddingRecord], dimension: int | None) -> bytes:
    payload = {
        "version": _FORMAT_VERSION,
        "dimension": dimension,
        "records": [
            {
                "id": record.record_id,
                "text": record.text,
                "metadata": record.metadata,
                "vector": list(record.vector),
            }
            for record in records
        ],
    }
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def _load_records(data: bytes | str) -> list[EmbeddingRecord]:
    raw = data.decode("utf-8") if isinstance(data, bytes) else data
    payload: Any = json.loads(raw)
    if not isinstance(payload, dict) or "records" not in payload:
        raise ValueError("serialized vector store must be a JSON object with 'records'")
    version = payload.get("version", _FORMAT_VERSION)
    if version != _FORMAT_VERSION:
        raise ValueError(f"unsupported vector store format version: {version}")
    return [
        EmbeddingRecord(
            record_id=str(item["id"]),
            text=str(item["text"]),
            metadata=dict(item.get("metadata") or {}),
            vector=tuple(float(value) for value in item["vector"]),
        )
        for item in payload["records"]
    ]


def _cosine_similarity(a: list[float] | tuple[float, ...], b: list[float] | tuple[float, ...]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
