"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

Role = Literal["system", "user", "assistant"]


@dataclass(slots=True)
class PageDocument:
    """A crawled page before it is written to the corpus."""

    url: str
    title: str
    blocks: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)

    def to_markdown(self) -> str:
        return "".join(self.blocks)


@dataclass(slots=True)
class CorpusPage:
    """One page section read back from a corpus file."""

    url: str
    title: str
    text: str


@dataclass(slots=True)
class CorpusFile:
    """Outcome of a crawl run."""

    path: Path
    fetched_urls: list[str]
    failed_urls: list[str]

    @property
    def pages_written(self) -> int:
        return len(self.fetched_urls)


@dataclass(frozen=True, slots=True)
class Segment:
    """A token-bounded slice of source text.

    `start`/`end` are character offsets into the source. Text between `start`
    and `fresh_start` repeats the tail of the previous segment.
    """

    index: int
    text: str
    start: int
    end: int
    fresh_start: int
    token_count: int

    @property
    def overlap_text(self) -> str:
        return self.text[: self.fresh_start - self.start]

    @property
    def fresh_text(self) -> str:
        return self.text[self.fresh_start - self.start :]


@dataclass(frozen=True, slots=True)
class EmbeddingRecord:
    """A stored vector with its originating segment text and metadata."""

    record_id: str
    text: str
    metadata: dict[str, Any]
    vector: tuple[float, ...]


@dataclass(slots=True)
class ScoredRecord:
    """A search result with similarity score and 1-based rank."""

    record: EmbeddingRecord
    score: float
    rank: int = 0


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "text": self.text}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Message":
        return cls(role=payload["role"], text=str(payload["text"]))


@dataclass(slots=True)
class IngestReport:
    corpus_path: str
    pages: int
    segments_added: int
    segments_skipped: int
    elapsed_ms: float


@dataclass(slots=True)
class AgentAnswer:
    """Reply to one user turn, with the retrieved sources used as context."""

    conversation_id: str
    content: str
    finish_reason: str
    sources: list[ScoredRecord]
