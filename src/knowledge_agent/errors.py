"""Error taxonomy shared by crawl, ingest, retrieval, and memory components."""

from __future__ import annotations


class KnowledgeAgentError(Exception):
    """Base error; `str(exc)` is always a human-readable message."""


class FetchError(KnowledgeAgentError):
    """A page could not be retrieved. Non-fatal to a crawl."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class InvalidConfiguration(KnowledgeAgentError, ValueError):
    """Parameters are inconsistent; raised before any work starts."""


class EmbeddingFailure(KnowledgeAgentError):
    """The embedding collaborator failed to produce a vector."""


class MemoryStoreFailure(KnowledgeAgentError):
    """The conversation memory backing store is unreachable or failed."""
