"""Query-time content retrieval over the vector store."""

from __future__ import annotations

import logging

from knowledge_agent.config import RetrievalConfig
from knowledge_agent.ingest.embedder import Embedder
from knowledge_agent.retrieval.vector_store import VectorStore
from knowledge_agent.types import ScoredRecord

logger = logging.getLogger(__name__)


class ContentRetriever:
    """Embeds a query and returns records clearing the configured score floor.

    An empty or partially ingested store simply yields fewer results; it is
    never an error.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.vector_store = vector_store
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    def retrieve(
        self,
        query: str,
        *,
        max_results: int | None = None,
        min_score: float | None = None,
    ) -> list[ScoredRecord]:
        query_vector = self.embedder.embed(query)
        hits = self.vector_store.search(
            query_vector,
            max_results or self.config.max_results,
            self.config.min_score if min_score is None else min_score,
        )
        logger.debug("Retrieved %d records for query of %d chars", len(hits), len(query))
        return hits
