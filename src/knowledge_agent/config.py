"""Configuration models for the knowledge agent."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field

_DEFAULT_RELEVANT_PATHS = ("/electrics/", "/models/", "/products/", "/forums/", "/threads/")

_SYSTEM_PROMPT = """
You are an expert assistant for the crawled reference site.
Answer only questions about its subject, with medium detail.
Reply using HTML markup.
Today is {current_date}.

Relevant information retrieved from the site:
{context}
""".strip()


class CrawlerConfig(BaseModel):
    """Configures breadth-first crawling, link filtering, and politeness."""

    seed_url: str | None = None
    max_depth: int = Field(default=3, ge=0)
    relevant_path_patterns: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_RELEVANT_PATHS)
    )
    page_delay_seconds: float = Field(default=1.0, ge=0.0)
    level_delay_seconds: float = Field(default=2.0, ge=0.0)
    timeout_seconds: float = Field(default=120.0, gt=0.0)
    fetch_retries: int = Field(default=0, ge=0)
    retry_backoff_seconds: float = Field(default=2.0, ge=0.0)
    user_agent: str = "Mozilla/5.0 (compatible; knowledge-agent/0.1)"
    corpus_path: str = "corpus.txt"


class ChunkingConfig(BaseModel):
    """Configures token-bounded recursive splitting."""

    max_tokens: int = Field(default=500, ge=1)
    overlap_tokens: int = Field(default=100, ge=0)


class RetrievalConfig(BaseModel):
    """Configures similarity search filtering."""

    max_results: int = Field(default=1, ge=1)
    min_score: float = Field(default=0.6, ge=-1.0, le=1.0)


class VectorStoreConfig(BaseModel):
    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: str = "knowledge_agent_vectors.db"
    timeout_seconds: float = Field(default=5.0, gt=0.0)


class MemoryConfig(BaseModel):
    """Configures the per-conversation sliding window and its backing store."""

    max_messages: int = Field(default=100, ge=1)
    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: str = "knowledge_agent_memory.db"
    key_prefix: str = Field(default="knowledge_agent:chat:memory:", min_length=1)
    timeout_seconds: float = Field(default=5.0, gt=0.0)


class AgentConfig(BaseModel):
    system_prompt: str = _SYSTEM_PROMPT
    no_context_text: str = "No relevant information was retrieved."


class Settings(BaseModel):
    """Aggregated application settings."""

    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    ingest_on_startup: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from `KNOWLEDGE_AGENT_*` environment variables."""

        crawler = CrawlerConfig(
            seed_url=os.getenv("KNOWLEDGE_AGENT_SEED_URL") or None,
            max_depth=int(os.getenv("KNOWLEDGE_AGENT_MAX_DEPTH", "3")),
            corpus_path=os.getenv("KNOWLEDGE_AGENT_CORPUS_PATH", "corpus.txt"),
        )
        patterns = os.getenv("KNOWLEDGE_AGENT_RELEVANT_PATHS")
        if patterns is not None:
            crawler.relevant_path_patterns = [p for p in patterns.split(",") if p]

        return cls(
            crawler=crawler,
            vector_store=VectorStoreConfig(
                backend=os.getenv("KNOWLEDGE_AGENT_VECTOR_BACKEND", "memory"),
                sqlite_path=os.getenv(
                    "KNOWLEDGE_AGENT_VECTOR_DB", "knowledge_agent_vectors.db"
                ),
            ),
            memory=MemoryConfig(
                max_messages=int(os.getenv("KNOWLEDGE_AGENT_MAX_MESSAGES", "100")),
                backend=os.getenv("KNOWLEDGE_AGENT_MEMORY_BACKEND", "memory"),
                sqlite_path=os.getenv(
                    "KNOWLEDGE_AGENT_MEMORY_DB", "knowledge_agent_memory.db"
                ),
            ),
            ingest_on_startup=os.getenv("KNOWLEDGE_AGENT_INGEST_ON_STARTUP", "1")
            not in {"0", "false", "no"},
            log_level=os.getenv("KNOWLEDGE_AGENT_LOG_LEVEL", "INFO"),
        )
