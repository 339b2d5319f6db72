"""Knowledge agent package."""

from .config import ChunkingConfig, CrawlerConfig, MemoryConfig, RetrievalConfig, Settings

__all__ = ["ChunkingConfig", "CrawlerConfig", "MemoryConfig", "RetrievalConfig", "Settings"]
