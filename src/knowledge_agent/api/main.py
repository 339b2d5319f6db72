"""FastAPI entrypoint for crawl/ingest/ask/conversation endpoints."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from knowledge_agent.agent.knowledge_agent import KnowledgeAgent
from knowledge_agent.config import Settings
from knowledge_agent.crawl.crawler import WebCrawler
from knowledge_agent.errors import EmbeddingFailure, InvalidConfiguration, MemoryStoreFailure
from knowledge_agent.ingest.chunker import RecursiveTokenSplitter
from knowledge_agent.ingest.embedder import HashingEmbedder
from knowledge_agent.ingest.pipeline import BackgroundIngestion, IngestPipeline
from knowledge_agent.memory.chat_memory import ConversationMemory, create_chat_memory_store
from knowledge_agent.obs.logs import configure_logging
from knowledge_agent.retrieval.retriever import ContentRetriever
from knowledge_agent.retrieval.vector_store import create_vector_store

logger = logging.getLogger(__name__)


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


class CrawlRequest(BaseModel):
    seed_url: str | None = None
    max_depth: int | None = Field(default=None, ge=0)


class IngestRequest(BaseModel):
    path: str | None = None


class AskRequest(BaseModel):
    message: str = Field(min_length=1)
    conversation_id: str = Field(default="default", min_length=1, pattern=r"\S")


_settings = Settings.from_env()
configure_logging(_settings.log_level)

_embedder = HashingEmbedder()
_vector_store = create_vector_store(_settings.vector_store)
_splitter = RecursiveTokenSplitter(_settings.chunking)
_ingest_pipeline = IngestPipeline(_splitter, _embedder, _vector_store)
_background = BackgroundIngestion(_ingest_pipeline)
_crawler = WebCrawler(_settings.crawler)

_memory = ConversationMemory(create_chat_memory_store(_settings.memory), _settings.memory)
_retriever = ContentRetriever(_vector_store, _embedder, _settings.retrieval)
_llm = _create_llm()
_agent = KnowledgeAgent(
    retriever=_retriever,
    memory=_memory,
    llm=_llm,
    config=_settings.agent,
)


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    corpus = Path(_settings.crawler.corpus_path)
    if _settings.ingest_on_startup and corpus.exists():
        _background.start(corpus)
    else:
        logger.info("Startup ingestion skipped (corpus %s present: %s)", corpus, corpus.exists())
    yield
    _background.shutdown()


app = FastAPI(title="Knowledge Agent", version="0.1.0", lifespan=_lifespan)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _llm is not None,
        "records": len(_vector_store),
        "ingestion": _background.status,
    }


@app.post("/crawl")
def crawl(request: CrawlRequest) -> dict[str, Any]:
    try:
        corpus = _crawler.crawl(request.seed_url, request.max_depth)
    except InvalidConfiguration as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "corpus_path": str(corpus.path),
        "pages_written": corpus.pages_written,
        "failed_urls": corpus.failed_urls,
    }


@app.post("/ingest")
def ingest(request: IngestRequest) -> dict[str, Any]:
    path = Path(request.path or _settings.crawler.corpus_path)
    if not path.exists():
        raise HTTPException(status_code=404, detail=f"Corpus file not found: {path}")
    _background.start(path)
    return {"status": _background.status, "corpus_path": str(path)}


@app.get("/ingest/status")
def ingest_status() -> dict[str, Any]:
    error = _background.error
    return {
        "status": _background.status,
        "error": str(error) if error is not None else None,
        "records": len(_vector_store),
    }


@app.post("/ask")
def ask(request: AskRequest) -> dict[str, Any]:
    try:
        result = _agent.answer(request.conversation_id, request.message)
    except EmbeddingFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except MemoryStoreFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Answer generation failed")
        raise HTTPException(status_code=500, detail=f"Answer generation failed: {exc}") from exc

    return {
        "conversation_id": result.conversation_id,
        "answer": result.content,
        "finish_reason": result.finish_reason,
        "sources": [
            {
                "id": hit.record.record_id,
                "score": hit.score,
                "text": hit.record.text,
                "metadata": hit.record.metadata,
            }
            for hit in result.sources
        ],
    }


@app.get("/conversations/{conversation_id}")
def conversation(conversation_id: str) -> dict[str, Any]:
    try:
        messages = _memory.get(conversation_id)
    except MemoryStoreFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"items": [message.to_dict() for message in messages]}


@app.delete("/conversations/{conversation_id}")
def clear_conversation(conversation_id: str) -> dict[str, Any]:
    try:
        _memory.clear(conversation_id)
    except MemoryStoreFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "cleared"}
