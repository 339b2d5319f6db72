"""End-to-end ingest pipeline: corpus -> split -> embed -> add."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Literal

from knowledge_agent.crawl.corpus import read_corpus
from knowledge_agent.crawl.crawler import WebCrawler
from knowledge_agent.errors import EmbeddingFailure
from knowledge_agent.ingest.chunker import RecursiveTokenSplitter
from knowledge_agent.ingest.embedder import Embedder
from knowledge_agent.obs.logs import Timer
from knowledge_agent.retrieval.vector_store import VectorStore
from knowledge_agent.types import IngestReport

logger = logging.getLogger(__name__)

IngestStatus = Literal["idle", "running", "completed", "failed"]


class IngestPipeline:
    """Coordinates splitter/embedder/vector store stages.

    Ingestion is additive: running it twice against the same store appends a
    second copy of every segment. Clear the store first for a clean rebuild.
    """

    def __init__(
        self,
        splitter: RecursiveTokenSplitter,
        embedder: Embedder,
        vector_store: VectorStore,
        *,
        skip_failed_segments: bool = False,
    ) -> None:
        self._splitter = splitter
        self._embedder = embedder
        self._vector_store = vector_store
        self.skip_failed_segments = skip_failed_segments

    def ingest_corpus(self, path: str | Path) -> IngestReport:
        """Ingest every page of a corpus file and return a summary.

        Raises:
            EmbeddingFailure: a segment could not be embedded and
                `skip_failed_segments` is off.
        """

        pages = read_corpus(path)
        added = 0
        skipped = 0
        with Timer() as timer:
            for page in pages:
                for segment in self._splitter.split(page.text):
                    try:
                        vector = self._embedder.embed(segment.text)
                    except EmbeddingFailure as exc:
                        if not self.skip_failed_segments:
                            raise
                        logger.warning(
                            "Skipping segment %d of %s: %s", segment.index, page.url, exc
                        )
                        skipped += 1
                        continue
                    self._vector_store.add(
                        segment.text,
                        vector,
                        {
                            "source": page.url,
                            "title": page.title,
                            "segment_index": segment.index,
                        },
                    )
                    added += 1

        report = IngestReport(
            corpus_path=str(path),
            pages=len(pages),
            segments_added=added,
            segments_skipped=skipped,
            elapsed_ms=timer.elapsed_ms,
        )
        logger.info(
            "Ingested %s: %d pages, %d segments added, %d skipped in %.0f ms",
            path,
            report.pages,
            report.segments_added,
            report.segments_skipped,
            report.elapsed_ms,
        )
        return report

    def crawl_and_ingest(
        self,
        crawler: WebCrawler,
        seed_url: str | None = None,
        max_depth: int | None = None,
    ) -> IngestReport:
        corpus = crawler.crawl(seed_url, max_depth)
        return self.ingest_corpus(corpus.path)


class BackgroundIngestion:
    """Runs corpus ingestion off the request path with an observable outcome.

    Queries keep working while ingestion runs; they just see fewer records.
    """

    def __init__(self, pipeline: IngestPipeline) -> None:
        self._pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ingest")
        self._future: Future[IngestReport] | None = None
        self._lock = threading.Lock()

    def start(self, corpus_path: str | Path) -> Future[IngestReport]:
        """Start ingestion, or return the in-flight run if one exists."""
        with self._lock:
            if self._future is not None and not self._future.done():
                logger.info("Ingestion already running; not starting another")
                return self._future
            logger.info("Starting background ingestion of %s", corpus_path)
            self._future = self._executor.submit(self._pipeline.ingest_corpus, corpus_path)
            self._future.add_done_callback(_log_outcome)
            return self._future

    @property
    def status(self) -> IngestStatus:
        future = self._future
        if future is None:
            return "idle"
        if not future.done():
            return "running"
        if future.cancelled():
            return "failed"
        return "failed" if future.exception() is not None else "completed"

    @property
    def error(self) -> BaseException | None:
        future = self._future
        if future is None or not future.done() or future.cancelled():
            return None
        return future.exception()

    def wait(self, timeout: float | None = None) -> IngestReport | None:
        """Block until the current run finishes; re-raises its failure."""
        future = self._future
        if future is None:
            return None
        return future.result(timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def _log_outcome(future: Future[IngestReport]) -> None:
    if future.cancelled():
        logger.warning("Background ingestion was cancelled")
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Background ingestion failed: %s", exc)
