"""Breadth-first, depth-bounded, rate-limited site crawler."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from knowledge_agent.config import CrawlerConfig
from knowledge_agent.crawl.corpus import CorpusWriter
from knowledge_agent.crawl.extract import canonicalize_url, extract_page, origin_of
from knowledge_agent.errors import FetchError, InvalidConfiguration
from knowledge_agent.types import CorpusFile, PageDocument

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CrawlSession:
    """State owned by one crawl: visited set, frontier, and progress."""

    seed_url: str
    max_depth: int
    origin: tuple[str, str] = ("", "")
    visited: set[str] = field(default_factory=set)
    frontier: deque[str] = field(default_factory=deque)
    depth: int = 0
    fetched: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @classmethod
    def start(cls, seed_url: str, max_depth: int) -> "CrawlSession":
        seed = canonicalize_url(seed_url)
        session = cls(seed_url=seed, max_depth=max_depth, origin=origin_of(seed))
        session.visited.add(seed)
        session.frontier.append(seed)
        return session

    def next_level(self) -> list[str]:
        """Drain and return every URL queued for the current depth."""
        level = list(self.frontier)
        self.frontier.clear()
        return level


class WebCrawler:
    """Builds a text corpus from a seed URL by level-order traversal.

    Levels `0..max_depth` are visited, the seed being level 0. Every URL at one
    depth is fetched before any URL at the next. A fixed delay follows every
    fetch attempt, failed ones included, and a further delay is slept before
    each level after the first. No delay follows the last level. A page that
    cannot be fetched or parsed is logged and skipped without aborting the
    crawl.
    """

    def __init__(
        self,
        config: CrawlerConfig | None = None,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or CrawlerConfig()
        self._client = client
        self._sleep = sleep

    def crawl(
        self,
        seed_url: str | None = None,
        max_depth: int | None = None,
        output_path: str | Path | None = None,
    ) -> CorpusFile:
        seed = seed_url or self.config.seed_url
        if not seed:
            raise InvalidConfiguration("A seed URL is required to crawl.")
        depth_limit = self.config.max_depth if max_depth is None else max_depth
        if depth_limit < 0:
            raise InvalidConfiguration(f"max_depth must be >= 0, got {depth_limit}")

        path = Path(output_path or self.config.corpus_path)
        session = CrawlSession.start(seed, depth_limit)
        client = self._client or self._build_client()
        logger.info("Starting crawl of %s (max depth %d)", session.seed_url, depth_limit)

        try:
            with CorpusWriter(path) as writer:
                self._traverse(session, client, writer)
        finally:
            if self._client is None:
                client.close()

        logger.info(
            "Crawl complete: %d pages written, %d skipped. Output saved to %s",
            len(session.fetched),
            len(session.failed),
            path,
        )
        return CorpusFile(path=path, fetched_urls=session.fetched, failed_urls=session.failed)

    def _traverse(
        self, session: CrawlSession, client: httpx.Client, writer: CorpusWriter
    ) -> None:
        while session.frontier and session.depth <= session.max_depth:
            for url in session.next_level():
                try:
                    document = self.fetch_page(client, url)
                except FetchError as exc:
                    logger.warning("Skipping page: %s", exc)
                    session.failed.append(url)
                    continue
                writer.write_page(document)
                session.fetched.append(url)
                if session.depth < session.max_depth:
                    self._enqueue_links(session, document)

            session.depth += 1
            if session.frontier and session.depth <= session.max_depth:
                self._sleep(self.config.level_delay_seconds)

    def fetch_page(self, client: httpx.Client, url: str) -> PageDocument:
        """Fetch and extract one page, retrying per `fetch_retries`."""

        attempts = self.config.fetch_retries + 1
        for attempt in range(1, attempts + 1):
            logger.info("Crawling: %s", url)
            try:
                html = self._fetch_html(client, url)
            except FetchError:
                if attempt == attempts:
                    raise
                self._sleep(self.config.retry_backoff_seconds * attempt)
                continue
            finally:
                self._sleep(self.config.page_delay_seconds)
            try:
                return extract_page(url, html)
            except Exception as exc:
                raise FetchError(url, f"could not parse page: {exc}") from exc
        raise FetchError(url, "no fetch attempts were made")

    def is_relevant(self, session: CrawlSession, url: str) -> bool:
        if origin_of(url) != session.origin:
            return False
        patterns = self.config.relevant_path_patterns
        return not patterns or any(pattern in url for pattern in patterns)

    def _enqueue_links(self, session: CrawlSession, document: PageDocument) -> None:
        for link in document.links:
            if link in session.visited or not self.is_relevant(session, link):
                continue
            session.visited.add(link)
            session.frontier.append(link)

    def _fetch_html(self, client: httpx.Client, url: str) -> str:
        try:
            response = client.get(url)
        except httpx.TimeoutException as exc:
            raise FetchError(url, f"timed out ({exc.__class__.__name__})") from exc
        except httpx.HTTPError as exc:
            raise FetchError(url, str(exc) or exc.__class__.__name__) from exc

        if not response.is_success:
            raise FetchError(url, f"HTTP {response.status_code}")
        content_type = response.headers.get("content-type", "")
        if content_type and "html" not in content_type.lower():
            raise FetchError(url, f"unsupported content type {content_type!r}")
        return response.text

    def _build_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.config.timeout_seconds),
            follow_redirects=True,
            headers={"User-Agent": self.config.user_agent},
        )
