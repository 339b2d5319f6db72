import httpx
import pytest

from knowledge_agent.config import CrawlerConfig
from knowledge_agent.crawl.corpus import read_corpus
from knowledge_agent.crawl.crawler import WebCrawler
from knowledge_agent.errors import InvalidConfiguration

SEED = "https://example.com/"


def _page(title: str, *hrefs: str, body: str = "") -> str:
    links = "".join(f'<a href="{href}">{href}</a>' for href in hrefs)
    return f"<html><head><title>{title}</title></head><body><p>{body or title}</p>{links}</body></html>"


class FakeSite:
    """Serves canned pages through httpx.MockTransport and records requests."""

    def __init__(self, pages: dict[str, str], failures: dict[str, list[int]] | None = None) -> None:
        self.pages = pages
        self.failures = failures or {}
        self.requested: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        pending = self.failures.get(url)
        if pending:
            return httpx.Response(pending.pop(0))
        if url not in self.pages:
            return httpx.Response(404)
        return httpx.Response(200, html=self.pages[url])

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


def _crawler(site: FakeSite, sleeps: list[float], **overrides) -> WebCrawler:
    config = CrawlerConfig(page_delay_seconds=1.0, level_delay_seconds=2.0, **overrides)
    return WebCrawler(config, client=site.client(), sleep=sleeps.append)


def test_depth_one_fetches_seed_and_relevant_links_only(tmp_path) -> None:
    site = FakeSite(
        {
            SEED: _page(
                "Home",
                "/forums/a",
                "/about",
                "/models/b",
                "/contact",
                "/threads/c",
                "https://other.example/forums/x",
            ),
            "https://example.com/forums/a": _page("A", "/forums/deeper"),
            "https://example.com/models/b": _page("B", "/forums/deeper"),
            "https://example.com/threads/c": _page("C"),
        }
    )
    sleeps: list[float] = []

    corpus = _crawler(site, sleeps).crawl(SEED, 1, tmp_path / "corpus.txt")

    expected = [
        SEED,
        "https://example.com/forums/a",
        "https://example.com/models/b",
        "https://example.com/threads/c",
    ]
    assert site.requested == expected
    assert corpus.fetched_urls == expected
    assert corpus.pages_written == 4
    assert corpus.failed_urls == []
    assert sleeps == [1.0, 2.0, 1.0, 1.0, 1.0]


def test_breadth_first_order_without_revisits(tmp_path) -> None:
    site = FakeSite(
        {
            SEED: _page("Home", "/forums/a", "/forums/b"),
            "https://example.com/forums/a": _page("A", "/forums/c", "/forums/b", "/"),
            "https://example.com/forums/b": _page("B", "/forums/d", "/forums/a#replies"),
            "https://example.com/forums/c": _page("C", "/forums/a"),
            "https://example.com/forums/d": _page("D"),
        }
    )

    corpus = _crawler(site, [], relevant_path_patterns=[]).crawl(SEED, 2, tmp_path / "corpus.txt")

    assert site.requested == [
        SEED,
        "https://example.com/forums/a",
        "https://example.com/forums/b",
        "https://example.com/forums/c",
        "https://example.com/forums/d",
    ]
    assert len(set(site.requested)) == len(site.requested)
    assert corpus.pages_written == 5


def test_depth_zero_fetches_only_the_seed(tmp_path) -> None:
    site = FakeSite({SEED: _page("Home", "/forums/a")})
    sleeps: list[float] = []

    corpus = _crawler(site, sleeps).crawl(SEED, 0, tmp_path / "corpus.txt")

    assert site.requested == [SEED]
    assert corpus.fetched_urls == [SEED]
    assert sleeps == [1.0]


def test_failed_pages_are_skipped(tmp_path) -> None:
    site = FakeSite(
        {
            SEED: _page("Home", "/forums/missing", "/forums/ok", "/forums/broken"),
            "https://example.com/forums/ok": _page("OK"),
        },
        failures={"https://example.com/forums/broken": [500]},
    )

    corpus = _crawler(site, []).crawl(SEED, 1, tmp_path / "corpus.txt")

    assert corpus.fetched_urls == [SEED, "https://example.com/forums/ok"]
    assert corpus.failed_urls == [
        "https://example.com/forums/missing",
        "https://example.com/forums/broken",
    ]
    assert [page.url for page in read_corpus(corpus.path)] == corpus.fetched_urls


def test_transport_errors_and_non_html_are_skipped(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/forums/down":
            raise httpx.ConnectError("connection refused", request=request)
        if path == "/forums/slow":
            raise httpx.ReadTimeout("read timed out", request=request)
        if path == "/forums/file":
            return httpx.Response(200, json={"not": "html"})
        return httpx.Response(200, html=_page("Home", "/forums/down", "/forums/slow", "/forums/file"))

    crawler = WebCrawler(
        CrawlerConfig(page_delay_seconds=0.0, level_delay_seconds=0.0),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _: None,
    )

    corpus = crawler.crawl(SEED, 1, tmp_path / "corpus.txt")

    assert corpus.fetched_urls == [SEED]
    assert len(corpus.failed_urls) == 3


def test_retries_with_backoff_before_giving_up(tmp_path) -> None:
    site = FakeSite({SEED: _page("Home")}, failures={SEED: [503]})
    sleeps: list[float] = []

    corpus = _crawler(site, sleeps, fetch_retries=1, retry_backoff_seconds=2.0).crawl(
        SEED, 0, tmp_path / "corpus.txt"
    )

    assert corpus.fetched_urls == [SEED]
    assert site.requested == [SEED, SEED]
    assert sleeps == [2.0, 1.0, 1.0]


def test_corpus_file_format(tmp_path) -> None:
    html = (
        "<html><head><title>Custom 24</title></head><body>"
        "<h2>Specs</h2><p>Mahogany body with a maple top.</p>"
        "<ul><li>85/15 pickups</li><li>Pattern Thin neck</li></ul>"
        "</body></html>"
    )
    site = FakeSite({SEED: html})
    path = tmp_path / "out" / "corpus.txt"

    _crawler(site, []).crawl(SEED, 0, path)

    assert path.read_text(encoding="utf-8") == (
        "## Page: https://example.com/\n\n"
        "# Custom 24\n\n"
        "## Specs\n\n"
        "Mahogany body with a maple top.\n\n"
        "- 85/15 pickups\n"
        "- Pattern Thin neck\n"
        "\n---\n\n"
    )


def test_missing_seed_or_negative_depth_is_rejected(tmp_path) -> None:
    crawler = WebCrawler(CrawlerConfig(), client=FakeSite({}).client(), sleep=lambda _: None)

    with pytest.raises(InvalidConfiguration):
        crawler.crawl(None, 1, tmp_path / "corpus.txt")
    with pytest.raises(InvalidConfiguration):
        crawler.crawl(SEED, -1, tmp_path / "corpus.txt")


def test_seed_from_config(tmp_path) -> None:
    site = FakeSite({SEED: _page("Home")})
    crawler = WebCrawler(
        CrawlerConfig(seed_url=SEED, max_depth=0, corpus_path=str(tmp_path / "c.txt")),
        client=site.client(),
        sleep=lambda _: None,
    )

    corpus = crawler.crawl()

    assert corpus.path == tmp_path / "c.txt"
    assert corpus.fetched_urls == [SEED]


def test_malformed_link_does_not_stop_the_crawl(tmp_path) -> None:
    site = FakeSite(
        {
            SEED: _page("Home", "/forums/a", "/forums/b"),
            "https://example.com/forums/a": _page("A", "http://[broken/forums/x", "/forums/c"),
            "https://example.com/forums/b": _page("B"),
            "https://example.com/forums/c": _page("C"),
        }
    )

    corpus = _crawler(site, []).crawl(SEED, 2, tmp_path / "corpus.txt")

    assert corpus.fetched_urls == [
        SEED,
        "https://example.com/forums/a",
        "https://example.com/forums/b",
        "https://example.com/forums/c",
    ]
    assert corpus.failed_urls == []


def test_unparseable_page_is_skipped(tmp_path, monkeypatch) -> None:
    from knowledge_agent.crawl import crawler as crawler_module

    site = FakeSite(
        {
            SEED: _page("Home", "/forums/bad", "/forums/good"),
            "https://example.com/forums/bad": _page("Bad"),
            "https://example.com/forums/good": _page("Good"),
        }
    )
    real_extract = crawler_module.extract_page

    def extract(url: str, html: str):
        if url.endswith("/bad"):
            raise RuntimeError("parser exploded")
        return real_extract(url, html)

    monkeypatch.setattr(crawler_module, "extract_page", extract)

    corpus = _crawler(site, []).crawl(SEED, 1, tmp_path / "corpus.txt")

    assert corpus.fetched_urls == [SEED, "https://example.com/forums/good"]
    assert corpus.failed_urls == ["https://example.com/forums/bad"]
