from knowledge_agent.crawl.corpus import CorpusWriter, read_corpus
from knowledge_agent.crawl.extract import canonicalize_url, extract_page
from knowledge_agent.types import PageDocument


def test_extract_page_renders_blocks_in_document_order() -> None:
    html = """
    <html><head><title> Electrics FAQ </title></head>
    <body>
      <h1>Electrics</h1>
      <p>Coil splitting explained.</p>
      <h3>Wiring</h3>
      <ul><li>Volume</li><li>Tone</li><li>   </li></ul>
      <a href="/forums/1#post-5">Thread</a>
      <a href="HTTPS://Example.COM/models">Models</a>
      <a href="mailto:someone@example.com">Mail</a>
      <a href="javascript:void(0)">Noop</a>
    </body></html>
    """

    page = extract_page("https://example.com/electrics/faq", html)

    assert page.title == "Electrics FAQ"
    assert page.blocks == [
        "# Electrics\n\n",
        "Coil splitting explained.\n\n",
        "### Wiring\n\n",
        "- Volume\n",
        "- Tone\n",
    ]
    assert page.links == ["https://example.com/forums/1", "https://example.com/models"]


def test_extract_page_title_falls_back_to_url() -> None:
    page = extract_page("https://example.com/x", "<p>No title here</p>")

    assert page.title == "https://example.com/x"
    assert page.blocks == ["No title here\n\n"]


def test_canonicalize_url() -> None:
    assert canonicalize_url("HTTPS://EXAMPLE.com#top") == "https://example.com/"
    assert canonicalize_url("https://example.com/a?b=1#c") == "https://example.com/a?b=1"


def test_corpus_round_trip(tmp_path) -> None:
    path = tmp_path / "corpus.txt"
    with CorpusWriter(path) as writer:
        writer.write_page(
            PageDocument(
                url="https://example.com/models/",
                title="Models",
                blocks=["## Custom 24\n\n", "Mahogany body.\n\n"],
            )
        )
        writer.write_page(PageDocument(url="https://example.com/forums/", title="Forums"))

    pages = read_corpus(path)

    assert [(page.url, page.title) for page in pages] == [
        ("https://example.com/models/", "Models"),
        ("https://example.com/forums/", "Forums"),
    ]
    assert pages[0].text == "## Custom 24\n\nMahogany body."
    assert pages[1].text == ""


def test_writer_truncates_existing_file(tmp_path) -> None:
    path = tmp_path / "corpus.txt"
    path.write_text("stale content", encoding="utf-8")

    with CorpusWriter(path):
        pass

    assert path.read_text(encoding="utf-8") == ""
    assert read_corpus(path) == []


def test_plain_text_file_is_one_page(tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("Tremolo setup notes.\n", encoding="utf-8")

    pages = read_corpus(path)

    assert len(pages) == 1
    assert pages[0].url == str(path)
    assert pages[0].text == "Tremolo setup notes."


def test_extract_page_skips_malformed_links() -> None:
    html = '<a href="http://[broken/x">Bad</a><a href="/forums/ok">Ok</a>'

    page = extract_page("https://example.com/", html)

    assert page.links == ["https://example.com/forums/ok"]
